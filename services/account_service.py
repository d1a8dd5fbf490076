"""
Account lifecycle: registration, email verification and password recovery.

State machine per account:

    Registered-Unverified --(link token | signup OTP)--> Verified
    Verified --forgot-password--> Reset-Requested --OTP--> Reset-OTP-Confirmed
    Reset-OTP-Confirmed --reset token + new password--> Verified

Every transition that spends a one-time secret is a single conditional
update in the repository (see AccountRepository.consume_secret), so a code
can only ever be spent once even under concurrent submissions. Nothing here
retries; each call either commits or fails with a point-in-time error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from starlette.concurrency import run_in_threadpool

from config import AuthSettings
from errors import (
    AccountDeactivatedError,
    DuplicateAccountError,
    EmailDeliveryError,
    InvalidOrExpiredOTPError,
    InvalidOrExpiredTokenError,
    InvalidTokenError,
    NotFoundOrAlreadyVerifiedError,
    ValidationError,
)
from infrastructure.email.protocol import (
    OTP_PURPOSE_RESET,
    OTP_PURPOSE_SIGNUP,
    EmailProvider,
)
from repositories.account_repository import AccountRepository, secret_path
from schemas.models.account import AccountDoc, Role, SecretKind
from shared.crypto import PasswordHasher, hash_token
from shared.datetime_utils import Clock, utcnow
from shared.generators import IssuedSecret, issue_secret
from shared.logging import get_logger
from shared.validators import is_otp_format, normalize_email, validate_password

log = get_logger(__name__)


@dataclass(frozen=True)
class RegistrationResult:
    account: AccountDoc
    verification_sent: bool


def post_verification_redirect(role: str) -> str:
    """Where a freshly verified account should land."""
    return "/onboarding/profile" if role == Role.MENTOR.value else "/dashboard"


def enforce_password_policy(password: str, field: str = "password") -> None:
    missing = validate_password(password)
    if missing:
        raise ValidationError(
            "Password does not meet requirements", field=field, details=missing
        )


class AccountService:
    """Drives registration, verification and password reset."""

    def __init__(
        self,
        repository: AccountRepository,
        hasher: PasswordHasher,
        email_provider: EmailProvider,
        settings: AuthSettings,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repository
        self._hasher = hasher
        self._email = email_provider
        self._settings = settings
        self._clock = clock

    def _issue(self, kind: SecretKind) -> IssuedSecret:
        ttl = {
            SecretKind.EMAIL_VERIFICATION: self._settings.verification_token_ttl_seconds,
            SecretKind.SIGNUP_OTP: self._settings.otp_ttl_seconds,
            SecretKind.PASSWORD_RESET_OTP: self._settings.otp_ttl_seconds,
            SecretKind.PASSWORD_RESET_TOKEN: self._settings.reset_token_ttl_seconds,
        }[kind]
        return issue_secret(
            kind,
            ttl_seconds=ttl,
            now=self._clock(),
            otp_length=self._settings.otp_length,
        )

    async def _hash_password(self, password: str) -> str:
        # argon2 is CPU-bound; keep it off the event loop
        return await run_in_threadpool(self._hasher.hash, password)

    # ── Registration ─────────────────────────────────────────────────────────

    async def register(
        self,
        *,
        email: str,
        password: str,
        role: Role,
        first_name: str,
        last_name: str,
    ) -> RegistrationResult:
        email = normalize_email(email)
        enforce_password_policy(password)
        if await self._repo.find_by_email(email) is not None:
            log.warning("registration_failed", reason="email_exists")
            raise DuplicateAccountError()

        password_hash = await self._hash_password(password)
        kind = (
            SecretKind.SIGNUP_OTP
            if self._settings.signup_verification == "otp"
            else SecretKind.EMAIL_VERIFICATION
        )
        issued = self._issue(kind)
        now = self._clock()
        account = AccountDoc(
            email=email,
            password_hash=password_hash,
            role=role,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            is_verified=False,
            is_active=True,
            secrets={kind.value: issued.record},
            created_at=now,
            updated_at=now,
        )
        # unique index catches a concurrent registration of the same email
        account = await self._repo.insert(account)

        log.info(
            "user_registered",
            user_id=str(account.id),
            role=account.role,
            verification_mode=self._settings.signup_verification,
        )

        if kind is SecretKind.SIGNUP_OTP:
            sent = await self._email.send_otp_email(
                email, issued.plaintext, account.first_name, OTP_PURPOSE_SIGNUP
            )
        else:
            sent = await self._email.send_verification_email(
                email, issued.plaintext, account.first_name
            )
        if not sent:
            # the account stays; the user can ask for a new code
            log.error("registration_verification_email_failed", user_id=str(account.id))

        return RegistrationResult(account=account, verification_sent=sent)

    # ── Verification ─────────────────────────────────────────────────────────

    async def verify_by_token(self, token: str) -> AccountDoc:
        account = await self._repo.consume_secret(
            SecretKind.EMAIL_VERIFICATION,
            hash_token(token),
            self._clock(),
            match={"is_verified": False},
            set_fields={"is_verified": True},
        )
        if account is None:
            log.warning("email_verification_failed", reason="no_live_token")
            raise InvalidOrExpiredTokenError()

        log.info("email_verified", user_id=str(account.id), method="link")
        await self._send_welcome(account)
        return account

    async def verify_by_otp(self, email: str, otp: str) -> AccountDoc:
        email = normalize_email(email)
        if not is_otp_format(otp, self._settings.otp_length):
            raise InvalidOrExpiredOTPError()

        account = await self._repo.consume_secret(
            SecretKind.SIGNUP_OTP,
            hash_token(otp),
            self._clock(),
            match={"email": email, "is_verified": False, "is_active": True},
            set_fields={"is_verified": True},
        )
        if account is None:
            log.warning("otp_verification_failed", reason="no_live_otp", purpose="signup")
            raise InvalidOrExpiredOTPError()

        log.info("email_verified", user_id=str(account.id), method="otp")
        await self._send_welcome(account)
        return account

    async def resend_otp(self, email: str) -> None:
        """Replace the sign-up OTP of a still-unverified account and mail it."""
        email = normalize_email(email)
        issued = self._issue(SecretKind.SIGNUP_OTP)
        account = await self._repo.issue_secret(
            {"email": email, "is_verified": False, "is_active": True},
            issued.record,
            self._clock(),
        )
        if account is None:
            raise NotFoundOrAlreadyVerifiedError()

        sent = await self._email.send_otp_email(
            email, issued.plaintext, account.first_name, OTP_PURPOSE_SIGNUP
        )
        if not sent:
            log.error("resend_otp_email_failed", user_id=str(account.id))
            raise EmailDeliveryError(
                "Failed to send verification code. Please try again."
            )
        log.info("signup_otp_resent", user_id=str(account.id))

    async def _send_welcome(self, account: AccountDoc) -> None:
        sent = await self._email.send_welcome_email(
            account.email, account.first_name, account.role
        )
        if not sent:
            log.error("welcome_email_failed", user_id=str(account.id))

    # ── Password recovery ────────────────────────────────────────────────────

    async def request_password_reset(self, email: str) -> None:
        """Mail a reset OTP if *email* belongs to a verified, active account.

        Returns normally whether or not the account exists.
        """
        email = normalize_email(email)
        issued = self._issue(SecretKind.PASSWORD_RESET_OTP)
        account = await self._repo.issue_secret(
            {"email": email, "is_verified": True, "is_active": True},
            issued.record,
            self._clock(),
        )
        if account is None:
            log.info("password_reset_requested", outcome="no_eligible_account")
            return

        sent = await self._email.send_otp_email(
            email, issued.plaintext, account.first_name, OTP_PURPOSE_RESET
        )
        if not sent:
            log.error("password_reset_email_failed", user_id=str(account.id))
            raise EmailDeliveryError("Failed to send reset code. Please try again.")
        log.info("password_reset_requested", outcome="otp_sent", user_id=str(account.id))

    async def verify_reset_otp(self, email: str, otp: str) -> str:
        """Trade a reset OTP for a reset token; returns the token plaintext."""
        email = normalize_email(email)
        if not is_otp_format(otp, self._settings.otp_length):
            raise InvalidOrExpiredOTPError()

        issued = self._issue(SecretKind.PASSWORD_RESET_TOKEN)
        reset_slot: dict[str, Any] = {
            secret_path(SecretKind.PASSWORD_RESET_TOKEN): issued.record.model_dump()
        }
        account = await self._repo.consume_secret(
            SecretKind.PASSWORD_RESET_OTP,
            hash_token(otp),
            self._clock(),
            match={"email": email, "is_active": True},
            set_fields=reset_slot,
        )
        if account is None:
            log.warning("otp_verification_failed", reason="no_live_otp", purpose="reset")
            raise InvalidOrExpiredOTPError()

        log.info("password_reset_otp_verified", user_id=str(account.id))
        return issued.plaintext

    async def complete_reset(self, token: str, new_password: str) -> AccountDoc:
        """Set a new password using a reset token.

        Access and refresh tokens issued before the reset stay valid until
        they expire; sessions are stateless.
        """
        enforce_password_policy(new_password)
        password_hash = await self._hash_password(new_password)
        account = await self._repo.consume_secret(
            SecretKind.PASSWORD_RESET_TOKEN,
            hash_token(token),
            self._clock(),
            match={"is_active": True},
            set_fields={"password_hash": password_hash},
        )
        if account is None:
            log.warning("password_reset_failed", reason="no_live_reset_token")
            raise InvalidOrExpiredTokenError()

        log.info("password_reset_completed", user_id=str(account.id))
        return account

    async def change_password(
        self, account_id: str, current_password: str, new_password: str
    ) -> None:
        enforce_password_policy(new_password, field="newPassword")
        account = await self._repo.find_by_id(account_id)
        if account is None:
            raise InvalidTokenError()
        if not account.is_active:
            raise AccountDeactivatedError()

        matches = await run_in_threadpool(
            self._hasher.verify, current_password, account.password_hash
        )
        if not matches:
            log.warning("password_change_failed", reason="wrong_current", user_id=account_id)
            raise ValidationError(
                "Current password is incorrect", field="currentPassword"
            )

        password_hash = await self._hash_password(new_password)
        updated = await self._repo.update_password(
            account.id,
            password_hash,
            self._clock(),
            expected_hash=account.password_hash,
        )
        if not updated:
            # someone else changed the password between our read and write
            log.warning("password_change_failed", reason="concurrent_update", user_id=account_id)
            raise ValidationError(
                "Current password is incorrect", field="currentPassword"
            )
        log.info("password_changed", user_id=account_id)
