"""
Session issuance: credential login, token refresh and post-login routing.

Sessions are stateless; see services.token_service. The only store access
here is reading the account (login, refresh, me) and stamping last_login_at.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from starlette.concurrency import run_in_threadpool

from errors import (
    AccountDeactivatedError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    InvalidTokenError,
)
from infrastructure.onboarding import OnboardingStateReader
from repositories.account_repository import AccountRepository
from schemas.models.account import AccountDoc, Role
from services.token_service import Identity, TokenPair, TokenService
from shared.crypto import PasswordHasher
from shared.datetime_utils import Clock, utcnow
from shared.logging import get_logger
from shared.validators import normalize_email

log = get_logger(__name__)

DEFAULT_LANDING = "/dashboard"
ONBOARDING_PREFIX = "/onboarding"


@dataclass(frozen=True)
class LoginResult:
    account: AccountDoc
    identity: Identity
    tokens: TokenPair
    redirect_to: str


def identity_for(account: AccountDoc) -> Identity:
    return Identity(
        account_id=str(account.id),
        email=account.email,
        role=Role(account.role),
    )


class SessionService:
    """Validates credentials and issues token pairs."""

    def __init__(
        self,
        repository: AccountRepository,
        hasher: PasswordHasher,
        token_service: TokenService,
        onboarding_reader: OnboardingStateReader,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repository
        self._hasher = hasher
        self._tokens = token_service
        self._onboarding = onboarding_reader
        self._clock = clock
        self._dummy_hash: Optional[str] = None

    async def _password_matches(self, account: Optional[AccountDoc], password: str) -> bool:
        if account is None:
            # burn the same hashing time for unknown emails
            if self._dummy_hash is None:
                self._dummy_hash = await run_in_threadpool(
                    self._hasher.hash, "unknown-account-placeholder"
                )
            await run_in_threadpool(self._hasher.verify, password, self._dummy_hash)
            return False
        return await run_in_threadpool(
            self._hasher.verify, password, account.password_hash
        )

    async def login(
        self, email: str, password: str, *, remember_me: bool = False
    ) -> LoginResult:
        """Authenticate and issue a token pair.

        Check order: credentials, then deactivation, then verification, so
        account status is only revealed to someone holding the password.
        """
        account = await self._repo.find_by_email(normalize_email(email))
        if not await self._password_matches(account, password):
            log.warning(
                "login_failed",
                reason="invalid_password" if account else "unknown_email",
                user_id=str(account.id) if account else None,
            )
            raise InvalidCredentialsError()

        if not account.is_active:
            log.warning("login_failed", reason="deactivated", user_id=str(account.id))
            raise AccountDeactivatedError()

        if not account.is_verified:
            log.info("login_failed", reason="email_not_verified", user_id=str(account.id))
            raise EmailNotVerifiedError()

        identity = identity_for(account)
        tokens = self._tokens.issue(identity, remember_me=remember_me)
        await self._repo.touch_last_login(account.id, self._clock())
        redirect_to = await self.resolve_redirect(account)

        log.info(
            "login_success",
            user_id=identity.account_id,
            role=identity.role.value,
            remember_me=remember_me,
        )
        return LoginResult(
            account=account, identity=identity, tokens=tokens, redirect_to=redirect_to
        )

    async def resolve_redirect(self, account: AccountDoc) -> str:
        """Mentors with unfinished onboarding go to their earliest open step."""
        if account.role != Role.MENTOR.value:
            return DEFAULT_LANDING
        step = await self._onboarding.next_incomplete_step(str(account.id))
        if step is None:
            return DEFAULT_LANDING
        return f"{ONBOARDING_PREFIX}/{step}"

    async def refresh(self, refresh_token: Optional[str]) -> tuple[AccountDoc, TokenPair]:
        """Mint a new pair from a refresh token.

        The account must still exist and be active; this is the only point
        where an outstanding session can be cut short before expiry. A
        remember-me session keeps its long refresh lifetime across rotations.
        """
        grant = self._tokens.verify_refresh_grant(refresh_token)
        identity = grant.identity
        account = await self._repo.find_by_id(identity.account_id)
        if account is None or not account.is_active:
            log.warning(
                "token_refresh_failed",
                reason="account_missing" if account is None else "deactivated",
                user_id=identity.account_id,
            )
            raise InvalidTokenError()

        tokens = self._tokens.issue(
            identity_for(account), remember_me=grant.remember_me
        )
        log.info("token_refreshed", user_id=identity.account_id)
        return account, tokens

    async def current_account(self, identity: Identity) -> AccountDoc:
        account = await self._repo.find_by_id(identity.account_id)
        if account is None:
            raise InvalidTokenError()
        return account
