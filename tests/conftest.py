"""
Shared fixtures and in-memory collaborators.

InMemoryAccountRepository mirrors AccountRepository's contract: every
conditional method yields to the event loop once and then matches-and-writes
without awaiting, the same way a single find_one_and_update is atomic on the
server. Concurrent coroutines can therefore both *read* a code as valid but
only one of them wins the write.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
from bson import ObjectId

from config import AuthSettings, JWTSettings
from errors import DuplicateAccountError
from repositories.account_repository import secret_path
from schemas.models.account import AccountDoc, Role, SecretKind, VerificationSecret
from services.account_service import AccountService
from services.session_service import SessionService
from services.token_service import TokenService
from shared.crypto import PasswordHasher

_MISSING = object()

STRONG_PASSWORD = "Str0ngPassword"


def _lookup(doc: dict, path: str) -> Any:
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _assign(doc: dict, path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    current = doc
    for part in parents:
        current = current.setdefault(part, {})
    current[leaf] = value


def _remove(doc: dict, path: str) -> None:
    *parents, leaf = path.split(".")
    current = doc
    for part in parents:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(leaf, None)


def _matches(doc: dict, query: dict) -> bool:
    for path, expected in query.items():
        actual = _lookup(doc, path)
        if isinstance(expected, dict) and "$gt" in expected:
            if actual is _MISSING or actual is None or not actual > expected["$gt"]:
                return False
        elif actual is _MISSING or actual != expected:
            return False
    return True


class InMemoryAccountRepository:
    def __init__(self) -> None:
        self.docs: dict[ObjectId, dict] = {}

    def _find(self, query: dict) -> Optional[dict]:
        for doc in self.docs.values():
            if _matches(doc, query):
                return doc
        return None

    @staticmethod
    def _model(doc: Optional[dict]) -> Optional[AccountDoc]:
        return AccountDoc.from_mongo(copy.deepcopy(doc)) if doc else None

    async def ensure_indexes(self) -> None:
        return None

    async def find_by_email(self, email: str) -> Optional[AccountDoc]:
        return self._model(self._find({"email": email.strip().lower()}))

    async def find_by_id(self, account_id: Any) -> Optional[AccountDoc]:
        if isinstance(account_id, str):
            if not ObjectId.is_valid(account_id):
                return None
            account_id = ObjectId(account_id)
        return self._model(self.docs.get(account_id))

    async def insert(self, account: AccountDoc) -> AccountDoc:
        await asyncio.sleep(0)
        if self._find({"email": account.email}) is not None:
            raise DuplicateAccountError()
        data = account.to_mongo()
        data["_id"] = ObjectId()
        self.docs[data["_id"]] = copy.deepcopy(data)
        return account.model_copy(update={"id": data["_id"]})

    async def issue_secret(
        self, match: dict, secret: VerificationSecret, now: datetime
    ) -> Optional[AccountDoc]:
        await asyncio.sleep(0)
        doc = self._find(match)
        if doc is None:
            return None
        _assign(doc, secret_path(secret.kind), secret.model_dump())
        doc["updated_at"] = now
        return self._model(doc)

    async def consume_secret(
        self,
        kind: SecretKind,
        token_hash: str,
        now: datetime,
        *,
        match: Optional[dict] = None,
        set_fields: Optional[dict] = None,
    ) -> Optional[AccountDoc]:
        await asyncio.sleep(0)
        path = secret_path(kind)
        doc = self._find(
            {
                **(match or {}),
                f"{path}.token_hash": token_hash,
                f"{path}.expires_at": {"$gt": now},
            }
        )
        if doc is None:
            return None
        for key, value in (set_fields or {}).items():
            _assign(doc, key, copy.deepcopy(value))
        doc["updated_at"] = now
        _remove(doc, path)
        return self._model(doc)

    async def update_password(
        self,
        account_id: Any,
        password_hash: str,
        now: datetime,
        *,
        expected_hash: Optional[str] = None,
    ) -> bool:
        await asyncio.sleep(0)
        doc = self.docs.get(ObjectId(str(account_id)))
        if doc is None:
            return False
        if expected_hash is not None and doc["password_hash"] != expected_hash:
            return False
        doc["password_hash"] = password_hash
        doc["updated_at"] = now
        return True

    async def touch_last_login(self, account_id: Any, now: datetime) -> None:
        doc = self.docs.get(ObjectId(str(account_id)))
        if doc is not None:
            doc["last_login_at"] = now

    # test helpers

    def raw(self, email: str) -> dict:
        doc = self._find({"email": email})
        assert doc is not None, f"no account for {email}"
        return doc

    def set_flags(self, email: str, **flags: Any) -> None:
        self.raw(email).update(flags)


class RecordingEmailProvider:
    """Collects outgoing messages; flip ``fail`` to simulate a dead provider."""

    def __init__(self) -> None:
        self.verification: list[dict] = []
        self.otp: list[dict] = []
        self.welcome: list[dict] = []
        self.fail = False

    async def send_verification_email(self, email, token, first_name) -> bool:
        if self.fail:
            return False
        self.verification.append({"email": email, "token": token, "first_name": first_name})
        return True

    async def send_otp_email(self, email, otp_code, first_name, purpose) -> bool:
        if self.fail:
            return False
        self.otp.append(
            {"email": email, "otp": otp_code, "first_name": first_name, "purpose": purpose}
        )
        return True

    async def send_welcome_email(self, email, first_name, role) -> bool:
        if self.fail:
            return False
        self.welcome.append({"email": email, "first_name": first_name, "role": role})
        return True

    def last_otp(self, email: str, purpose: str) -> str:
        for sent in reversed(self.otp):
            if sent["email"] == email and sent["purpose"] == purpose:
                return sent["otp"]
        raise AssertionError(f"no {purpose} OTP sent to {email}")

    def last_verification_token(self, email: str) -> str:
        for sent in reversed(self.verification):
            if sent["email"] == email:
                return sent["token"]
        raise AssertionError(f"no verification email sent to {email}")


class StaticOnboardingReader:
    def __init__(self, steps: Optional[dict[str, Optional[str]]] = None) -> None:
        self.steps = steps or {}

    async def next_incomplete_step(self, account_id: str) -> Optional[str]:
        return self.steps.get(account_id, "profile")


class FixedClock:
    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def repo() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def email_provider() -> RecordingEmailProvider:
    return RecordingEmailProvider()


@pytest.fixture
def onboarding_reader() -> StaticOnboardingReader:
    return StaticOnboardingReader()


@pytest.fixture
def auth_settings() -> AuthSettings:
    # cheapest argon2 parameters the library accepts; a developer .env is never read
    return AuthSettings(
        argon2_time_cost=1,
        argon2_memory_cost=8,
        argon2_parallelism=1,
        _env_file=None,
    )


@pytest.fixture
def jwt_settings() -> JWTSettings:
    return JWTSettings(
        jwt_secret="test-access-secret-0123456789abcdef",
        jwt_refresh_secret="test-refresh-secret-0123456789abcdef",
        jwt_private_key="",
        jwt_public_key="",
        _env_file=None,
    )


@pytest.fixture
def hasher(auth_settings) -> PasswordHasher:
    return PasswordHasher.from_settings(auth_settings)


@pytest.fixture
def token_service(jwt_settings) -> TokenService:
    return TokenService(jwt_settings)


@pytest.fixture
def account_service(repo, hasher, email_provider, auth_settings, clock) -> AccountService:
    return AccountService(repo, hasher, email_provider, auth_settings, clock=clock)


@pytest.fixture
def session_service(
    repo, hasher, token_service, onboarding_reader, clock
) -> SessionService:
    return SessionService(repo, hasher, token_service, onboarding_reader, clock=clock)


@pytest.fixture
def verified_account(account_service, email_provider):
    """Async factory: register and verify an account through the OTP flow."""

    async def _make(
        email: str = "alice@example.com",
        password: str = STRONG_PASSWORD,
        role: Role = Role.STUDENT,
    ) -> AccountDoc:
        await account_service.register(
            email=email,
            password=password,
            role=role,
            first_name="Alice",
            last_name="Liddell",
        )
        otp = email_provider.last_otp(email, "signup")
        return await account_service.verify_by_otp(email, otp)

    return _make
