"""
Stateless JWT access/refresh token issuance and verification.

Both tokens carry the same identity claims (sub, email, role) and differ in
lifetime, ``type`` claim and, optionally, signing secret. There is no server
side session table: a token is valid while its signature and expiry are.

Every verification failure (expired, tampered, malformed, wrong type)
surfaces as the same InvalidTokenError so callers cannot tell them apart.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

import jwt

from config import JWTSettings
from errors import InvalidTokenError
from schemas.models.account import Role
from shared.datetime_utils import Clock, utcnow
from shared.logging import get_logger

log = get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class Identity:
    """Who a token speaks for."""

    account_id: str
    email: str
    role: Role

    def to_claims(self) -> dict[str, Any]:
        return {"sub": self.account_id, "email": self.email, "role": self.role.value}


@dataclass(frozen=True)
class RefreshGrant:
    """A verified refresh token: who it speaks for and whether the session
    was opened with remember-me (and so keeps the long refresh lifetime)."""

    identity: Identity
    remember_me: bool = False


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int


class TokenService:
    """Issues and verifies signed, time-bounded access and refresh tokens."""

    def __init__(self, settings: JWTSettings, clock: Clock = utcnow) -> None:
        self._settings = settings
        self._clock = clock

        if settings.use_rs256:
            # Support keys provided via env with literal \n sequences
            private_key = settings.jwt_private_key.replace("\\n", "\n")
            public_key = settings.jwt_public_key.replace("\\n", "\n")
            self._algorithm = "RS256"
            self._access_keys = (private_key, public_key)
            self._refresh_keys = (private_key, public_key)
        else:
            if not settings.jwt_secret:
                raise RuntimeError(
                    "JWT_SECRET must be set when RS256 keys are not provided"
                )
            refresh_secret = settings.jwt_refresh_secret or settings.jwt_secret
            self._algorithm = "HS256"
            self._access_keys = (settings.jwt_secret, settings.jwt_secret)
            self._refresh_keys = (refresh_secret, refresh_secret)

    @property
    def access_ttl(self) -> int:
        return self._settings.access_token_ttl_seconds

    def refresh_ttl(self, remember_me: bool = False) -> int:
        if remember_me:
            return self._settings.remember_me_refresh_ttl_seconds
        return self._settings.refresh_token_ttl_seconds

    def issue(self, identity: Identity, *, remember_me: bool = False) -> TokenPair:
        """Sign an access/refresh pair for *identity* using server time."""
        now = self._clock()
        refresh_ttl = self.refresh_ttl(remember_me)
        access_token = self._encode(
            identity, ACCESS_TOKEN_TYPE, now, self.access_ttl, self._access_keys[0]
        )
        refresh_token = self._encode(
            identity, REFRESH_TOKEN_TYPE, now, refresh_ttl, self._refresh_keys[0],
            extra={"remember": remember_me},
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_in=self.access_ttl,
            refresh_expires_in=refresh_ttl,
        )

    def verify_access(self, token: Optional[str]) -> Identity:
        identity, _ = self._decode(token, ACCESS_TOKEN_TYPE, self._access_keys[1])
        return identity

    def verify_refresh(self, token: Optional[str]) -> Identity:
        return self.verify_refresh_grant(token).identity

    def verify_refresh_grant(self, token: Optional[str]) -> RefreshGrant:
        identity, claims = self._decode(
            token, REFRESH_TOKEN_TYPE, self._refresh_keys[1]
        )
        return RefreshGrant(
            identity=identity, remember_me=claims.get("remember") is True
        )

    def _encode(
        self,
        identity: Identity,
        token_type: str,
        now: datetime,
        ttl_seconds: int,
        key: str,
        extra: Optional[dict[str, Any]] = None,
    ) -> str:
        claims = {
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
            "type": token_type,
            **identity.to_claims(),
            **(extra or {}),
        }
        return jwt.encode(claims, key, algorithm=self._algorithm)

    def _decode(
        self, token: Optional[str], token_type: str, key: str
    ) -> tuple[Identity, dict[str, Any]]:
        if not token:
            raise InvalidTokenError()
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[self._algorithm],
                audience=self._settings.jwt_audience,
                issuer=self._settings.jwt_issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
            if claims.get("type") != token_type:
                raise jwt.InvalidTokenError(f"Expected a {token_type} token")
            identity = Identity(
                account_id=str(claims["sub"]),
                email=str(claims["email"]),
                role=Role(claims["role"]),
            )
            return identity, claims
        except (jwt.PyJWTError, KeyError, ValueError) as e:
            log.info(
                "token_verification_failed",
                kind=token_type,
                reason=type(e).__name__,
            )
            raise InvalidTokenError() from e
