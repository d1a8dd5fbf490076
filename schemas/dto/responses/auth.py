"""
Response DTOs for authentication endpoints.

UserResponse         — account shape embedded in login / verify-otp / me
TokensResponse       — token pair embedded in login / refresh
LoginResponse        — POST /api/auth/login  (200)
RegisterResponse     — POST /api/auth/register  (201)
RefreshResponse      — POST /api/auth/refresh  (200)
VerifyEmailResponse  — POST /api/auth/verify-email  (200)
VerifyOtpResponse    — POST /api/auth/verify-otp  (200)
ResetTokenResponse   — POST /api/auth/verify-reset-otp  (200)
MeResponse           — GET /api/auth/me  (200)

Route handlers serialise with ``model_dump(by_alias=True)`` so the JSON keys
are camelCase (``firstName``, ``isVerified``, ``redirectTo``).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from schemas.models.account import AccountDoc
from services.token_service import TokenPair


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserResponse(_CamelResponse):
    id: str
    email: str
    role: str
    first_name: str
    last_name: str
    is_verified: bool
    is_active: bool
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account: AccountDoc) -> "UserResponse":
        return cls(
            id=str(account.id),
            email=account.email,
            role=account.role,
            first_name=account.first_name,
            last_name=account.last_name,
            is_verified=account.is_verified,
            is_active=account.is_active,
            created_at=account.created_at,
            last_login_at=account.last_login_at,
        )


class TokensResponse(_CamelResponse):
    """The refresh token is also set as an http-only cookie."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokensResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.access_expires_in,
            refresh_expires_in=pair.refresh_expires_in,
        )


class LoginResponse(_CamelResponse):
    user: UserResponse
    tokens: TokensResponse
    redirect_to: str


class RegisterResponse(_CamelResponse):
    """Response body for POST /api/auth/register (201)."""

    id: str
    email: str
    role: str
    first_name: str
    last_name: str
    is_verified: bool
    verification_sent: bool


class RefreshResponse(_CamelResponse):
    tokens: TokensResponse


class VerifyEmailResponse(_CamelResponse):
    verified: bool
    redirect_to: str


class VerifyOtpResponse(_CamelResponse):
    verified: bool
    user: UserResponse


class ResetTokenResponse(_CamelResponse):
    reset_token: str
    expires_in: int


class MeResponse(_CamelResponse):
    user: UserResponse
