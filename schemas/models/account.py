"""
Account document model.

Maps to the `users` MongoDB collection.

is_verified and is_active are independent flags:
- is_verified — the owner proved control of the email address (link or OTP)
- is_active   — administrative status; False means the account was deactivated

The four time-bounded secrets live under ``secrets.<kind>``. Writing a kind
replaces whatever was stored for it, so each purpose has at most one live
secret. token_hash stores SHA-256(plaintext) — the plaintext is handed to the
caller once and never stored.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.models.base import MongoBaseModel


class Role(str, Enum):
    MENTOR = "mentor"
    STUDENT = "student"
    ADMIN = "admin"


class SecretKind(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    SIGNUP_OTP = "signup_otp"
    PASSWORD_RESET_OTP = "password_reset_otp"
    PASSWORD_RESET_TOKEN = "password_reset_token"


class VerificationSecret(BaseModel):
    """A single-purpose, time-bounded secret embedded in the account."""

    model_config = ConfigDict(use_enum_values=True)

    kind: SecretKind
    token_hash: str
    expires_at: datetime
    issued_at: Optional[datetime] = None


class AccountDoc(MongoBaseModel):
    """Document model for the `users` collection."""

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
    )

    email: str
    password_hash: str
    role: Role
    first_name: str
    last_name: str
    is_verified: bool = False
    is_active: bool = True
    secrets: dict[str, VerificationSecret] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
