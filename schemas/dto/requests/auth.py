"""
Request DTOs for authentication endpoints.

RegisterRequest          — POST /api/auth/register
LoginRequest             — POST /api/auth/login
VerifyEmailRequest       — POST /api/auth/verify-email
VerifyOtpRequest         — POST /api/auth/verify-otp
ResendOtpRequest         — POST /api/auth/resend-otp
ForgotPasswordRequest    — POST /api/auth/forgot-password
VerifyResetOtpRequest    — POST /api/auth/verify-reset-otp
ResetPasswordRequest     — POST /api/auth/reset-password
ChangePasswordRequest    — POST /api/auth/change-password

Keys are camelCase on the wire; snake_case is accepted too. Only shape is
checked here. The password policy and OTP format are enforced by
AccountService so every entry point applies the same rules.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class _CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(_CamelRequest):
    """Request body for POST /api/auth/register.

    ``admin`` cannot be self-assigned.
    """

    email: EmailStr
    password: str = Field(min_length=1)
    role: Literal["mentor", "student"]
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)


class LoginRequest(_CamelRequest):
    email: EmailStr
    password: str = Field(min_length=1)
    remember_me: bool = False


class VerifyEmailRequest(_CamelRequest):
    token: str = Field(min_length=1)


class VerifyOtpRequest(_CamelRequest):
    email: EmailStr
    otp: str = Field(min_length=1)


class ResendOtpRequest(_CamelRequest):
    email: EmailStr


class ForgotPasswordRequest(_CamelRequest):
    email: EmailStr


class VerifyResetOtpRequest(_CamelRequest):
    email: EmailStr
    otp: str = Field(min_length=1)


class ResetPasswordRequest(_CamelRequest):
    """Request body for POST /api/auth/reset-password.

    ``token`` is the reset token returned by verify-reset-otp.
    """

    token: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ChangePasswordRequest(_CamelRequest):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)
