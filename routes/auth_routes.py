"""
Authentication endpoints under /api/auth.

POST /register          — create an unverified account, send the code/link
POST /login             — credentials → token pair + session cookies
POST /refresh           — refreshToken cookie → new pair, rotated cookies
POST /logout            — clear both cookies
GET  /me                — the authenticated account
POST /verify-email      — link token → verified
POST /verify-otp        — sign-up OTP → verified
POST /resend-otp        — new sign-up OTP
POST /forgot-password   — reset OTP by email (same answer for every address)
POST /verify-reset-otp  — reset OTP → reset token
POST /reset-password    — reset token + new password
POST /change-password   — authenticated password change

Handlers stay thin: validation is done by the request DTOs, business rules
and error raising by AccountService / SessionService.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Request
from fastapi.responses import JSONResponse

from config import AppSettings
from dependencies import (
    get_account_service,
    get_current_identity,
    get_session_service,
    get_settings,
)
from schemas.dto.requests.auth import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResendOtpRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
    VerifyOtpRequest,
    VerifyResetOtpRequest,
)
from schemas.dto.responses.auth import (
    LoginResponse,
    MeResponse,
    RefreshResponse,
    RegisterResponse,
    ResetTokenResponse,
    TokensResponse,
    UserResponse,
    VerifyEmailResponse,
    VerifyOtpResponse,
)
from schemas.dto.responses.common import ErrorResponse, MessageResponse
from schemas.models.account import Role
from services.account_service import AccountService, post_verification_redirect
from services.session_service import SessionService
from services.token_service import Identity, TokenPair
from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(
    prefix="/api/auth",
    tags=["auth"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

FORGOT_PASSWORD_MESSAGE = (
    "If an account with that email exists, we have sent a password reset code."
)


def _json(model, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=model.model_dump(by_alias=True, mode="json"),
    )


def set_session_cookies(
    response: JSONResponse, pair: TokenPair, settings: AppSettings
) -> None:
    secure = settings.jwt.cookie_secure
    response.set_cookie(
        ACCESS_COOKIE,
        value=pair.access_token,
        httponly=True,
        secure=secure,
        samesite="strict",
        path="/",
        max_age=pair.access_expires_in,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=pair.refresh_token,
        httponly=True,
        secure=secure,
        samesite="strict",
        path="/",
        max_age=pair.refresh_expires_in,
    )


def clear_session_cookies(response: JSONResponse, settings: AppSettings) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            name,
            path="/",
            secure=settings.jwt.cookie_secure,
            httponly=True,
            samesite="strict",
        )


# ── Registration & verification ──────────────────────────────────────────────


@router.post("/register", status_code=201)
async def register(
    body: RegisterRequest,
    accounts: AccountService = Depends(get_account_service),
) -> JSONResponse:
    result = await accounts.register(
        email=body.email,
        password=body.password,
        role=Role(body.role),
        first_name=body.first_name,
        last_name=body.last_name,
    )
    account = result.account
    return _json(
        RegisterResponse(
            id=str(account.id),
            email=account.email,
            role=account.role,
            first_name=account.first_name,
            last_name=account.last_name,
            is_verified=account.is_verified,
            verification_sent=result.verification_sent,
        ),
        status_code=201,
    )


@router.post("/verify-email")
async def verify_email(
    body: VerifyEmailRequest,
    accounts: AccountService = Depends(get_account_service),
) -> JSONResponse:
    account = await accounts.verify_by_token(body.token)
    return _json(
        VerifyEmailResponse(
            verified=True, redirect_to=post_verification_redirect(account.role)
        )
    )


@router.post("/verify-otp")
async def verify_otp(
    body: VerifyOtpRequest,
    accounts: AccountService = Depends(get_account_service),
) -> JSONResponse:
    account = await accounts.verify_by_otp(body.email, body.otp)
    return _json(
        VerifyOtpResponse(verified=True, user=UserResponse.from_account(account))
    )


@router.post("/resend-otp")
async def resend_otp(
    body: ResendOtpRequest,
    accounts: AccountService = Depends(get_account_service),
) -> JSONResponse:
    await accounts.resend_otp(body.email)
    return _json(MessageResponse(success=True, message="Verification code sent."))


# ── Sessions ─────────────────────────────────────────────────────────────────


@router.post("/login")
async def login(
    body: LoginRequest,
    sessions: SessionService = Depends(get_session_service),
    settings: AppSettings = Depends(get_settings),
) -> JSONResponse:
    result = await sessions.login(
        body.email, body.password, remember_me=body.remember_me
    )
    response = _json(
        LoginResponse(
            user=UserResponse.from_account(result.account),
            tokens=TokensResponse.from_pair(result.tokens),
            redirect_to=result.redirect_to,
        )
    )
    set_session_cookies(response, result.tokens, settings)
    return response


@router.post("/refresh")
async def refresh(
    refresh_token: Optional[str] = Cookie(default=None, alias=REFRESH_COOKIE),
    sessions: SessionService = Depends(get_session_service),
    settings: AppSettings = Depends(get_settings),
) -> JSONResponse:
    _, pair = await sessions.refresh(refresh_token)
    response = _json(RefreshResponse(tokens=TokensResponse.from_pair(pair)))
    set_session_cookies(response, pair, settings)
    return response


@router.post("/logout")
async def logout(
    request: Request,
    settings: AppSettings = Depends(get_settings),
) -> JSONResponse:
    identity: Optional[Identity] = getattr(request.state, "identity", None)
    if identity is not None:
        log.info("logout", user_id=identity.account_id)

    response = _json(MessageResponse(success=True, message="Logged out."))
    clear_session_cookies(response, settings)
    return response


@router.get("/me")
async def me(
    identity: Identity = Depends(get_current_identity),
    sessions: SessionService = Depends(get_session_service),
) -> JSONResponse:
    account = await sessions.current_account(identity)
    return _json(MeResponse(user=UserResponse.from_account(account)))


# ── Password recovery ────────────────────────────────────────────────────────


@router.post("/forgot-password")
async def forgot_password(
    body: ForgotPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
) -> JSONResponse:
    await accounts.request_password_reset(body.email)
    return _json(MessageResponse(success=True, message=FORGOT_PASSWORD_MESSAGE))


@router.post("/verify-reset-otp")
async def verify_reset_otp(
    body: VerifyResetOtpRequest,
    accounts: AccountService = Depends(get_account_service),
    settings: AppSettings = Depends(get_settings),
) -> JSONResponse:
    reset_token = await accounts.verify_reset_otp(body.email, body.otp)
    return _json(
        ResetTokenResponse(
            reset_token=reset_token,
            expires_in=settings.auth.reset_token_ttl_seconds,
        )
    )


@router.post("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    accounts: AccountService = Depends(get_account_service),
) -> JSONResponse:
    await accounts.complete_reset(body.token, body.password)
    return _json(
        MessageResponse(success=True, message="Password has been reset.")
    )


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
    accounts: AccountService = Depends(get_account_service),
) -> JSONResponse:
    await accounts.change_password(
        identity.account_id, body.current_password, body.new_password
    )
    return _json(MessageResponse(success=True, message="Password updated."))
