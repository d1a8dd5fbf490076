"""
Application error hierarchy and FastAPI exception handlers.

AppError is the base for all typed errors. The global exception handler
converts AppError subclasses to consistent JSON responses.

Authentication failures are deliberately coarse: callers only ever see the
generic kind (invalid credentials, invalid or expired token/OTP). The
specific reason is logged server-side by the code that raises.

Non-AppError exceptions bubble up as 500s (with Sentry reporting in production).
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shared.logging import get_logger

log = get_logger(__name__)


class AppError(Exception):
    """Base application error. All typed errors inherit from this."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details

    def to_dict(self) -> dict:
        payload: dict = {"error": self.message, "code": self.error_code}
        if self.field is not None:
            payload["field"] = self.field
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    status_code = 400
    error_code = "validation_failed"


class InvalidOrExpiredTokenError(AppError):
    status_code = 400
    error_code = "invalid_or_expired_token"

    def __init__(self, message: str = "Invalid or expired token", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class InvalidOrExpiredOTPError(AppError):
    status_code = 400
    error_code = "invalid_or_expired_otp"

    def __init__(self, message: str = "Invalid or expired OTP", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class AuthenticationError(AppError):
    status_code = 401
    error_code = "authentication_error"


class InvalidCredentialsError(AuthenticationError):
    error_code = "invalid_credentials"

    def __init__(
        self, message: str = "Invalid email or password", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)


class AccountDeactivatedError(AuthenticationError):
    error_code = "account_deactivated"

    def __init__(
        self, message: str = "Account has been deactivated", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)


class EmailNotVerifiedError(AuthenticationError):
    """Intentionally informative: the client routes to the verification screen."""

    error_code = "email_not_verified"

    def __init__(
        self, message: str = "Please verify your email before logging in", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)


class InvalidTokenError(AuthenticationError):
    """Covers expired, tampered and malformed bearer tokens alike."""

    error_code = "invalid_token"

    def __init__(self, message: str = "Invalid or expired token", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ForbiddenError(AppError):
    status_code = 403
    error_code = "forbidden"


class NotFoundOrAlreadyVerifiedError(AppError):
    status_code = 404
    error_code = "not_found_or_already_verified"

    def __init__(
        self, message: str = "User not found or already verified", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)


class DuplicateAccountError(AppError):
    status_code = 409
    error_code = "duplicate_account"

    def __init__(
        self, message: str = "User already exists with this email", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)


class InternalError(AppError):
    status_code = 500
    error_code = "internal_error"


class EmailDeliveryError(AppError):
    status_code = 503
    error_code = "email_delivery_failed"


def _validation_messages(exc: RequestValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        msg = err.get("msg", "Invalid value")
        # pydantic prefixes messages raised from validators
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, ") :]
        messages.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return messages


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = ValidationError("Validation failed", details=_validation_messages(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        # Sentry integration: if sentry_sdk is initialized it will auto-capture
        # unhandled exceptions before this handler fires.
        log.error(
            "unhandled_exception",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "An internal server error occurred.", "code": "internal_error"},
        )
