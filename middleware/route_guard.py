"""
Route guard — per-request authentication and role gate.

Every request path falls into one route class:

    PUBLIC      — no checks
    VERIFY_OTP  — always reachable, even by a half-authenticated browser
    AUTH_ONLY   — login/signup style pages; an authenticated caller is sent away
    PROTECTED   — needs a valid access token
    ONBOARDING  — needs a valid access token with role ``mentor``

The decision is a pure function of path and token (signature and expiry are
checked locally; the account store is never consulted). Browser pages get
redirects, ``/api/`` paths get the JSON error shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import quote

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from errors import AppError, ForbiddenError, InvalidTokenError
from schemas.models.account import Role
from services.token_service import Identity, TokenService
from shared.logging import get_logger

log = get_logger(__name__)

ACCESS_TOKEN_COOKIE = "accessToken"


class RouteClass(str, Enum):
    PUBLIC = "public"
    VERIFY_OTP = "verify_otp"
    AUTH_ONLY = "auth_only"
    PROTECTED = "protected"
    ONBOARDING = "onboarding"


def _under(path: str, prefix: str) -> bool:
    """True when *path* is *prefix* or lies below it, by whole segments."""
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


@dataclass(frozen=True)
class RouteTable:
    auth_only: tuple[str, ...] = (
        "/login",
        "/signup",
        "/forgot-password",
        "/reset-password",
        "/verify-email",
    )
    verify_otp: tuple[str, ...] = ("/verify-otp",)
    protected: tuple[str, ...] = (
        "/dashboard",
        "/profile",
        "/sessions",
        "/settings",
        "/api/auth/me",
        "/api/auth/change-password",
    )
    onboarding: tuple[str, ...] = ("/onboarding",)
    api_prefix: str = "/api"
    # endpoints under here are public unless listed in `protected`
    public_api_prefixes: tuple[str, ...] = ("/api/auth",)
    login_path: str = "/login"
    landing_path: str = "/dashboard"

    def is_api(self, path: str) -> bool:
        return _under(path, self.api_prefix)

    def classify(self, path: str) -> RouteClass:
        if any(_under(path, p) for p in self.verify_otp):
            return RouteClass.VERIFY_OTP
        if any(_under(path, p) for p in self.onboarding):
            return RouteClass.ONBOARDING
        if any(_under(path, p) for p in self.auth_only):
            return RouteClass.AUTH_ONLY
        if any(_under(path, p) for p in self.protected):
            return RouteClass.PROTECTED
        if self.is_api(path):
            if any(_under(path, p) for p in self.public_api_prefixes):
                return RouteClass.PUBLIC
            return RouteClass.PROTECTED
        return RouteClass.PUBLIC


DEFAULT_ROUTE_TABLE = RouteTable()


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of evaluate(): let the request through, redirect, or reject."""

    route: RouteClass
    identity: Optional[Identity] = None
    redirect_to: Optional[str] = None
    status_code: int = 200
    error: Optional[AppError] = None

    @property
    def allowed(self) -> bool:
        return self.redirect_to is None and self.error is None


def extract_token(authorization: Optional[str], cookie: Optional[str]) -> Optional[str]:
    """Bearer header wins over the access-token cookie."""
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if token:
            return token
    return cookie or None


def _login_redirect(table: RouteTable, path: str, query: str) -> str:
    target = f"{path}?{query}" if query else path
    return f"{table.login_path}?redirect={quote(target, safe='/')}"


def evaluate(
    path: str,
    query: str,
    token: Optional[str],
    token_service: TokenService,
    table: RouteTable = DEFAULT_ROUTE_TABLE,
) -> GuardDecision:
    route = table.classify(path)

    identity: Optional[Identity] = None
    if token:
        try:
            identity = token_service.verify_access(token)
        except InvalidTokenError:
            identity = None

    if route in (RouteClass.PUBLIC, RouteClass.VERIFY_OTP):
        return GuardDecision(route=route, identity=identity)

    if route is RouteClass.AUTH_ONLY:
        if identity is not None:
            return GuardDecision(
                route=route,
                identity=identity,
                redirect_to=table.landing_path,
                status_code=303,
            )
        return GuardDecision(route=route)

    api = table.is_api(path)
    if identity is None:
        if api:
            return GuardDecision(
                route=route,
                status_code=InvalidTokenError.status_code,
                error=InvalidTokenError("Authentication required"),
            )
        return GuardDecision(
            route=route,
            redirect_to=_login_redirect(table, path, query),
            status_code=307,
        )

    if route is RouteClass.ONBOARDING and identity.role is not Role.MENTOR:
        if api:
            return GuardDecision(
                route=route,
                identity=identity,
                status_code=ForbiddenError.status_code,
                error=ForbiddenError("Mentor access required"),
            )
        return GuardDecision(
            route=route,
            identity=identity,
            redirect_to=table.landing_path,
            status_code=307,
        )

    return GuardDecision(route=route, identity=identity)


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """Applies evaluate() to every request before it reaches a handler.

    The verified identity (or None) is stored on ``request.state.identity``.
    The token service is read from ``app.state`` at request time because the
    lifespan builds it after middleware is installed.
    """

    def __init__(self, app, table: RouteTable = DEFAULT_ROUTE_TABLE) -> None:
        super().__init__(app)
        self.table = table

    async def dispatch(self, request: Request, call_next) -> Response:
        token = extract_token(
            request.headers.get("Authorization"),
            request.cookies.get(ACCESS_TOKEN_COOKIE),
        )
        decision = evaluate(
            request.url.path,
            request.url.query,
            token,
            request.app.state.token_service,
            self.table,
        )

        if decision.error is not None:
            log.info(
                "route_guard_rejected",
                path=request.url.path,
                route=decision.route.value,
                status_code=decision.status_code,
            )
            return JSONResponse(
                status_code=decision.status_code, content=decision.error.to_dict()
            )
        if decision.redirect_to is not None:
            log.debug(
                "route_guard_redirect",
                path=request.url.path,
                route=decision.route.value,
                location=decision.redirect_to,
            )
            return RedirectResponse(decision.redirect_to, status_code=decision.status_code)

        request.state.identity = decision.identity
        return await call_next(request)
