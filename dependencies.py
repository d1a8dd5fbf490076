"""
FastAPI dependency providers.

All injectable dependencies are defined here as plain functions used with
FastAPI's Depends() system. Components are built once in the app lifespan
and stored on app.state; providers only hand them out.
"""

from __future__ import annotations

from fastapi import Request

from config import AppSettings
from errors import InvalidTokenError
from services.account_service import AccountService
from services.session_service import SessionService
from services.token_service import Identity


def get_settings(request: Request) -> AppSettings:
    """Return the AppSettings instance stored on app.state."""
    return request.app.state.settings


async def get_db(request: Request):
    """Return the async MongoDB database from app.state, or None before the
    lifespan has connected it."""
    return getattr(request.app.state, "db", None)


def get_account_service(request: Request) -> AccountService:
    return request.app.state.account_service


def get_session_service(request: Request) -> SessionService:
    return request.app.state.session_service


def get_current_identity(request: Request) -> Identity:
    """Identity verified by RouteGuardMiddleware for this request.

    Raises InvalidTokenError when the route was reachable without a token.
    """
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise InvalidTokenError("Authentication required")
    return identity
