"""
FastAPI application factory.
create_app() is the single entry point for building the app.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.asynchronous.mongo_client import AsyncMongoClient

from config import AppSettings
from errors import register_error_handlers
from infrastructure.email.protocol import EmailProvider
from infrastructure.email.zeptomail import ZeptoMailProvider
from infrastructure.http_client import HttpClient
from infrastructure.onboarding import (
    ONBOARDING_COLLECTION,
    MongoOnboardingStateReader,
    OnboardingStateReader,
)
from middleware.route_guard import RouteGuardMiddleware
from repositories.account_repository import USERS_COLLECTION, AccountRepository
from routes.auth_routes import router as auth_router
from routes.health_routes import router as health_router
from services.account_service import AccountService
from services.session_service import SessionService
from services.token_service import TokenService
from shared.crypto import PasswordHasher
from shared.logging import get_logger, setup_logging

log = get_logger(__name__)


def build_services(
    app: FastAPI,
    settings: AppSettings,
    *,
    repository: AccountRepository,
    email_provider: EmailProvider,
    onboarding_reader: OnboardingStateReader,
) -> None:
    """Construct the auth components and store them on app.state.

    TokenService raises here when no signing material is configured, which
    aborts startup.
    """
    hasher = PasswordHasher.from_settings(settings.auth)
    token_service = TokenService(settings.jwt)

    app.state.settings = settings
    app.state.token_service = token_service
    app.state.account_service = AccountService(
        repository, hasher, email_provider, settings.auth
    )
    app.state.session_service = SessionService(
        repository, hasher, token_service, onboarding_reader
    )


def configure_app(app: FastAPI, settings: AppSettings) -> None:
    """Install middleware, error handlers and routers."""
    # added first so CORS wraps it and guard rejections still carry CORS headers
    app.add_middleware(RouteGuardMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(auth_router)


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create and return a fully configured FastAPI application."""
    if settings is None:
        settings = AppSettings()

    setup_logging(
        log_level=settings.logging.log_level,
        log_format="json" if settings.is_production else settings.logging.log_format,
        env=settings.env,
    )

    # Initialise Sentry before anything else so it captures startup errors
    if settings.sentry.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry.sentry_dsn,
            send_default_pii=settings.sentry.sentry_send_pii,
            traces_sample_rate=settings.sentry.sentry_traces_sample_rate,
            environment=settings.env,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────────
        mongo_client: AsyncMongoClient = AsyncMongoClient(
            settings.db.mongodb_uri, tz_aware=True
        )
        db = mongo_client[settings.db.db_name]
        app.state.mongo_client = mongo_client
        app.state.db = db
        http_client: Optional[HttpClient] = None

        try:
            repository = AccountRepository(db[USERS_COLLECTION])
            await repository.ensure_indexes()

            verification_ttl_hours = settings.auth.verification_token_ttl_seconds // 3600
            http_client = HttpClient(timeout=10.0)
            email_provider = ZeptoMailProvider(
                settings.email,
                http_client,
                app_url=settings.app_url,
                app_name=settings.app_name,
                otp_ttl_minutes=settings.auth.otp_ttl_seconds // 60,
                verification_ttl_hours=verification_ttl_hours,
            )
            build_services(
                app,
                settings,
                repository=repository,
                email_provider=email_provider,
                onboarding_reader=MongoOnboardingStateReader(
                    db[ONBOARDING_COLLECTION]
                ),
            )
            log.info("app_started", env=settings.env, db_name=settings.db.db_name)

            yield
        finally:
            # ── Shutdown ─────────────────────────────────────────────────────
            if http_client is not None:
                await http_client.aclose()
            await mongo_client.close()

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=settings.docs_url,
        redoc_url=None,
        lifespan=lifespan,
    )
    configure_app(app, settings)

    return app
