"""Startup and shutdown of the application built by create_app()."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app import create_app
from config import (
    AppSettings,
    DatabaseSettings,
    EmailSettings,
    LoggingSettings,
    SentrySettings,
)


@pytest.fixture
def settings(jwt_settings, auth_settings) -> AppSettings:
    return AppSettings(
        env="test",
        db=DatabaseSettings(mongodb_uri="mongodb://localhost:27017/", _env_file=None),
        jwt=jwt_settings,
        auth=auth_settings,
        email=EmailSettings(_env_file=None),
        logging=LoggingSettings(_env_file=None),
        sentry=SentrySettings(_env_file=None),
        _env_file=None,
    )


@pytest.fixture
def mongo_client(mocker):
    client = MagicMock()
    client.close = AsyncMock()
    mocker.patch("app.AsyncMongoClient", return_value=client)
    return client


class TestLifespan:
    def test_closes_clients_on_shutdown(self, mocker, settings, mongo_client):
        mocker.patch("app.AccountRepository.ensure_indexes", AsyncMock())
        aclose = mocker.patch("app.HttpClient.aclose", AsyncMock())

        with TestClient(create_app(settings)) as client:
            assert client.app.state.db is mongo_client[settings.db.db_name]

        aclose.assert_awaited_once()
        mongo_client.close.assert_awaited_once()

    def test_closes_mongo_when_startup_fails(self, mocker, settings, mongo_client):
        mocker.patch(
            "app.AccountRepository.ensure_indexes",
            AsyncMock(side_effect=RuntimeError("index build failed")),
        )

        with pytest.raises(RuntimeError, match="index build failed"):
            with TestClient(create_app(settings)):
                pass

        mongo_client.close.assert_awaited_once()

    def test_verification_email_lifetime_follows_settings(
        self, mocker, settings, mongo_client
    ):
        mocker.patch("app.AccountRepository.ensure_indexes", AsyncMock())
        provider = mocker.patch("app.ZeptoMailProvider")
        settings.auth.verification_token_ttl_seconds = 2 * 3600

        with TestClient(create_app(settings)):
            pass

        assert provider.call_args.kwargs["verification_ttl_hours"] == 2
