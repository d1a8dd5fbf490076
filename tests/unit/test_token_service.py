"""Unit tests for TokenService."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from config import JWTSettings
from errors import InvalidTokenError
from schemas.models.account import Role
from services.token_service import Identity, TokenService

IDENTITY = Identity(
    account_id="65a000000000000000000001",
    email="alice@example.com",
    role=Role.MENTOR,
)


def _past_clock(seconds_ago: int):
    fixed = datetime.now(timezone.utc) - timedelta(seconds=seconds_ago)
    return lambda: fixed


class TestRoundTrip:
    def test_access_round_trip(self, token_service):
        pair = token_service.issue(IDENTITY)
        assert token_service.verify_access(pair.access_token) == IDENTITY

    def test_refresh_round_trip(self, token_service):
        pair = token_service.issue(IDENTITY)
        assert token_service.verify_refresh(pair.refresh_token) == IDENTITY

    @pytest.mark.parametrize("role", list(Role))
    def test_every_role(self, token_service, role):
        identity = Identity(account_id="x1", email="x@example.com", role=role)
        pair = token_service.issue(identity)
        assert token_service.verify_access(pair.access_token).role is role

    def test_claims(self, token_service, jwt_settings):
        pair = token_service.issue(IDENTITY)
        claims = jwt.decode(
            pair.access_token,
            jwt_settings.jwt_secret,
            algorithms=["HS256"],
            audience="mentormatch-users",
        )
        assert claims["sub"] == IDENTITY.account_id
        assert claims["email"] == IDENTITY.email
        assert claims["role"] == "mentor"
        assert claims["type"] == "access"
        assert claims["iss"] == "mentormatch"
        assert claims["exp"] - claims["iat"] == 900


class TestLifetimes:
    def test_default_refresh_ttl(self, token_service):
        pair = token_service.issue(IDENTITY)
        assert pair.access_expires_in == 900
        assert pair.refresh_expires_in == 604800

    def test_remember_me_refresh_ttl(self, token_service):
        pair = token_service.issue(IDENTITY, remember_me=True)
        assert pair.refresh_expires_in == 2592000

    def test_refresh_grant_records_remember_me(self, token_service):
        long_lived = token_service.issue(IDENTITY, remember_me=True)
        grant = token_service.verify_refresh_grant(long_lived.refresh_token)
        assert grant.identity == IDENTITY
        assert grant.remember_me is True

        short_lived = token_service.issue(IDENTITY)
        assert token_service.verify_refresh_grant(short_lived.refresh_token).remember_me is False

    def test_access_token_has_no_remember_claim(self, token_service, jwt_settings):
        pair = token_service.issue(IDENTITY, remember_me=True)
        claims = jwt.decode(
            pair.access_token,
            jwt_settings.jwt_secret,
            algorithms=["HS256"],
            audience=jwt_settings.jwt_audience,
        )
        assert "remember" not in claims

    def test_expired_access_token_fails(self, jwt_settings):
        service = TokenService(jwt_settings, clock=_past_clock(901))
        pair = service.issue(IDENTITY)
        with pytest.raises(InvalidTokenError):
            TokenService(jwt_settings).verify_access(pair.access_token)

    def test_refresh_outlives_access(self, jwt_settings):
        pair = TokenService(jwt_settings, clock=_past_clock(901)).issue(IDENTITY)
        assert TokenService(jwt_settings).verify_refresh(pair.refresh_token) == IDENTITY


class TestRejection:
    def test_access_token_not_accepted_as_refresh(self, token_service):
        pair = token_service.issue(IDENTITY)
        with pytest.raises(InvalidTokenError):
            token_service.verify_refresh(pair.access_token)

    def test_refresh_token_not_accepted_as_access(self, jwt_settings):
        # same secret for both kinds: only the type claim tells them apart
        settings = jwt_settings.model_copy(update={"jwt_refresh_secret": ""})
        service = TokenService(settings)
        pair = service.issue(IDENTITY)
        with pytest.raises(InvalidTokenError):
            service.verify_access(pair.refresh_token)

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_malformed(self, token_service, token):
        with pytest.raises(InvalidTokenError):
            token_service.verify_access(token)

    def test_tampered_signature(self, token_service):
        token = token_service.issue(IDENTITY).access_token
        head, body, sig = token.split(".")
        flipped = "A" if sig[5] != "A" else "B"
        tampered = ".".join([head, body, sig[:5] + flipped + sig[6:]])
        with pytest.raises(InvalidTokenError):
            token_service.verify_access(tampered)

    def test_wrong_secret(self, token_service, jwt_settings):
        other = TokenService(
            jwt_settings.model_copy(update={"jwt_secret": "another-secret-0123456789abcdefghij"})
        )
        with pytest.raises(InvalidTokenError):
            token_service.verify_access(other.issue(IDENTITY).access_token)

    def test_wrong_audience(self, token_service, jwt_settings):
        other = TokenService(jwt_settings.model_copy(update={"jwt_audience": "someone-else"}))
        with pytest.raises(InvalidTokenError):
            token_service.verify_access(other.issue(IDENTITY).access_token)

    def test_expired_and_tampered_are_indistinguishable(self, jwt_settings, token_service):
        expired = TokenService(jwt_settings, clock=_past_clock(901)).issue(IDENTITY)
        with pytest.raises(InvalidTokenError) as e1:
            token_service.verify_access(expired.access_token)
        with pytest.raises(InvalidTokenError) as e2:
            token_service.verify_access("garbage")
        assert e1.value.to_dict() == e2.value.to_dict()


class TestConfiguration:
    def test_missing_secret_is_startup_error(self):
        settings = JWTSettings(
            jwt_secret="",
            jwt_refresh_secret="",
            jwt_private_key="",
            jwt_public_key="",
            _env_file=None,
        )
        with pytest.raises(RuntimeError):
            TokenService(settings)

    def test_rs256(self):
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        private_pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode()
        public_pem = key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()
        service = TokenService(
            JWTSettings(
                jwt_private_key=private_pem,
                jwt_public_key=public_pem,
                _env_file=None,
            )
        )
        pair = service.issue(IDENTITY)
        assert jwt.get_unverified_header(pair.access_token)["alg"] == "RS256"
        assert service.verify_access(pair.access_token) == IDENTITY
