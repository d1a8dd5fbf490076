"""Unit tests for AccountRepository against a mocked async collection."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from errors import DuplicateAccountError
from repositories.account_repository import AccountRepository, secret_path
from schemas.models.account import AccountDoc, Role, SecretKind, VerificationSecret

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _doc(**overrides) -> dict:
    doc = {
        "_id": ObjectId(),
        "email": "alice@example.com",
        "password_hash": "$argon2id$...",
        "role": "mentor",
        "first_name": "Alice",
        "last_name": "Liddell",
        "is_verified": False,
        "is_active": True,
        "secrets": {},
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def collection():
    col = MagicMock()
    col.find_one = AsyncMock(return_value=None)
    col.find_one_and_update = AsyncMock(return_value=None)
    col.insert_one = AsyncMock()
    col.update_one = AsyncMock()
    col.create_index = AsyncMock()
    return col


@pytest.fixture
def repository(collection) -> AccountRepository:
    return AccountRepository(collection)


def test_secret_path():
    assert secret_path(SecretKind.PASSWORD_RESET_OTP) == "secrets.password_reset_otp"
    assert secret_path("signup_otp") == "secrets.signup_otp"


class TestIndexes:
    async def test_unique_email(self, repository, collection):
        await repository.ensure_indexes()
        collection.create_index.assert_any_await([("email", 1)], unique=True)

    async def test_token_lookup_indexes(self, repository, collection):
        await repository.ensure_indexes()
        paths = [c.args[0][0][0] for c in collection.create_index.await_args_list]
        assert "secrets.email_verification.token_hash" in paths
        assert "secrets.password_reset_token.token_hash" in paths


class TestFind:
    async def test_find_by_email_normalizes(self, repository, collection):
        collection.find_one.return_value = _doc()
        account = await repository.find_by_email("  Alice@Example.COM ")
        collection.find_one.assert_awaited_once_with({"email": "alice@example.com"})
        assert isinstance(account, AccountDoc)
        assert account.role == "mentor"

    async def test_find_by_email_missing(self, repository):
        assert await repository.find_by_email("nobody@example.com") is None

    async def test_find_by_id_converts_string(self, repository, collection):
        oid = ObjectId()
        collection.find_one.return_value = _doc(_id=oid)
        account = await repository.find_by_id(str(oid))
        collection.find_one.assert_awaited_once_with({"_id": oid})
        assert account.id == oid

    async def test_find_by_id_invalid_skips_query(self, repository, collection):
        assert await repository.find_by_id("not-an-object-id") is None
        collection.find_one.assert_not_awaited()


class TestInsert:
    def _account(self) -> AccountDoc:
        return AccountDoc(
            email="alice@example.com",
            password_hash="h",
            role=Role.STUDENT,
            first_name="Alice",
            last_name="Liddell",
        )

    async def test_returns_copy_with_id(self, repository, collection):
        oid = ObjectId()
        collection.insert_one.return_value = MagicMock(inserted_id=oid)
        saved = await repository.insert(self._account())
        assert saved.id == oid
        inserted = collection.insert_one.await_args.args[0]
        assert "_id" not in inserted
        assert inserted["role"] == "student"

    async def test_duplicate_key_becomes_duplicate_account(self, repository, collection):
        collection.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        with pytest.raises(DuplicateAccountError):
            await repository.insert(self._account())


class TestSecrets:
    def _secret(self, kind=SecretKind.SIGNUP_OTP) -> VerificationSecret:
        return VerificationSecret(
            kind=kind,
            token_hash="f" * 64,
            expires_at=NOW + timedelta(minutes=10),
            issued_at=NOW,
        )

    async def test_issue_secret_overwrites_slot(self, repository, collection):
        collection.find_one_and_update.return_value = _doc()
        match = {"email": "alice@example.com", "is_verified": False}
        result = await repository.issue_secret(match, self._secret(), NOW)

        assert result is not None
        query, update = collection.find_one_and_update.await_args.args
        assert query == match
        assert update["$set"]["secrets.signup_otp"]["token_hash"] == "f" * 64
        assert update["$set"]["updated_at"] == NOW
        assert (
            collection.find_one_and_update.await_args.kwargs["return_document"]
            is ReturnDocument.AFTER
        )

    async def test_issue_secret_no_match(self, repository):
        assert await repository.issue_secret({"email": "x"}, self._secret(), NOW) is None

    async def test_consume_secret_filter_and_update(self, repository, collection):
        collection.find_one_and_update.return_value = _doc(is_verified=True)
        result = await repository.consume_secret(
            SecretKind.SIGNUP_OTP,
            "a" * 64,
            NOW,
            match={"email": "alice@example.com", "is_verified": False},
            set_fields={"is_verified": True},
        )

        assert result.is_verified is True
        query, update = collection.find_one_and_update.await_args.args
        assert query == {
            "email": "alice@example.com",
            "is_verified": False,
            "secrets.signup_otp.token_hash": "a" * 64,
            # exclusive expiry: a code presented at expires_at does not match
            "secrets.signup_otp.expires_at": {"$gt": NOW},
        }
        assert update == {
            "$set": {"is_verified": True, "updated_at": NOW},
            "$unset": {"secrets.signup_otp": ""},
        }

    async def test_consume_secret_without_match(self, repository, collection):
        await repository.consume_secret(SecretKind.PASSWORD_RESET_TOKEN, "b" * 64, NOW)
        query, update = collection.find_one_and_update.await_args.args
        assert query == {
            "secrets.password_reset_token.token_hash": "b" * 64,
            "secrets.password_reset_token.expires_at": {"$gt": NOW},
        }
        assert update["$set"] == {"updated_at": NOW}

    async def test_consume_secret_miss_returns_none(self, repository):
        assert await repository.consume_secret(SecretKind.SIGNUP_OTP, "c", NOW) is None


class TestPassword:
    async def test_update_password_unconditional(self, repository, collection):
        oid = ObjectId()
        collection.update_one.return_value = MagicMock(modified_count=1)
        assert await repository.update_password(str(oid), "new-hash", NOW) is True
        query, update = collection.update_one.await_args.args
        assert query == {"_id": oid}
        assert update == {"$set": {"password_hash": "new-hash", "updated_at": NOW}}

    async def test_update_password_expected_hash(self, repository, collection):
        oid = ObjectId()
        collection.update_one.return_value = MagicMock(modified_count=0)
        ok = await repository.update_password(oid, "new", NOW, expected_hash="old")
        assert ok is False
        query, _ = collection.update_one.await_args.args
        assert query == {"_id": oid, "password_hash": "old"}

    async def test_touch_last_login(self, repository, collection):
        oid = ObjectId()
        await repository.touch_last_login(oid, NOW)
        collection.update_one.assert_awaited_once_with(
            {"_id": oid}, {"$set": {"last_login_at": NOW}}
        )
