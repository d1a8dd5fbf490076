"""
Account persistence over the `users` MongoDB collection.

Every state transition that depends on a one-time secret goes through
consume_secret(), a single find_one_and_update whose filter re-checks the
secret hash and expiry at write time. Two requests racing on the same code
can both read it as valid, but only one of them matches the filter; the
other gets None back and reports "invalid or expired".
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from errors import DuplicateAccountError
from schemas.models.account import AccountDoc, SecretKind, VerificationSecret
from shared.logging import get_logger

log = get_logger(__name__)

USERS_COLLECTION = "users"


def secret_path(kind: SecretKind) -> str:
    """Dotted document path of the secret slot for *kind*."""
    return f"secrets.{SecretKind(kind).value}"


def _to_object_id(account_id: Any) -> Optional[ObjectId]:
    if isinstance(account_id, ObjectId):
        return account_id
    if isinstance(account_id, str) and ObjectId.is_valid(account_id):
        return ObjectId(account_id)
    return None


class AccountRepository:
    """Async repository for account documents."""

    def __init__(self, collection) -> None:
        self._col = collection

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("email", ASCENDING)], unique=True)
        for kind in (SecretKind.EMAIL_VERIFICATION, SecretKind.PASSWORD_RESET_TOKEN):
            # token-only lookups (no email in the request)
            await self._col.create_index(
                [(f"{secret_path(kind)}.token_hash", ASCENDING)], sparse=True
            )

    async def find_by_email(self, email: str) -> Optional[AccountDoc]:
        doc = await self._col.find_one({"email": email.strip().lower()})
        return AccountDoc.from_mongo(doc)

    async def find_by_id(self, account_id: Any) -> Optional[AccountDoc]:
        oid = _to_object_id(account_id)
        if oid is None:
            return None
        doc = await self._col.find_one({"_id": oid})
        return AccountDoc.from_mongo(doc)

    async def insert(self, account: AccountDoc) -> AccountDoc:
        """Insert *account*; the unique email index rejects duplicates."""
        data = account.to_mongo()
        try:
            result = await self._col.insert_one(data)
        except DuplicateKeyError as e:
            log.warning("account_insert_failed", reason="duplicate_email")
            raise DuplicateAccountError() from e
        return account.model_copy(update={"id": result.inserted_id})

    async def issue_secret(
        self,
        match: dict[str, Any],
        secret: VerificationSecret,
        now: datetime,
    ) -> Optional[AccountDoc]:
        """Store *secret* on the account matching *match*, replacing any
        previous secret of the same kind.

        Returns the updated account, or None when nothing matched.
        """
        doc = await self._col.find_one_and_update(
            match,
            {
                "$set": {
                    secret_path(secret.kind): secret.model_dump(),
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.AFTER,
        )
        return AccountDoc.from_mongo(doc)

    async def consume_secret(
        self,
        kind: SecretKind,
        token_hash: str,
        now: datetime,
        *,
        match: Optional[dict[str, Any]] = None,
        set_fields: Optional[dict[str, Any]] = None,
    ) -> Optional[AccountDoc]:
        """Atomically match a live secret, clear it and apply *set_fields*.

        The filter requires ``expires_at > now``, so a secret presented at
        its expiry instant no longer matches.

        Returns the updated account, or None when the secret was absent,
        wrong, expired or already consumed.
        """
        path = secret_path(kind)
        query = {
            **(match or {}),
            f"{path}.token_hash": token_hash,
            f"{path}.expires_at": {"$gt": now},
        }
        update: dict[str, Any] = {
            "$set": {**(set_fields or {}), "updated_at": now},
            "$unset": {path: ""},
        }
        doc = await self._col.find_one_and_update(
            query, update, return_document=ReturnDocument.AFTER
        )
        return AccountDoc.from_mongo(doc)

    async def update_password(
        self,
        account_id: Any,
        password_hash: str,
        now: datetime,
        *,
        expected_hash: Optional[str] = None,
    ) -> bool:
        """Replace the password hash; with *expected_hash* only if it is
        still the stored one."""
        query: dict[str, Any] = {"_id": _to_object_id(account_id)}
        if expected_hash is not None:
            query["password_hash"] = expected_hash
        result = await self._col.update_one(
            query,
            {"$set": {"password_hash": password_hash, "updated_at": now}},
        )
        return result.modified_count > 0

    async def touch_last_login(self, account_id: Any, now: datetime) -> None:
        await self._col.update_one(
            {"_id": _to_object_id(account_id)},
            {"$set": {"last_login_at": now}},
        )
