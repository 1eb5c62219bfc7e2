"""Device-local storage for visitors who have not signed up yet.

Guest data lives in a plain string mapping with the same keys a browser's
local storage would use. The web layer backs the mapping with a signed cookie;
tests can use an ordinary ``dict``.
"""

from __future__ import annotations

import json
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Callable, MutableMapping

from pydantic import ValidationError

from models import GUEST_OWNER_ID
from schemas import TransactionIn, TransactionOut, TransactionUpdate

logger = logging.getLogger(__name__)

GUEST_STORAGE_KEY = "guest_transactions"
GUEST_MODE_KEY = "guest_mode_enabled"
MAX_GUEST_TRANSACTIONS = 3

_ID_ALPHABET = string.ascii_lowercase + string.digits


class GuestCapacityError(ValueError):
    pass


def _guest_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"guest_{int(time.time() * 1000)}_{suffix}"


class GuestStore:
    def __init__(self, storage: MutableMapping[str, str]) -> None:
        self.storage = storage

    def is_enabled(self) -> bool:
        return self.storage.get(GUEST_MODE_KEY) == "true"

    def enable(self) -> None:
        self.storage[GUEST_MODE_KEY] = "true"

    def disable(self) -> None:
        self.storage.pop(GUEST_MODE_KEY, None)
        self.storage.pop(GUEST_STORAGE_KEY, None)

    def list(self) -> list[TransactionOut]:
        raw = self.storage.get(GUEST_STORAGE_KEY)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            return [TransactionOut.model_validate(item) for item in items]
        except (json.JSONDecodeError, TypeError, ValidationError) as exc:
            logger.warning(f"guest_storage_unreadable: error={exc}")
            return []

    def _save(self, items: list[TransactionOut]) -> None:
        self.storage[GUEST_STORAGE_KEY] = json.dumps(
            [item.model_dump(mode="json") for item in items]
        )

    def count(self) -> int:
        return len(self.list())

    def can_add(self) -> bool:
        return self.count() < MAX_GUEST_TRANSACTIONS

    def add(self, data: TransactionIn) -> TransactionOut:
        existing = self.list()
        if len(existing) >= MAX_GUEST_TRANSACTIONS:
            raise GuestCapacityError(
                f"Guest mode is limited to {MAX_GUEST_TRANSACTIONS} transactions"
            )
        txn = TransactionOut(
            id=_guest_id(),
            owner_id=GUEST_OWNER_ID,
            created_at=datetime.now(timezone.utc),
            **data.model_dump(),
        )
        self._save([*existing, txn])
        return txn

    def get(self, transaction_id: str) -> TransactionOut:
        for item in self.list():
            if item.id == transaction_id:
                return item
        raise ValueError("Transaction not found")

    def update(self, transaction_id: str, data: TransactionUpdate) -> TransactionOut:
        existing = self.list()
        for index, item in enumerate(existing):
            if item.id == transaction_id:
                merged = data.apply_to(item.to_input())
                updated = item.model_copy(update=merged.model_dump())
                existing[index] = updated
                self._save(existing)
                return updated
        raise ValueError("Transaction not found")

    def remove(self, transaction_id: str) -> None:
        existing = self.list()
        remaining = [item for item in existing if item.id != transaction_id]
        if len(remaining) == len(existing):
            raise ValueError("Transaction not found")
        self._save(remaining)

    def list_by_month(self, year: int, month: int) -> list[TransactionOut]:
        return [
            item
            for item in self.list()
            if item.occurred_on.year == year and item.occurred_on.month == month
        ]


def migrate_guest_transactions(
    store: GuestStore, create: Callable[[TransactionIn], object]
) -> int:
    """Replay every guest transaction through ``create``.

    Failures are logged and skipped. Once at least one item made it across, the
    whole guest state is cleared, including items that failed to migrate.
    Returns the number of migrated transactions.
    """
    pending = store.list()
    if not pending:
        return 0

    migrated = 0
    for txn in pending:
        try:
            create(txn.to_input())
            migrated += 1
        except Exception as exc:
            logger.warning(f"guest_migration_item_failed: id={txn.id} error={exc}")

    if migrated > 0:
        store.disable()
    logger.info(f"guest_migration: total={len(pending)} migrated={migrated}")
    return migrated
