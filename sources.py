"""One transaction surface over the two places transactions can live.

Signed-in users read and write through the database; visitors in guest mode
read and write their device-local store. Callers pick a source once with
``select_transaction_source`` and never branch on the session mode again.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.orm import Session

from guest import MAX_GUEST_TRANSACTIONS, GuestCapacityError, GuestStore
from models import Plan
from plans import PlanCheck, can_create_transaction, remaining_transactions
from schemas import TransactionIn, TransactionOut, TransactionUpdate
from services import TransactionFilters, TransactionService, UserService


class TransactionLimitReached(ValueError):
    pass


class TransactionSource(ABC):
    is_guest: bool = False

    @abstractmethod
    def list(self, filters: Optional[TransactionFilters] = None) -> list[TransactionOut]:
        ...

    @abstractmethod
    def list_by_month(self, year: int, month: int) -> list[TransactionOut]:
        ...

    @abstractmethod
    def count(self) -> int:
        ...

    @abstractmethod
    def can_add(self) -> PlanCheck:
        ...

    @abstractmethod
    def remaining(self) -> Optional[int]:
        ...

    @abstractmethod
    def add(self, data: TransactionIn) -> TransactionOut:
        ...

    @abstractmethod
    def update(self, transaction_id: str, data: TransactionUpdate) -> TransactionOut:
        ...

    @abstractmethod
    def remove(self, transaction_id: str) -> None:
        ...


class AccountTransactionSource(TransactionSource):
    def __init__(self, session: Session, owner_id: str) -> None:
        self.owner_id = owner_id
        self.service = TransactionService(session, owner_id)
        self.users = UserService(session)

    @property
    def plan(self) -> Plan:
        return self.users.get_plan(self.owner_id)

    def list(self, filters: Optional[TransactionFilters] = None) -> list[TransactionOut]:
        return [TransactionOut.model_validate(t) for t in self.service.list(filters)]

    def list_by_month(self, year: int, month: int) -> list[TransactionOut]:
        return [
            TransactionOut.model_validate(t)
            for t in self.service.list_by_month(year, month)
        ]

    def count(self) -> int:
        return self.service.count()

    def can_add(self) -> PlanCheck:
        return can_create_transaction(self.plan, self.count())

    def remaining(self) -> Optional[int]:
        return remaining_transactions(self.plan, self.count())

    def add(self, data: TransactionIn) -> TransactionOut:
        check = self.can_add()
        if not check.allowed:
            raise TransactionLimitReached(check.reason)
        return TransactionOut.model_validate(self.service.create(data))

    def update(self, transaction_id: str, data: TransactionUpdate) -> TransactionOut:
        return TransactionOut.model_validate(self.service.update(transaction_id, data))

    def remove(self, transaction_id: str) -> None:
        self.service.delete(transaction_id)


class GuestTransactionSource(TransactionSource):
    is_guest = True

    def __init__(self, store: GuestStore) -> None:
        self.store = store

    def list(self, filters: Optional[TransactionFilters] = None) -> list[TransactionOut]:
        filters = filters or TransactionFilters()
        items = [
            t
            for t in self.store.list()
            if (not filters.type or t.type == filters.type)
            and (not filters.start or t.occurred_on >= filters.start)
            and (not filters.end or t.occurred_on <= filters.end)
        ]
        return sorted(items, key=lambda t: (t.occurred_on, t.created_at), reverse=True)

    def list_by_month(self, year: int, month: int) -> list[TransactionOut]:
        return self.store.list_by_month(year, month)

    def count(self) -> int:
        return self.store.count()

    def can_add(self) -> PlanCheck:
        if self.store.can_add():
            return PlanCheck(allowed=True)
        return PlanCheck(
            allowed=False,
            reason=(
                f"Guest mode is limited to {MAX_GUEST_TRANSACTIONS} transactions. "
                "Create an account to keep going."
            ),
        )

    def remaining(self) -> Optional[int]:
        return max(MAX_GUEST_TRANSACTIONS - self.count(), 0)

    def add(self, data: TransactionIn) -> TransactionOut:
        try:
            return self.store.add(data)
        except GuestCapacityError as exc:
            raise TransactionLimitReached(self.can_add().reason) from exc

    def update(self, transaction_id: str, data: TransactionUpdate) -> TransactionOut:
        return self.store.update(transaction_id, data)

    def remove(self, transaction_id: str) -> None:
        self.store.remove(transaction_id)


def select_transaction_source(
    session: Session, owner_id: Optional[str], guest_store: Optional[GuestStore]
) -> Optional[TransactionSource]:
    if owner_id:
        return AccountTransactionSource(session, owner_id)
    if guest_store is not None and guest_store.is_enabled():
        return GuestTransactionSource(guest_store)
    return None
