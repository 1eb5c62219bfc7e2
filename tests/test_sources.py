from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from guest import GuestStore
from models import Plan, TransactionCategory, TransactionType
from schemas import SignupIn, TransactionIn, TransactionUpdate
from services import TransactionFilters, UserService
from sources import (
    AccountTransactionSource,
    GuestTransactionSource,
    TransactionLimitReached,
    select_transaction_source,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _txn(amount_cents: int, day: int = 1) -> TransactionIn:
    return TransactionIn(
        type=TransactionType.expense,
        category=TransactionCategory.transport,
        amount_cents=amount_cents,
        occurred_on=date(2024, 4, day),
    )


def test_free_account_stops_at_plan_limit() -> None:
    session = make_session()
    user = UserService(session).create(SignupIn(name="Ana", email="ana@mail.com"))
    source = AccountTransactionSource(session, user.id)

    for i in range(10):
        source.add(_txn(100 + i))

    assert source.count() == 10
    assert source.remaining() == 0
    assert source.can_add().allowed is False
    with pytest.raises(TransactionLimitReached):
        source.add(_txn(999))
    assert source.count() == 10

    UserService(session).set_plan(user.id, Plan.premium)
    assert source.can_add().allowed is True
    assert source.remaining() is None
    source.add(_txn(999))
    assert source.count() == 11


def test_guest_source_caps_at_three() -> None:
    store = GuestStore({})
    store.enable()
    source = GuestTransactionSource(store)

    for day in (1, 2, 3):
        source.add(_txn(day * 100, day))

    check = source.can_add()
    assert check.allowed is False
    assert "3" in check.reason
    assert source.remaining() == 0
    with pytest.raises(TransactionLimitReached):
        source.add(_txn(400, 4))
    assert source.count() == 3


def test_guest_source_filters_and_orders_like_account_source() -> None:
    store = GuestStore({})
    store.enable()
    source = GuestTransactionSource(store)
    first = source.add(_txn(100, 1))
    source.add(_txn(300, 20))
    source.add(
        TransactionIn(
            type=TransactionType.income,
            category=TransactionCategory.other,
            custom_label="Refund",
            amount_cents=200,
            occurred_on=date(2024, 4, 10),
        )
    )

    assert [t.amount_cents for t in source.list()] == [300, 200, 100]
    expenses = source.list(TransactionFilters(type=TransactionType.expense))
    assert [t.amount_cents for t in expenses] == [300, 100]
    window = source.list(TransactionFilters(start=date(2024, 4, 5), end=date(2024, 4, 10)))
    assert [t.amount_cents for t in window] == [200]

    source.update(first.id, TransactionUpdate(amount_cents=150))
    source.remove(first.id)
    assert source.count() == 2


def test_select_transaction_source() -> None:
    session = make_session()
    store = GuestStore({})

    assert select_transaction_source(session, None, store) is None
    assert select_transaction_source(session, None, None) is None

    store.enable()
    guest = select_transaction_source(session, None, store)
    assert isinstance(guest, GuestTransactionSource)
    assert guest.is_guest is True

    account = select_transaction_source(session, "user-1", store)
    assert isinstance(account, AccountTransactionSource)
    assert account.is_guest is False
