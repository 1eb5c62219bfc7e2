from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Goal, Plan, Transaction, TransactionCategory, TransactionType, User
from periods import local_today
from schemas import (
    AddMoneyIn,
    GoalIn,
    GoalUpdate,
    PreferencesUpdate,
    SignupIn,
    TransactionIn,
    TransactionUpdate,
)
from services import (
    GoalService,
    ReportService,
    TransactionFilters,
    TransactionService,
    UserService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_user(session, email: str = "ana@mail.com") -> User:
    return UserService(session).create(SignupIn(name="Ana", email=email))


def _txn(
    amount_cents: int,
    occurred_on: date,
    kind: TransactionType = TransactionType.expense,
    category: TransactionCategory = TransactionCategory.food,
) -> TransactionIn:
    return TransactionIn(
        type=kind,
        category=category,
        custom_label="Misc" if category == TransactionCategory.other else None,
        amount_cents=amount_cents,
        occurred_on=occurred_on,
    )


def test_transactions_are_owner_scoped_and_newest_first() -> None:
    session = make_session()
    ana = make_user(session)
    bob = make_user(session, "bob@mail.com")
    txns = TransactionService(session, ana.id)

    txns.create(_txn(100, date(2024, 1, 5)))
    txns.create(_txn(200, date(2024, 3, 1)))
    txns.create(_txn(300, date(2024, 2, 10)))
    TransactionService(session, bob.id).create(_txn(999, date(2024, 4, 1)))

    listed = txns.list()
    assert [t.amount_cents for t in listed] == [200, 300, 100]
    assert txns.count() == 3

    with pytest.raises(ValueError, match="not found"):
        TransactionService(session, bob.id).get(listed[0].id)


def test_month_and_type_filters_use_inclusive_bounds() -> None:
    session = make_session()
    user = make_user(session)
    txns = TransactionService(session, user.id)

    txns.create(_txn(1, date(2024, 1, 31)))
    txns.create(_txn(2, date(2024, 2, 1)))
    txns.create(_txn(3, date(2024, 2, 29), kind=TransactionType.income))
    txns.create(_txn(4, date(2024, 3, 1)))

    assert [t.amount_cents for t in txns.list_by_month(2024, 2)] == [3, 2]
    income_only = txns.list(TransactionFilters(type=TransactionType.income))
    assert [t.amount_cents for t in income_only] == [3]


def test_missing_index_falls_back_to_in_memory_sort(monkeypatch) -> None:
    session = make_session()
    user = make_user(session)
    txns = TransactionService(session, user.id)
    for day in (3, 20, 11):
        txns.create(_txn(day, date(2024, 1, day)))

    original = session.scalars
    calls = []

    def scalars(stmt, *args, **kwargs):
        calls.append(stmt)
        if len(calls) == 1:
            raise OperationalError(
                "SELECT", {}, Exception("The query requires an index")
            )
        return original(stmt, *args, **kwargs)

    monkeypatch.setattr(session, "scalars", scalars)

    assert [t.amount_cents for t in txns.list()] == [20, 11, 3]
    assert len(calls) == 2


def test_other_database_errors_propagate(monkeypatch) -> None:
    session = make_session()
    user = make_user(session)

    def scalars(stmt, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "scalars", scalars)

    with pytest.raises(OperationalError):
        TransactionService(session, user.id).list()


def test_update_merges_and_revalidates() -> None:
    session = make_session()
    user = make_user(session)
    txns = TransactionService(session, user.id)
    txn = txns.create(_txn(500, date(2024, 1, 5), category=TransactionCategory.other))
    created_at = txn.created_at

    updated = txns.update(txn.id, TransactionUpdate(category=TransactionCategory.health))
    assert updated.category == TransactionCategory.health
    assert updated.custom_label is None
    assert updated.amount_cents == 500
    assert updated.created_at == created_at

    with pytest.raises(ValueError):
        txns.update(txn.id, TransactionUpdate(category=TransactionCategory.other))
    with pytest.raises(ValueError, match="not found"):
        txns.update("nope", TransactionUpdate(amount_cents=1))


def test_goal_crud_and_ordering() -> None:
    session = make_session()
    user = make_user(session)
    goals = GoalService(session, user.id)

    late = goals.create(
        GoalIn(title=" Car ", target_amount_cents=5_000_000, deadline=date(2026, 1, 1))
    )
    soon = goals.create(
        GoalIn(title="Trip", target_amount_cents=300_000, deadline=date(2025, 6, 1))
    )

    assert [g.id for g in goals.list()] == [soon.id, late.id]
    assert late.title == "Car"
    assert late.current_amount_cents == 0

    goals.update(late.id, GoalUpdate(description="Used hatchback"))
    assert goals.get(late.id).description == "Used hatchback"
    with pytest.raises(ValueError):
        goals.update(late.id, GoalUpdate(title=None))

    goals.delete(soon.id)
    assert [g.id for g in goals.list()] == [late.id]


def test_add_money_from_balance_books_an_expense() -> None:
    session = make_session()
    user = make_user(session)
    goals = GoalService(session, user.id)
    goal = goals.create(
        GoalIn(title="Trip", target_amount_cents=300_000, deadline=date(2030, 6, 1))
    )

    goals.add_money(goal.id, AddMoneyIn(amount_cents=10_000))
    updated = goals.add_money(goal.id, AddMoneyIn(amount_cents=5_000, from_balance=True))

    assert updated.current_amount_cents == 15_000
    booked = TransactionService(session, user.id).list()
    assert len(booked) == 1
    assert booked[0].type == TransactionType.expense
    assert booked[0].category == TransactionCategory.other
    assert booked[0].custom_label == "Goal: Trip"
    assert booked[0].amount_cents == 5_000
    assert booked[0].occurred_on == local_today()


def test_add_money_is_atomic(monkeypatch) -> None:
    session = make_session()
    user = make_user(session)
    goals = GoalService(session, user.id)
    goal = goals.create(
        GoalIn(title="Trip", target_amount_cents=300_000, deadline=date(2030, 6, 1))
    )

    def failing_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(session, "commit", failing_commit)
    with pytest.raises(OperationalError):
        goals.add_money(goal.id, AddMoneyIn(amount_cents=5_000, from_balance=True))
    monkeypatch.undo()

    assert goals.get(goal.id).current_amount_cents == 0
    assert TransactionService(session, user.id).count() == 0


def test_duplicate_email_is_rejected() -> None:
    session = make_session()
    make_user(session)
    with pytest.raises(ValueError, match="already registered"):
        make_user(session, "ANA@mail.com")


def test_plan_and_preferences() -> None:
    session = make_session()
    user = make_user(session)
    users = UserService(session)

    assert users.get_plan(user.id) == Plan.free
    users.set_plan(user.id, Plan.premium, "sub_123")
    assert users.get_plan(user.id) == Plan.premium
    assert users.find_by_subscription("sub_123").id == user.id

    prefs = users.update_preferences(user.id, PreferencesUpdate(currency="USD"))
    assert prefs.currency.value == "USD"
    assert prefs.theme.value == "light"


def test_delete_account_removes_everything_owned() -> None:
    session = make_session()
    ana = make_user(session)
    bob = make_user(session, "bob@mail.com")
    TransactionService(session, ana.id).create(_txn(100, date(2024, 1, 5)))
    TransactionService(session, bob.id).create(_txn(200, date(2024, 1, 5)))
    GoalService(session, ana.id).create(
        GoalIn(title="Trip", target_amount_cents=300_000, deadline=date(2030, 6, 1))
    )

    UserService(session).delete_account(ana.id)

    assert session.get(User, ana.id) is None
    owners = set(session.scalars(select(Transaction.owner_id)).all())
    assert owners == {bob.id}
    assert session.scalars(select(Goal)).all() == []


def test_monthly_report_data() -> None:
    session = make_session()
    user = make_user(session)
    txns = TransactionService(session, user.id)
    txns.create(_txn(100_000, date(2024, 1, 5), kind=TransactionType.income))
    txns.create(_txn(30_000, date(2024, 1, 9)))
    txns.create(_txn(20_000, date(2024, 1, 2), category=TransactionCategory.housing))
    txns.create(_txn(7_000, date(2024, 2, 1)))

    report = ReportService(session, user.id).monthly_report(2024, 1)

    assert report["user_name"] == "Ana"
    assert [t.occurred_on.day for t in report["transactions"]] == [2, 5, 9]
    assert report["totals"].balance == 50_000
    assert [c.category for c in report["expenses_by_category"]] == [
        TransactionCategory.food,
        TransactionCategory.housing,
    ]
