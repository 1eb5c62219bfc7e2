from datetime import date, datetime, timezone
from types import SimpleNamespace

import periods
from goals import (
    days_remaining,
    goal_progress,
    income_contribution,
    is_near_deadline,
    is_overdue,
)
from models import TransactionCategory, TransactionType
from schemas import TransactionOut


def _goal(target: int = 100_000, current: int = 20_000) -> SimpleNamespace:
    return SimpleNamespace(
        target_amount_cents=target,
        current_amount_cents=current,
        deadline=date(2024, 3, 1),
        created_at=datetime(2024, 1, 1, 9, 30),
    )


def _txn(kind: TransactionType, amount_cents: int, occurred_on: date) -> TransactionOut:
    return TransactionOut(
        id=f"{kind.value}-{occurred_on}",
        owner_id="u1",
        type=kind,
        category=TransactionCategory.food,
        amount_cents=amount_cents,
        occurred_on=occurred_on,
        created_at=datetime(2024, 1, 1),
    )


def test_goal_progress_scenario() -> None:
    txns = [_txn(TransactionType.income, 30_000, date(2024, 2, 1))]

    progress = goal_progress(_goal(), txns, today=date(2024, 2, 15))

    assert progress.income_contribution == 30_000
    assert progress.effective_amount == 50_000
    assert progress.percentage == 50.00
    assert progress.remaining == 50_000
    assert progress.is_completed is False


def test_only_income_inside_window_counts() -> None:
    txns = [
        _txn(TransactionType.income, 1_000, date(2023, 12, 31)),  # before creation
        _txn(TransactionType.income, 2_000, date(2024, 1, 1)),  # creation day
        _txn(TransactionType.expense, 9_000, date(2024, 1, 5)),
        _txn(TransactionType.income, 4_000, date(2024, 2, 10)),  # today
        _txn(TransactionType.income, 8_000, date(2024, 2, 11)),  # future
    ]
    assert income_contribution(_goal(), txns, today=date(2024, 2, 10)) == 6_000


def test_window_stops_at_deadline() -> None:
    txns = [
        _txn(TransactionType.income, 1_000, date(2024, 3, 1)),
        _txn(TransactionType.income, 5_000, date(2024, 3, 2)),
    ]
    assert income_contribution(_goal(), txns, today=date(2024, 6, 1)) == 1_000


def test_percentage_is_clamped_and_completion_flagged() -> None:
    txns = [_txn(TransactionType.income, 500_000, date(2024, 1, 20))]

    progress = goal_progress(_goal(), txns, today=date(2024, 2, 1))

    assert progress.percentage == 100
    assert progress.remaining == 0
    assert progress.is_completed is True


def test_percentage_rounds_to_two_decimals() -> None:
    progress = goal_progress(_goal(target=30_000, current=10_000), [], today=date(2024, 2, 1))
    assert progress.percentage == 33.33


def test_percentage_never_decreases_as_savings_grow() -> None:
    today = date(2024, 2, 1)
    previous = -1.0
    for current in range(0, 150_000, 7_500):
        pct = goal_progress(_goal(current=current), [], today=today).percentage
        assert pct >= previous
        previous = pct
    assert previous == 100


def test_days_remaining_and_deadline_flags() -> None:
    today = date(2024, 2, 1)

    assert days_remaining(date(2024, 2, 11), today) == 10
    assert days_remaining(date(2024, 1, 31), today) == -1
    assert is_overdue(date(2024, 1, 31), today) is True
    assert is_overdue(date(2024, 2, 1), today) is False

    assert is_near_deadline(date(2024, 3, 2), today=today) is True  # 30 days
    assert is_near_deadline(date(2024, 3, 3), today=today) is False  # 31 days
    assert is_near_deadline(date(2024, 2, 1), today=today) is False  # due today
    assert is_near_deadline(date(2024, 2, 5), threshold_days=3, today=today) is False


def test_window_starts_on_local_creation_day(monkeypatch) -> None:
    monkeypatch.setattr(
        periods, "get_settings", lambda: SimpleNamespace(timezone="America/Sao_Paulo")
    )
    # 22:30 on 2024-01-01 in Sao Paulo, stored as naive UTC
    goal = _goal()
    goal.created_at = datetime(2024, 1, 2, 1, 30)
    txns = [_txn(TransactionType.income, 7_000, date(2024, 1, 1))]

    assert income_contribution(goal, txns, today=date(2024, 1, 10)) == 7_000

    goal.created_at = datetime(2024, 1, 2, 1, 30, tzinfo=timezone.utc)
    assert income_contribution(goal, txns, today=date(2024, 1, 10)) == 7_000
