from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Protocol

from aggregation import TransactionRecord
from models import TransactionType
from periods import local_date, local_today

NEAR_DEADLINE_DAYS = 30


class GoalRecord(Protocol):
    target_amount_cents: int
    current_amount_cents: int
    deadline: date
    created_at: datetime


@dataclass(frozen=True)
class GoalProgress:
    effective_amount: int
    income_contribution: int
    percentage: float
    remaining: int
    is_completed: bool


def income_contribution(
    goal: GoalRecord,
    transactions: Iterable[TransactionRecord],
    today: Optional[date] = None,
) -> int:
    """Income dated inside ``[created_at, min(today, deadline)]``, both ends inclusive."""
    today = today or local_today()
    start = local_date(goal.created_at)
    end = min(today, goal.deadline)
    return sum(
        t.amount_cents
        for t in transactions
        if t.type == TransactionType.income and start <= t.occurred_on <= end
    )


def goal_progress(
    goal: GoalRecord,
    transactions: Iterable[TransactionRecord],
    today: Optional[date] = None,
) -> GoalProgress:
    # Manual contributions and window income are added together; an income that
    # was also added by hand counts twice.
    contribution = income_contribution(goal, transactions, today)
    effective = goal.current_amount_cents + contribution
    target = goal.target_amount_cents
    raw = min(Decimal(effective) / Decimal(target) * 100, Decimal(100))
    percentage = float(raw.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    return GoalProgress(
        effective_amount=effective,
        income_contribution=contribution,
        percentage=percentage,
        remaining=max(target - effective, 0),
        is_completed=effective >= target,
    )


def days_remaining(deadline: date, today: Optional[date] = None) -> int:
    today = today or local_today()
    return (deadline - today).days


def is_overdue(deadline: date, today: Optional[date] = None) -> bool:
    return days_remaining(deadline, today) < 0


def is_near_deadline(
    deadline: date, threshold_days: int = NEAR_DEADLINE_DAYS, today: Optional[date] = None
) -> bool:
    remaining = days_remaining(deadline, today)
    return 0 < remaining <= threshold_days
