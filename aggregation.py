from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Protocol, Sequence, TypeVar

from models import TransactionCategory, TransactionType
from periods import Period, current_month, month_period, previous_month


class TransactionRecord(Protocol):
    type: TransactionType
    category: TransactionCategory
    amount_cents: int
    occurred_on: date


T = TypeVar("T", bound=TransactionRecord)

MONTHS_IN_SERIES = 6


@dataclass(frozen=True)
class Totals:
    income: int
    expense: int
    balance: int


@dataclass(frozen=True)
class PercentChange:
    income: float
    expense: float
    balance: float


@dataclass(frozen=True)
class MonthComparison:
    current: Totals
    previous: Totals
    diff: Totals
    percent: PercentChange


@dataclass(frozen=True)
class CategoryAmount:
    category: TransactionCategory
    value: int


@dataclass(frozen=True)
class MonthBucket:
    year: int
    month: int
    income: int
    expense: int

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class CategoryTotal:
    category: TransactionCategory
    income: int
    expense: int
    total: int


@dataclass(frozen=True)
class HighExpense:
    transaction: TransactionRecord
    is_high: bool
    percentage_of_average: int


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def period_subset(transactions: Iterable[T], period: Period) -> list[T]:
    return [t for t in transactions if period.contains(t.occurred_on)]


def month_subset(transactions: Iterable[T], year: int, month: int) -> list[T]:
    return period_subset(transactions, month_period(year, month))


def current_month_subset(
    transactions: Iterable[T], reference: Optional[date] = None
) -> list[T]:
    return period_subset(transactions, current_month(reference))


def previous_month_subset(
    transactions: Iterable[T], reference: Optional[date] = None
) -> list[T]:
    return period_subset(transactions, previous_month(reference))


def total_by_kind(transactions: Iterable[TransactionRecord], kind: TransactionType) -> int:
    return sum(t.amount_cents for t in transactions if t.type == kind)


def balance(transactions: Sequence[TransactionRecord]) -> int:
    return total_by_kind(transactions, TransactionType.income) - total_by_kind(
        transactions, TransactionType.expense
    )


def totals(transactions: Sequence[TransactionRecord]) -> Totals:
    income = total_by_kind(transactions, TransactionType.income)
    expense = total_by_kind(transactions, TransactionType.expense)
    return Totals(income=income, expense=expense, balance=income - expense)


def group_expenses_by_category(
    transactions: Iterable[TransactionRecord],
) -> list[CategoryAmount]:
    grouped: dict[TransactionCategory, int] = defaultdict(int)
    for txn in transactions:
        if txn.type == TransactionType.expense:
            grouped[txn.category] += txn.amount_cents
    items = [CategoryAmount(category=c, value=v) for c, v in grouped.items()]
    return sorted(items, key=lambda item: item.value, reverse=True)


def group_by_month(
    transactions: Iterable[TransactionRecord], limit: int = MONTHS_IN_SERIES
) -> list[MonthBucket]:
    """Income/expense per calendar month, oldest first, last ``limit`` months.

    Months without transactions are left out rather than zero-filled.
    """
    buckets: dict[tuple[int, int], list[int]] = {}
    for txn in transactions:
        key = (txn.occurred_on.year, txn.occurred_on.month)
        sums = buckets.setdefault(key, [0, 0])
        if txn.type == TransactionType.income:
            sums[0] += txn.amount_cents
        else:
            sums[1] += txn.amount_cents
    months = sorted(buckets.items())[-limit:] if limit > 0 else []
    return [
        MonthBucket(year=y, month=m, income=income, expense=expense)
        for (y, m), (income, expense) in months
    ]


def _percent(current: int, previous: int) -> float:
    if previous > 0:
        return (current - previous) / previous * 100
    return 100.0 if current > 0 else 0.0


def _balance_percent(current: int, previous: int) -> float:
    if previous != 0:
        return (current - previous) / abs(previous) * 100
    if current == 0:
        return 0.0
    return 100.0 if current > 0 else -100.0


def compare_months(
    current: Sequence[TransactionRecord], previous: Sequence[TransactionRecord]
) -> MonthComparison:
    cur = totals(current)
    prev = totals(previous)
    return MonthComparison(
        current=cur,
        previous=prev,
        diff=Totals(
            income=cur.income - prev.income,
            expense=cur.expense - prev.expense,
            balance=cur.balance - prev.balance,
        ),
        percent=PercentChange(
            income=_percent(cur.income, prev.income),
            expense=_percent(cur.expense, prev.expense),
            balance=_balance_percent(cur.balance, prev.balance),
        ),
    )


def category_totals(transactions: Iterable[TransactionRecord]) -> list[CategoryTotal]:
    income: dict[TransactionCategory, int] = defaultdict(int)
    expense: dict[TransactionCategory, int] = defaultdict(int)
    seen: list[TransactionCategory] = []
    for txn in transactions:
        if txn.category not in seen:
            seen.append(txn.category)
        if txn.type == TransactionType.income:
            income[txn.category] += txn.amount_cents
        else:
            expense[txn.category] += txn.amount_cents
    items = [
        CategoryTotal(
            category=c,
            income=income[c],
            expense=expense[c],
            total=income[c] - expense[c],
        )
        for c in seen
    ]
    return sorted(items, key=lambda item: abs(item.total), reverse=True)


def high_expense_outliers(
    transactions: Iterable[TransactionRecord], threshold: float = 1.5
) -> list[HighExpense]:
    expenses = [t for t in transactions if t.type == TransactionType.expense]
    if not expenses:
        return []
    average = Decimal(sum(t.amount_cents for t in expenses)) / len(expenses)
    limit = average * Decimal(str(threshold))
    flagged = [
        HighExpense(
            transaction=txn,
            is_high=txn.amount_cents >= limit,
            percentage_of_average=_round_half_up(txn.amount_cents / average * 100),
        )
        for txn in expenses
    ]
    return sorted(flagged, key=lambda item: item.transaction.amount_cents, reverse=True)
