from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from aggregation import group_expenses_by_category, totals
from models import (
    Goal,
    Plan,
    Transaction,
    TransactionCategory,
    TransactionType,
    User,
)
from periods import Period, local_today, month_period
from schemas import (
    AddMoneyIn,
    GoalIn,
    GoalUpdate,
    Preferences,
    PreferencesUpdate,
    SignupIn,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

Row = TypeVar("Row")


def _is_missing_index(exc: SQLAlchemyError) -> bool:
    return "index" in str(getattr(exc, "orig", None) or exc).lower()


def _ordered_scalars(
    session: Session,
    stmt: Select,
    order_by: tuple,
    sort_key: Callable[[Row], object],
    *,
    descending: bool,
) -> list[Row]:
    """Run ``stmt`` ordered in SQL, or sort in Python when the index is missing."""
    try:
        return list(session.scalars(stmt.order_by(*order_by)).all())
    except (OperationalError, ProgrammingError) as exc:
        if not _is_missing_index(exc):
            raise
        session.rollback()
        logger.warning(f"query_index_missing: falling back to in-memory sort error={exc}")
        rows = list(session.scalars(stmt).all())
        return sorted(rows, key=sort_key, reverse=descending)


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    start: Optional[date] = None
    end: Optional[date] = None

    @classmethod
    def for_period(cls, period: Period) -> "TransactionFilters":
        return cls(start=period.start, end=period.end)


class TransactionService:
    def __init__(self, session: Session, owner_id: str) -> None:
        self.session = session
        self.owner_id = owner_id

    def count(self) -> int:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.owner_id == self.owner_id
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            owner_id=self.owner_id,
            type=data.type,
            category=data.category,
            custom_label=data.custom_label,
            amount_cents=data.amount_cents,
            occurred_on=data.occurred_on,
        )
        try:
            self.session.add(txn)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(txn)
        logger.info(f"transaction_created: owner={self.owner_id} id={txn.id}")
        return txn

    def get(self, transaction_id: str) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.owner_id == self.owner_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def update(self, transaction_id: str, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        merged = data.apply_to(TransactionOut.model_validate(txn).to_input())
        txn.type = merged.type
        txn.category = merged.category
        txn.custom_label = merged.custom_label
        txn.amount_cents = merged.amount_cents
        txn.occurred_on = merged.occurred_on
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        try:
            self.session.delete(txn)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def list(self, filters: Optional[TransactionFilters] = None) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = select(Transaction).where(Transaction.owner_id == self.owner_id)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.start:
            stmt = stmt.where(Transaction.occurred_on >= filters.start)
        if filters.end:
            stmt = stmt.where(Transaction.occurred_on <= filters.end)
        return _ordered_scalars(
            self.session,
            stmt,
            (Transaction.occurred_on.desc(), Transaction.created_at.desc()),
            lambda t: (t.occurred_on, t.created_at),
            descending=True,
        )

    def list_by_month(self, year: int, month: int) -> list[Transaction]:
        return self.list(TransactionFilters.for_period(month_period(year, month)))

    def delete_all(self) -> int:
        result = self.session.execute(
            delete(Transaction).where(Transaction.owner_id == self.owner_id)
        )
        return int(result.rowcount or 0)


class GoalService:
    def __init__(self, session: Session, owner_id: str) -> None:
        self.session = session
        self.owner_id = owner_id

    def create(self, data: GoalIn) -> Goal:
        goal = Goal(
            owner_id=self.owner_id,
            title=data.title.strip(),
            target_amount_cents=data.target_amount_cents,
            current_amount_cents=0,
            deadline=data.deadline,
            description=data.description,
        )
        try:
            self.session.add(goal)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(goal)
        return goal

    def get(self, goal_id: str) -> Goal:
        goal = self.session.scalar(
            select(Goal).where(Goal.owner_id == self.owner_id, Goal.id == goal_id)
        )
        if not goal:
            raise ValueError("Goal not found")
        return goal

    def list(self) -> list[Goal]:
        stmt = select(Goal).where(Goal.owner_id == self.owner_id)
        return _ordered_scalars(
            self.session,
            stmt,
            (Goal.deadline.asc(), Goal.created_at.asc()),
            lambda g: (g.deadline, g.created_at),
            descending=False,
        )

    def update(self, goal_id: str, data: GoalUpdate) -> Goal:
        goal = self.get(goal_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if field in {"title", "target_amount_cents", "deadline"} and value is None:
                raise ValueError(f"{field} cannot be empty")
            setattr(goal, field, value.strip() if field == "title" else value)
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(goal)
        return goal

    def add_money(self, goal_id: str, data: AddMoneyIn) -> Goal:
        """Increase the saved amount; ``from_balance`` also books an expense.

        Both writes share one database transaction.
        """
        goal = self.get(goal_id)
        goal.current_amount_cents += data.amount_cents
        if data.from_balance:
            self.session.add(
                Transaction(
                    owner_id=self.owner_id,
                    type=TransactionType.expense,
                    category=TransactionCategory.other,
                    custom_label=f"Goal: {goal.title}"[:100],
                    amount_cents=data.amount_cents,
                    occurred_on=local_today(),
                )
            )
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(goal)
        logger.info(
            f"goal_money_added: owner={self.owner_id} goal={goal.id} "
            f"amount_cents={data.amount_cents} from_balance={data.from_balance}"
        )
        return goal

    def delete(self, goal_id: str) -> None:
        goal = self.get(goal_id)
        try:
            self.session.delete(goal)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def delete_all(self) -> int:
        result = self.session.execute(delete(Goal).where(Goal.owner_id == self.owner_id))
        return int(result.rowcount or 0)


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, data: SignupIn, preferences: Optional[Preferences] = None) -> User:
        email = data.email.strip().lower()
        if self.find_by_email(email):
            raise ValueError("Email already registered")
        preferences = preferences or Preferences()
        user = User(
            name=data.name.strip(),
            email=email,
            plan=Plan.free,
            theme=preferences.theme,
            language=preferences.language,
            currency=preferences.currency,
        )
        try:
            self.session.add(user)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.refresh(user)
        logger.info(f"user_created: id={user.id}")
        return user

    def get(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise ValueError("User not found")
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(User.email == email.strip().lower())
        )

    def get_plan(self, user_id: str) -> Plan:
        return self.get(user_id).plan

    def set_plan(
        self, user_id: str, plan: Plan, subscription_ref: Optional[str] = None
    ) -> User:
        user = self.get(user_id)
        user.plan = Plan(plan)
        if subscription_ref:
            user.stripe_subscription_id = subscription_ref
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info(f"user_plan_set: id={user_id} plan={user.plan.value}")
        return user

    def find_by_subscription(self, subscription_id: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(User.stripe_subscription_id == subscription_id)
        )

    def get_preferences(self, user_id: str) -> Preferences:
        user = self.get(user_id)
        return Preferences(
            theme=user.theme, language=user.language, currency=user.currency
        )

    def update_preferences(self, user_id: str, data: PreferencesUpdate) -> Preferences:
        user = self.get(user_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(user, field, value)
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return self.get_preferences(user_id)

    def delete_account(self, user_id: str) -> None:
        """Remove transactions, goals and the profile, in that order."""
        user = self.get(user_id)
        try:
            removed_txns = TransactionService(self.session, user_id).delete_all()
            removed_goals = GoalService(self.session, user_id).delete_all()
            self.session.flush()
            self.session.delete(user)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        logger.info(
            f"account_deleted: id={user_id} "
            f"transactions={removed_txns} goals={removed_goals}"
        )


class ReportService:
    def __init__(self, session: Session, owner_id: str) -> None:
        self.session = session
        self.owner_id = owner_id

    def monthly_report(self, year: int, month: int) -> dict[str, object]:
        period = month_period(year, month)
        transactions = TransactionService(self.session, self.owner_id).list(
            TransactionFilters.for_period(period)
        )
        transactions = sorted(transactions, key=lambda t: (t.occurred_on, t.created_at))
        user = UserService(self.session).get(self.owner_id)
        return {
            "period": period,
            "user_name": user.name,
            "currency": user.currency,
            "transactions": transactions,
            "totals": totals(transactions),
            "expenses_by_category": group_expenses_by_category(transactions),
        }
