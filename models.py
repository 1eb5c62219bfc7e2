from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


GUEST_OWNER_ID = "guest"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TransactionCategory(str, Enum):
    food = "food"
    housing = "housing"
    transport = "transport"
    leisure = "leisure"
    health = "health"
    other = "other"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class Plan(str, Enum):
    free = "free"
    premium = "premium"


class Theme(str, Enum):
    light = "light"
    dark = "dark"


class Language(str, Enum):
    pt = "pt"
    en = "en"


class CurrencyCode(str, Enum):
    brl = "BRL"
    usd = "USD"


CURRENCY_CODE_ENUM = SAEnum(
    CurrencyCode,
    name="currencycode",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class BillingEventStatus(str, Enum):
    pending = "pending"
    processed = "processed"
    failed = "failed"
    dead = "dead"


def new_id() -> str:
    return uuid4().hex


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    plan: Mapped[Plan] = mapped_column(SAEnum(Plan), nullable=False, default=Plan.free)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(255))
    theme: Mapped[Theme] = mapped_column(
        SAEnum(Theme), nullable=False, default=Theme.light
    )
    language: Mapped[Language] = mapped_column(
        SAEnum(Language), nullable=False, default=Language.pt
    )
    currency: Mapped[CurrencyCode] = mapped_column(
        CURRENCY_CODE_ENUM, nullable=False, default=CurrencyCode.brl
    )

    __table_args__ = (Index("ix_users_subscription", "stripe_subscription_id"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[TransactionCategory] = mapped_column(
        SAEnum(TransactionCategory), nullable=False
    )
    custom_label: Mapped[Optional[str]] = mapped_column(String(100))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    occurred_on: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        Index("ix_transactions_owner_date", "owner_id", "occurred_on"),
        Index("ix_transactions_owner_type_date", "owner_id", "type", "occurred_on"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(
        ForeignKey("users.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    target_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_amount_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    deadline: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_goals_owner_deadline", "owner_id", "deadline"),
        CheckConstraint("target_amount_cents > 0", name="ck_goals_target_positive"),
        CheckConstraint(
            "current_amount_cents >= 0", name="ck_goals_current_non_negative"
        ),
    )


class BillingEvent(Base, TimestampMixin):
    __tablename__ = "billing_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(120), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[BillingEventStatus] = mapped_column(
        SAEnum(BillingEventStatus), nullable=False, default=BillingEventStatus.pending
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (Index("ix_billing_events_status", "status"),)
