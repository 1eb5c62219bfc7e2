from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from models import (
    CurrencyCode,
    Language,
    Plan,
    Theme,
    TransactionCategory,
    TransactionType,
)


def _check_custom_label(
    category: Optional[TransactionCategory], custom_label: Optional[str]
) -> Optional[str]:
    label = (custom_label or "").strip()
    if category == TransactionCategory.other and not label:
        raise ValueError('custom_label is required when category is "other"')
    if category is not None and category != TransactionCategory.other and label:
        raise ValueError('custom_label is only allowed when category is "other"')
    return label or None


class TransactionIn(BaseModel):
    type: TransactionType
    category: TransactionCategory
    custom_label: Optional[str] = Field(default=None, max_length=100)
    amount_cents: int = Field(..., gt=0)
    occurred_on: date

    @model_validator(mode="after")
    def _label_matches_category(self) -> "TransactionIn":
        self.custom_label = _check_custom_label(self.category, self.custom_label)
        return self


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    category: Optional[TransactionCategory] = None
    custom_label: Optional[str] = Field(default=None, max_length=100)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    occurred_on: Optional[date] = None

    def apply_to(self, current: TransactionIn) -> TransactionIn:
        """Merge the set fields over ``current`` and re-run full validation."""
        data = current.model_dump()
        changes = self.model_dump(exclude_unset=True)
        if "category" in changes and "custom_label" not in changes:
            if changes["category"] != TransactionCategory.other:
                changes["custom_label"] = None
        data.update(changes)
        return TransactionIn.model_validate(data)


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    type: TransactionType
    category: TransactionCategory
    custom_label: Optional[str] = None
    amount_cents: int
    occurred_on: date
    created_at: datetime

    def to_input(self) -> TransactionIn:
        return TransactionIn(
            type=self.type,
            category=self.category,
            custom_label=self.custom_label,
            amount_cents=self.amount_cents,
            occurred_on=self.occurred_on,
        )


class GoalIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    target_amount_cents: int = Field(..., gt=0)
    deadline: date
    description: Optional[str] = Field(default=None, max_length=500)


class GoalUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    target_amount_cents: Optional[int] = Field(default=None, gt=0)
    deadline: Optional[date] = None
    description: Optional[str] = Field(default=None, max_length=500)


class AddMoneyIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    from_balance: bool = False


class GoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    title: str
    target_amount_cents: int
    current_amount_cents: int
    deadline: date
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SignupIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr


class LoginIn(BaseModel):
    email: EmailStr


class LoginVerifyIn(BaseModel):
    token: str = Field(..., min_length=1, max_length=512)


class Preferences(BaseModel):
    theme: Theme = Theme.light
    language: Language = Language.pt
    currency: CurrencyCode = CurrencyCode.brl


class PreferencesUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    theme: Optional[Theme] = None
    language: Optional[Language] = None
    currency: Optional[CurrencyCode] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    plan: Plan
    theme: Theme
    language: Language
    currency: CurrencyCode
    created_at: datetime


class PlanOverrideIn(BaseModel):
    plan: Plan
    subscription_id: Optional[str] = Field(default=None, max_length=255)
