import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from models import Plan

FREE_TRANSACTION_LIMIT = 10


class Feature(str, Enum):
    transactions = "transactions"
    dashboard = "dashboard"
    charts = "charts"
    monthly_comparison = "monthly_comparison"
    category_totals = "category_totals"
    high_expenses_alert = "high_expenses_alert"
    export = "export"


@dataclass(frozen=True)
class PlanLimits:
    max_transactions: float
    features: dict[Feature, bool]


PLAN_LIMITS: dict[Plan, PlanLimits] = {
    Plan.free: PlanLimits(
        max_transactions=FREE_TRANSACTION_LIMIT,
        features={
            Feature.transactions: True,
            Feature.dashboard: True,
            Feature.charts: True,
            Feature.monthly_comparison: False,
            Feature.category_totals: False,
            Feature.high_expenses_alert: False,
            Feature.export: False,
        },
    ),
    Plan.premium: PlanLimits(
        max_transactions=math.inf,
        features={feature: True for feature in Feature},
    ),
}


@dataclass(frozen=True)
class PlanCheck:
    allowed: bool
    reason: Optional[str] = None


def get_plan_info(plan: Plan) -> PlanLimits:
    return PLAN_LIMITS[Plan(plan)]


def get_transaction_limit(plan: Plan) -> float:
    return get_plan_info(plan).max_transactions


def remaining_transactions(plan: Plan, current_count: int) -> Optional[int]:
    """``None`` means unlimited."""
    limit = get_transaction_limit(plan)
    if math.isinf(limit):
        return None
    return max(int(limit) - current_count, 0)


def can_create_transaction(plan: Plan, current_count: int) -> PlanCheck:
    limit = get_transaction_limit(plan)
    if Plan(plan) == Plan.free and current_count >= limit:
        return PlanCheck(
            allowed=False,
            reason=(
                f"You have reached the limit of {int(limit)} transactions on the "
                "free plan. Upgrade to Premium for unlimited transactions."
            ),
        )
    return PlanCheck(allowed=True)


def is_feature_available(plan: Plan, feature: Feature) -> bool:
    return get_plan_info(plan).features.get(Feature(feature), False)


def locked_features(plan: Plan) -> list[Feature]:
    return [f for f, enabled in get_plan_info(plan).features.items() if not enabled]
