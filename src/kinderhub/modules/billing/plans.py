"""
Plan Catalogue

Prices are in the billing currency (ZAR). Users without a subscription are
on the free tier.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any

from kinderhub.modules.billing.models import BillingCycle

PERIOD_DAYS = {
    BillingCycle.MONTHLY: 30,
    BillingCycle.ANNUAL: 365,
}


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    description: str
    price_monthly: Decimal
    price_annual: Decimal
    trial_days: int
    limits: dict[str, Any] = field(default_factory=dict)
    features: tuple[str, ...] = ()
    popular: bool = False

    def price(self, cycle: BillingCycle) -> Decimal:
        return self.price_annual if cycle == BillingCycle.ANNUAL else self.price_monthly

    def has_feature(self, feature: str) -> bool:
        return feature in self.features


FREE_PLAN = Plan(
    id="free",
    name="Free Plan",
    description="Basic features with limited access",
    price_monthly=Decimal("0"),
    price_annual=Decimal("0"),
    trial_days=0,
    limits={
        "max_children": 1,
        "homework_limit": 5,
        "activities_limit": 3,
        "storage_limit_mb": 100,
        "ads_enabled": True,
    },
    features=("basic_homework", "basic_activities", "limited_storage"),
)

PLANS: dict[str, Plan] = {
    "student": Plan(
        id="student",
        name="Student Plan",
        description="Perfect for individual students",
        price_monthly=Decimal("99.00"),
        price_annual=Decimal("990.00"),
        trial_days=7,
        limits={
            "max_children": 1,
            "homework_limit": None,
            "activities_limit": None,
            "storage_limit_mb": None,
            "ads_enabled": False,
        },
        features=(
            "basic_homework",
            "basic_activities",
            "unlimited_storage",
            "progress_tracking",
            "priority_support",
        ),
        popular=True,
    ),
    "family": Plan(
        id="family",
        name="Family Plan",
        description="Ideal for families with multiple children",
        price_monthly=Decimal("199.00"),
        price_annual=Decimal("1990.00"),
        trial_days=14,
        limits={
            "max_children": 5,
            "homework_limit": None,
            "activities_limit": None,
            "storage_limit_mb": None,
            "ads_enabled": False,
        },
        features=(
            "basic_homework",
            "basic_activities",
            "unlimited_storage",
            "progress_tracking",
            "multiple_children",
            "priority_support",
            "bulk_management",
            "analytics",
        ),
    ),
    "institution": Plan(
        id="institution",
        name="Institution Plan",
        description="Comprehensive solution for schools",
        price_monthly=Decimal("399.00"),
        price_annual=Decimal("3990.00"),
        trial_days=30,
        limits={
            "max_children": None,
            "homework_limit": None,
            "activities_limit": None,
            "storage_limit_mb": None,
            "ads_enabled": False,
        },
        features=(
            "basic_homework",
            "basic_activities",
            "unlimited_storage",
            "progress_tracking",
            "multiple_children",
            "priority_support",
            "bulk_management",
            "analytics",
            "api_access",
        ),
    ),
}


def get_plan(plan_id: str) -> Plan | None:
    """Look up a paid plan, or the free tier for ``"free"``."""
    if plan_id == FREE_PLAN.id:
        return FREE_PLAN
    return PLANS.get(plan_id)


def period_length(cycle: BillingCycle) -> timedelta:
    return timedelta(days=PERIOD_DAYS[cycle])
