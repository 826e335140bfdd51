"""
Billing Schemas
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from kinderhub.modules.billing.models import (
    BillingCycle,
    PaymentGateway,
    SubscriptionStatus,
    TransactionStatus,
)


class PlanResponse(BaseModel):
    id: str
    name: str
    description: str
    price_monthly: Decimal
    price_annual: Decimal
    currency: str
    trial_days: int
    limits: dict[str, Any]
    features: list[str]
    popular: bool = False


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    plan_id: str
    plan_name: str
    price_monthly: Decimal
    price_annual: Decimal
    currency: str
    billing_cycle: BillingCycle
    status: SubscriptionStatus
    gateway: PaymentGateway
    start_date: datetime
    end_date: datetime
    next_billing_date: datetime | None
    trial_end_date: datetime | None
    auto_renew: bool
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime


class CurrentSubscriptionResponse(BaseModel):
    plan_id: str
    plan_name: str
    status: str
    is_free: bool
    subscription: SubscriptionResponse | None = None


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    subscription_id: str
    gateway: PaymentGateway
    reference: str | None
    amount: Decimal
    currency: str
    status: TransactionStatus
    is_renewal: bool
    billing_period_start: date | None
    failure_reason: str | None
    processed_at: datetime | None
    created_at: datetime


class PaymentHistoryResponse(BaseModel):
    payments: list[TransactionResponse]
    total: int
    limit: int
    offset: int


class FeatureAccessResponse(BaseModel):
    feature: str
    plan_id: str
    has_access: bool


class FeaturesResponse(BaseModel):
    plan_id: str
    limits: dict[str, Any]
    features: list[str]


class UsageResponse(BaseModel):
    plan_id: str
    children_count: int
    max_children: int | None
    can_add_child: bool


class UpgradeRequest(BaseModel):
    plan_id: str
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    gateway: Literal["payfast", "stripe"] = "payfast"
    start_trial: bool = True


class PayFastCheckoutResponse(BaseModel):
    url: str
    fields: dict[str, str]
    redirect_url: str


class StripeCheckoutResponse(BaseModel):
    payment_intent_id: str
    client_secret: str
    publishable_key: str | None


class UpgradeResponse(BaseModel):
    subscription: SubscriptionResponse
    amount: Decimal
    currency: str
    trial: bool = False
    transaction_id: str | None = None
    payfast: PayFastCheckoutResponse | None = None
    stripe: StripeCheckoutResponse | None = None


class CancelRequest(BaseModel):
    immediate: bool = False
    reason: str | None = Field(default=None, max_length=1000)


class ManualSubscriptionRequest(BaseModel):
    user_id: str
    plan_id: str
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    duration_days: int = Field(default=30, ge=1, le=3650)
    auto_renew: bool = False


class SubscriptionListResponse(BaseModel):
    subscriptions: list[SubscriptionResponse]
    total: int
    page: int
    limit: int


class RevenueRow(BaseModel):
    gateway: str
    currency: str
    transactions: int
    total: Decimal


class BillingStatsResponse(BaseModel):
    status_counts: dict[str, int]
    plan_counts: dict[str, int]
    monthly_recurring_revenue: Decimal
    average_revenue_per_user: Decimal
    revenue_all_time: list[RevenueRow]
    revenue_this_month: list[RevenueRow]
    transaction_status_counts: dict[str, int]


class RenewalResultResponse(BaseModel):
    subscription_id: str
    outcome: str
    transaction_id: str | None = None
    detail: str | None = None
