"""
Billing Models

A subscription belongs to a parent account. Every charge attempt, whether
made at checkout, by the renewal engine or by an admin, is a
SubscriptionTransaction. Raw gateway callbacks are kept in PaymentLog.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from kinderhub.modules.shared import BaseModel, pg_enum


class SubscriptionStatus(str, Enum):
    PENDING = "pending"  # Initial checkout awaiting payment
    TRIAL = "trial"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class PaymentGateway(str, Enum):
    PAYFAST = "payfast"
    STRIPE = "stripe"
    MANUAL = "manual"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    REFUNDED = "refunded"


RENEWABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL)


class Subscription(BaseModel):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_user_status", "user_id", "status"),
        Index("ix_subscriptions_renewal", "status", "auto_renew", "next_billing_date"),
    )

    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    plan_id: Mapped[str] = mapped_column(String(50), nullable=False)
    plan_name: Mapped[str] = mapped_column(String(100), nullable=False)
    price_monthly: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    price_annual: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="ZAR", nullable=False)
    billing_cycle: Mapped[BillingCycle] = mapped_column(
        pg_enum(BillingCycle, "billing_cycle"), default=BillingCycle.MONTHLY, nullable=False
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        pg_enum(SubscriptionStatus, "subscription_status"),
        default=SubscriptionStatus.PENDING,
        nullable=False,
    )
    gateway: Mapped[PaymentGateway] = mapped_column(
        pg_enum(PaymentGateway, "payment_gateway"), nullable=False
    )

    # PayFast token or Stripe customer / payment method used for renewals
    gateway_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_payment_method_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_billing_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    trial_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSONB, default=dict, nullable=False)

    @property
    def price(self) -> Decimal:
        """Price of one billing period."""
        return self.price_annual if self.billing_cycle == BillingCycle.ANNUAL else self.price_monthly

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, plan={self.plan_id}, status={self.status.value})>"


class SubscriptionTransaction(BaseModel):
    """
    One charge attempt.

    Renewal attempts carry an ``idempotency_key`` derived from the
    subscription, its billing period and the attempt number; the unique
    constraint makes a repeated attempt for the same period fail on insert.
    """

    __tablename__ = "subscription_transactions"
    __table_args__ = (
        Index("ix_subscription_transactions_status_created", "status", "created_at"),
        Index("ix_subscription_transactions_reference", "gateway", "reference"),
    )

    subscription_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    gateway: Mapped[PaymentGateway] = mapped_column(
        pg_enum(PaymentGateway, "payment_gateway"), nullable=False
    )
    # m_payment_id for PayFast, PaymentIntent id for Stripe
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    fee: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="ZAR", nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        pg_enum(TransactionStatus, "transaction_status"),
        default=TransactionStatus.PENDING,
        nullable=False,
    )
    is_renewal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    billing_period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    gateway_response: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<SubscriptionTransaction(id={self.id}, status={self.status.value})>"


class PaymentLog(BaseModel):
    """Every webhook received from a gateway, whether or not it was applied."""

    __tablename__ = "payment_logs"

    gateway: Mapped[PaymentGateway] = mapped_column(
        pg_enum(PaymentGateway, "payment_gateway"), nullable=False, index=True
    )
    event_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    source_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    signature_valid: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
