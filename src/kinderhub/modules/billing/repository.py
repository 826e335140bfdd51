"""
Billing Repository

Database operations for subscriptions, transactions and payment logs.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, func, not_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.modules.billing.models import (
    RENEWABLE_STATUSES,
    PaymentGateway,
    PaymentLog,
    Subscription,
    SubscriptionStatus,
    SubscriptionTransaction,
    TransactionStatus,
)

logger = logging.getLogger(__name__)


# ============================================
# Subscriptions
# ============================================


async def create_subscription(db: AsyncSession, **fields: Any) -> Subscription:
    subscription = Subscription(**fields)
    db.add(subscription)
    await db.flush()
    await db.refresh(subscription)
    return subscription


async def get_subscription(db: AsyncSession, subscription_id: str) -> Subscription | None:
    return await db.get(Subscription, str(subscription_id))


async def get_by_gateway_subscription_id(
    db: AsyncSession, gateway: PaymentGateway, gateway_subscription_id: str
) -> Subscription | None:
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.gateway == gateway,
            Subscription.gateway_subscription_id == gateway_subscription_id,
        )
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_current_subscription(db: AsyncSession, user_id: str) -> Subscription | None:
    """The user's newest active or trial subscription."""
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id, Subscription.status.in_(RENEWABLE_STATUSES))
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_reactivatable_subscription(
    db: AsyncSession, user_id: str, now: datetime
) -> Subscription | None:
    """
    The newest subscription that was cancelled but whose paid period has
    not ended yet.
    """
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.end_date > now,
            or_(
                Subscription.status == SubscriptionStatus.CANCELLED,
                and_(
                    Subscription.status.in_(RENEWABLE_STATUSES),
                    Subscription.cancelled_at.is_not(None),
                ),
            ),
        )
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_user_subscriptions(db: AsyncSession, user_id: str) -> list[Subscription]:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc())
    )
    return list(result.scalars().all())


async def has_used_plan(db: AsyncSession, user_id: str) -> bool:
    """True if the user ever had a subscription that went beyond checkout."""
    count = await db.scalar(
        select(func.count(Subscription.id)).where(
            Subscription.user_id == user_id,
            Subscription.status != SubscriptionStatus.PENDING,
        )
    )
    return bool(count)


async def list_subscriptions(
    db: AsyncSession,
    status: SubscriptionStatus | None = None,
    gateway: PaymentGateway | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Subscription], int]:
    filters = []
    if status is not None:
        filters.append(Subscription.status == status)
    if gateway is not None:
        filters.append(Subscription.gateway == gateway)

    total = await db.scalar(select(func.count(Subscription.id)).where(*filters))
    result = await db.execute(
        select(Subscription)
        .where(*filters)
        .order_by(Subscription.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total or 0


async def list_due_for_renewal(
    db: AsyncSession, now: datetime, lookahead: timedelta
) -> list[Subscription]:
    """Active or trial subscriptions set to auto-renew and billed within the lookahead."""
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.status.in_(RENEWABLE_STATUSES),
            Subscription.auto_renew.is_(True),
            Subscription.next_billing_date.is_not(None),
            Subscription.next_billing_date <= now + lookahead,
        )
        .order_by(Subscription.next_billing_date)
    )
    return list(result.scalars().all())


async def list_ended(db: AsyncSession, now: datetime, grace: timedelta) -> list[Subscription]:
    """
    Subscriptions whose period is over.

    Auto-renewing subscriptions get ``grace`` past their end date so the
    renewal engine can retry before they expire.
    """
    result = await db.execute(
        select(Subscription).where(
            or_(
                and_(
                    Subscription.status.in_(RENEWABLE_STATUSES),
                    Subscription.auto_renew.is_(False),
                    Subscription.end_date < now,
                ),
                and_(
                    Subscription.status.in_(RENEWABLE_STATUSES),
                    Subscription.auto_renew.is_(True),
                    Subscription.end_date < now - grace,
                ),
                and_(
                    Subscription.status == SubscriptionStatus.CANCELLED,
                    Subscription.end_date < now,
                ),
            )
        )
    )
    return list(result.scalars().all())


async def set_status(
    db: AsyncSession, subscription: Subscription, status: SubscriptionStatus
) -> Subscription:
    subscription.status = status
    await db.flush()
    return subscription


async def update_subscription(
    db: AsyncSession, subscription: Subscription, fields: dict[str, Any]
) -> Subscription:
    for key, value in fields.items():
        setattr(subscription, key, value)
    await db.flush()
    return subscription


async def status_counts(db: AsyncSession) -> dict[str, int]:
    result = await db.execute(
        select(Subscription.status, func.count(Subscription.id)).group_by(Subscription.status)
    )
    return {row[0].value: row[1] for row in result.all()}


async def plan_counts(db: AsyncSession) -> dict[str, int]:
    result = await db.execute(
        select(Subscription.plan_id, func.count(Subscription.id))
        .where(Subscription.status.in_(RENEWABLE_STATUSES))
        .group_by(Subscription.plan_id)
    )
    return {row[0]: row[1] for row in result.all()}


async def list_active_for_revenue(db: AsyncSession) -> list[Subscription]:
    result = await db.execute(
        select(Subscription).where(Subscription.status == SubscriptionStatus.ACTIVE)
    )
    return list(result.scalars().all())


# ============================================
# Transactions
# ============================================


async def create_transaction(db: AsyncSession, **fields: Any) -> SubscriptionTransaction:
    """
    Insert a transaction.

    Raises:
        IntegrityError: If ``idempotency_key`` is already taken
    """
    transaction = SubscriptionTransaction(**fields)
    db.add(transaction)
    await db.flush()
    await db.refresh(transaction)
    return transaction


async def get_transaction_by_reference(
    db: AsyncSession, gateway: PaymentGateway, reference: str
) -> SubscriptionTransaction | None:
    result = await db.execute(
        select(SubscriptionTransaction)
        .where(
            SubscriptionTransaction.gateway == gateway,
            SubscriptionTransaction.reference == reference,
        )
        .order_by(SubscriptionTransaction.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def update_transaction(
    db: AsyncSession, transaction: SubscriptionTransaction, fields: dict[str, Any]
) -> SubscriptionTransaction:
    for key, value in fields.items():
        setattr(transaction, key, value)
    await db.flush()
    return transaction


async def count_failed_since(db: AsyncSession, subscription_id: str, since: datetime) -> int:
    count = await db.scalar(
        select(func.count(SubscriptionTransaction.id)).where(
            SubscriptionTransaction.subscription_id == subscription_id,
            SubscriptionTransaction.status == TransactionStatus.FAILED,
            SubscriptionTransaction.created_at >= since,
        )
    )
    return count or 0


async def count_closed_renewal_attempts(
    db: AsyncSession, subscription_id: str, period_start: date
) -> int:
    """Renewal attempts for a billing period that ended without payment."""
    count = await db.scalar(
        select(func.count(SubscriptionTransaction.id)).where(
            SubscriptionTransaction.subscription_id == subscription_id,
            SubscriptionTransaction.is_renewal.is_(True),
            SubscriptionTransaction.billing_period_start == period_start,
            SubscriptionTransaction.status.in_(
                (TransactionStatus.FAILED, TransactionStatus.EXPIRED)
            ),
        )
    )
    return count or 0


async def expire_stale_pending(db: AsyncSession, older_than: datetime) -> list[str]:
    """
    Mark pending transactions created before ``older_than`` as expired.

    Stripe renewal charges already sent to Stripe are left alone; only the
    ``payment_intent.*`` webhooks settle them.
    """
    result = await db.execute(
        update(SubscriptionTransaction)
        .where(
            SubscriptionTransaction.status == TransactionStatus.PENDING,
            SubscriptionTransaction.created_at < older_than,
            not_(
                and_(
                    SubscriptionTransaction.gateway == PaymentGateway.STRIPE,
                    SubscriptionTransaction.is_renewal.is_(True),
                    SubscriptionTransaction.reference.is_not(None),
                )
            ),
        )
        .values(status=TransactionStatus.EXPIRED, failure_reason="Payment not completed in time")
        .returning(SubscriptionTransaction.id)
        .execution_options(synchronize_session=False)
    )
    return [row[0] for row in result.all()]


async def payment_history(
    db: AsyncSession, user_id: str, limit: int, offset: int
) -> tuple[list[SubscriptionTransaction], int]:
    total = await db.scalar(
        select(func.count(SubscriptionTransaction.id)).where(
            SubscriptionTransaction.user_id == user_id
        )
    )
    result = await db.execute(
        select(SubscriptionTransaction)
        .where(SubscriptionTransaction.user_id == user_id)
        .order_by(SubscriptionTransaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total or 0


async def revenue_by_gateway(
    db: AsyncSession, start: datetime | None = None, end: datetime | None = None
) -> list[dict[str, Any]]:
    """Completed revenue per (gateway, currency) inside an optional window."""
    filters = [SubscriptionTransaction.status == TransactionStatus.COMPLETED]
    if start is not None:
        filters.append(SubscriptionTransaction.created_at >= start)
    if end is not None:
        filters.append(SubscriptionTransaction.created_at < end)

    result = await db.execute(
        select(
            SubscriptionTransaction.gateway,
            SubscriptionTransaction.currency,
            func.count(SubscriptionTransaction.id),
            func.coalesce(func.sum(SubscriptionTransaction.amount), 0),
        )
        .where(*filters)
        .group_by(SubscriptionTransaction.gateway, SubscriptionTransaction.currency)
    )
    return [
        {
            "gateway": row[0].value,
            "currency": row[1],
            "transactions": row[2],
            "total": Decimal(row[3]),
        }
        for row in result.all()
    ]


async def transaction_status_counts(
    db: AsyncSession, start: datetime | None = None
) -> dict[str, int]:
    query = select(SubscriptionTransaction.status, func.count(SubscriptionTransaction.id))
    if start is not None:
        query = query.where(SubscriptionTransaction.created_at >= start)
    result = await db.execute(query.group_by(SubscriptionTransaction.status))
    return {row[0].value: row[1] for row in result.all()}


# ============================================
# Payment logs
# ============================================


async def create_payment_log(db: AsyncSession, **fields: Any) -> PaymentLog:
    log = PaymentLog(processed=False, **fields)
    db.add(log)
    await db.flush()
    return log


async def expire_stale_pending_subscriptions(db: AsyncSession, older_than: datetime) -> list[str]:
    """Checkouts that were never paid."""
    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.status == SubscriptionStatus.PENDING,
            Subscription.created_at < older_than,
        )
        .values(status=SubscriptionStatus.EXPIRED, auto_renew=False)
        .returning(Subscription.id)
        .execution_options(synchronize_session=False)
    )
    return [row[0] for row in result.all()]


async def supersede_others(
    db: AsyncSession, user_id: str, keep_id: str, now: datetime
) -> list[str]:
    """Cancel the user's other live subscriptions once a new one is activated."""
    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.id != keep_id,
            Subscription.status.in_(RENEWABLE_STATUSES),
        )
        .values(
            status=SubscriptionStatus.CANCELLED,
            auto_renew=False,
            cancelled_at=now,
            cancellation_reason="Replaced by a new subscription",
        )
        .returning(Subscription.id)
        .execution_options(synchronize_session=False)
    )
    return [row[0] for row in result.all()]
