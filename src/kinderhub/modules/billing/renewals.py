"""
Subscription Renewal Engine

Renews one subscription for its current billing period.

Each attempt first inserts a pending renewal transaction whose
``idempotency_key`` is ``renewal:<subscription>:<period start>:<attempt>``.
The attempt number only moves on once the previous attempt for the period
has failed or expired, so a second run for the same period collides on
the unique key and is skipped instead of charging again. The same key is
sent to Stripe, which deduplicates on its side too.

Gateways:
- manual: nothing to charge, the period is extended
- payfast: a checkout link is e-mailed; the ITN completes the payment
- stripe: the saved card is charged off-session. A charge Stripe has not
  settled yet stays pending under its PaymentIntent id, which keeps the
  period's key taken until the webhook completes or fails it
"""

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core import email
from kinderhub.core.exceptions import NotFoundError, ValidationError
from kinderhub.modules.billing import repository, service
from kinderhub.modules.billing.gateways import payfast, stripe_gateway
from kinderhub.modules.billing.models import (
    RENEWABLE_STATUSES,
    PaymentGateway,
    Subscription,
    SubscriptionTransaction,
    TransactionStatus,
)
from kinderhub.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)

RENEWED = "renewed"
PAYMENT_LINK_SENT = "payment_link_sent"
FAILED = "failed"
SUSPENDED = "suspended"
SKIPPED = "skipped"
AWAITING_CONFIRMATION = "awaiting_confirmation"


@dataclass
class RenewalOutcome:
    subscription_id: str
    outcome: str
    transaction_id: str | None = None
    detail: str | None = None


def billing_period_start(subscription: Subscription) -> date:
    """The period being renewed starts at the current next billing date."""
    anchor = subscription.next_billing_date or subscription.end_date
    return anchor.astimezone(UTC).date()


def renewal_idempotency_key(subscription_id: str, period_start: date, attempt: int) -> str:
    return f"renewal:{subscription_id}:{period_start.isoformat()}:{attempt}"


async def _complete(
    db: AsyncSession,
    subscription: Subscription,
    transaction: SubscriptionTransaction,
    now: datetime,
    reference: str | None = None,
) -> RenewalOutcome:
    await repository.update_transaction(
        db,
        transaction,
        {"status": TransactionStatus.COMPLETED, "processed_at": now, "reference": reference},
    )
    service.advance_period(subscription)
    await db.flush()

    account = await UserRepository.get_by_id(db, subscription.user_id)
    if account is not None:
        await email.send_renewal_success(
            to_email=account.email,
            name=account.full_name,
            plan_name=subscription.plan_name,
            amount=transaction.amount,
            currency=transaction.currency,
            next_billing_date=subscription.next_billing_date.date().isoformat(),
        )
    logger.info(f"Renewed subscription {subscription.id} until {subscription.end_date.isoformat()}")
    return RenewalOutcome(subscription.id, RENEWED, transaction.id)


async def _fail(
    db: AsyncSession,
    subscription: Subscription,
    transaction: SubscriptionTransaction,
    reason: str,
    now: datetime,
    reference: str | None = None,
) -> RenewalOutcome:
    await repository.update_transaction(
        db,
        transaction,
        {
            "status": TransactionStatus.FAILED,
            "failure_reason": reason,
            "processed_at": now,
            "reference": reference,
        },
    )
    suspended = await service.apply_failure(db, subscription, reason, now)
    return RenewalOutcome(
        subscription.id, SUSPENDED if suspended else FAILED, transaction.id, reason
    )


async def _send_payfast_link(
    db: AsyncSession, subscription: Subscription, transaction: SubscriptionTransaction
) -> RenewalOutcome:
    account = await UserRepository.get_by_id(db, subscription.user_id)
    if account is None:
        raise LookupError(f"User {subscription.user_id} not found")

    checkout = payfast.build_checkout(
        amount=transaction.amount,
        item_name=f"{subscription.plan_name} Renewal - {subscription.billing_cycle.value}",
        email=account.email,
        first_name=account.first_name,
        last_name=account.last_name,
        subscription_id=subscription.id,
        user_id=subscription.user_id,
        reference=payfast.generate_reference("REN"),
    )
    await repository.update_transaction(
        db,
        transaction,
        {"reference": checkout.reference, "gateway_response": {"payment_url": checkout.redirect_url}},
    )
    await email.send_renewal_payment_link(
        to_email=account.email,
        name=account.full_name,
        plan_name=subscription.plan_name,
        amount=transaction.amount,
        currency=transaction.currency,
        payment_url=checkout.redirect_url,
    )
    logger.info(f"Sent PayFast renewal link for subscription {subscription.id}")
    return RenewalOutcome(subscription.id, PAYMENT_LINK_SENT, transaction.id)


async def renew_subscription(
    db: AsyncSession, subscription: Subscription, now: datetime | None = None
) -> RenewalOutcome:
    """
    Attempt one renewal of ``subscription``.

    The caller owns the transaction and commits afterwards.
    """
    now = now or datetime.now(UTC)
    period_start = billing_period_start(subscription)
    attempt = await repository.count_closed_renewal_attempts(db, subscription.id, period_start) + 1
    key = renewal_idempotency_key(subscription.id, period_start, attempt)
    amount = Decimal("0") if subscription.gateway == PaymentGateway.MANUAL else subscription.price

    try:
        async with db.begin_nested():
            transaction = await repository.create_transaction(
                db,
                subscription_id=subscription.id,
                user_id=subscription.user_id,
                gateway=subscription.gateway,
                amount=amount,
                currency=subscription.currency,
                status=TransactionStatus.PENDING,
                is_renewal=True,
                billing_period_start=period_start,
                idempotency_key=key,
            )
    except IntegrityError:
        logger.info(f"Renewal {key} already attempted, skipping")
        return RenewalOutcome(subscription.id, SKIPPED, detail="already_attempted")

    logger.info(f"Renewing subscription {subscription.id} via {subscription.gateway.value} ({key})")

    if subscription.gateway == PaymentGateway.MANUAL:
        return await _complete(db, subscription, transaction, now, reference=f"manual_{transaction.id}")

    if subscription.gateway == PaymentGateway.PAYFAST:
        return await _send_payfast_link(db, subscription, transaction)

    if not subscription.stripe_customer_id:
        return await _fail(db, subscription, transaction, "No saved payment method", now)

    try:
        result = await stripe_gateway.charge_off_session(
            amount=amount,
            currency=subscription.currency,
            customer_id=subscription.stripe_customer_id,
            payment_method_id=subscription.stripe_payment_method_id,
            metadata={"subscription_id": subscription.id, "user_id": subscription.user_id, "renewal": "true"},
            idempotency_key=key,
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe error renewing subscription {subscription.id}: {e}")
        return await _fail(db, subscription, transaction, str(e), now)

    if result.success:
        return await _complete(db, subscription, transaction, now, reference=result.payment_intent_id)
    if result.unsettled:
        await repository.update_transaction(
            db,
            transaction,
            {"reference": result.payment_intent_id, "gateway_response": result.raw or {}},
        )
        logger.info(
            f"Renewal charge {result.payment_intent_id} for subscription {subscription.id} "
            f"is {result.status}, waiting for Stripe"
        )
        return RenewalOutcome(
            subscription.id, AWAITING_CONFIRMATION, transaction.id, result.status
        )
    return await _fail(
        db,
        subscription,
        transaction,
        result.error or "Payment not completed",
        now,
        reference=result.payment_intent_id,
    )


async def renew_by_id(db: AsyncSession, subscription_id: str) -> RenewalOutcome:
    """Renew one subscription now, outside the schedule."""
    subscription = await repository.get_subscription(db, subscription_id)
    if subscription is None:
        raise NotFoundError("Subscription")
    if subscription.status not in RENEWABLE_STATUSES:
        raise ValidationError(
            f"Subscription is {subscription.status.value} and cannot be renewed.", "NOT_RENEWABLE"
        )
    return await renew_subscription(db, subscription)
