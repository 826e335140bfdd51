"""
Billing Service

Subscription lifecycle for parents and admins.

Lifecycle:
    pending ──(payment)──> active ──(renewal ok)──> active
    trial ──(first renewal ok)──> active
    active/trial ──(3 failed payments in 30 days)──> suspended
    active/trial ──(period over, not renewed)──> expired
    active/trial ──(cancel now)──> cancelled
    active/trial ──(cancel at period end)──> auto_renew off, then expired

The renewal engine lives in ``renewals``; gateway callbacks are applied in
``kinderhub.modules.webhooks``. Both use the helpers at the top of this
module so that a paid period is extended the same way everywhere.
"""

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core import email
from kinderhub.core.auth import CurrentUser
from kinderhub.core.config import settings
from kinderhub.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from kinderhub.modules.billing import repository
from kinderhub.modules.billing.gateways import payfast, stripe_gateway
from kinderhub.modules.billing.models import (
    RENEWABLE_STATUSES,
    BillingCycle,
    PaymentGateway,
    Subscription,
    SubscriptionStatus,
    TransactionStatus,
)
from kinderhub.modules.billing.plans import FREE_PLAN, PLANS, Plan, get_plan, period_length
from kinderhub.modules.billing.schemas import (
    BillingStatsResponse,
    CancelRequest,
    CurrentSubscriptionResponse,
    FeatureAccessResponse,
    FeaturesResponse,
    ManualSubscriptionRequest,
    PayFastCheckoutResponse,
    PaymentHistoryResponse,
    PlanResponse,
    RevenueRow,
    StripeCheckoutResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
    TransactionResponse,
    UpgradeRequest,
    UpgradeResponse,
    UsageResponse,
)
from kinderhub.modules.children import repository as children_repository
from kinderhub.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)


# ============================================
# Lifecycle helpers
# ============================================


def expiry_deadline(subscription: Subscription, grace: timedelta) -> datetime:
    """
    When a subscription whose period is over expires.

    Auto-renewing active or trial subscriptions get ``grace`` past their end
    date so failed renewals can be retried; everything else ends on time.
    """
    if subscription.auto_renew and subscription.status in RENEWABLE_STATUSES:
        return subscription.end_date + grace
    return subscription.end_date


def advance_period(subscription: Subscription) -> None:
    """Extend a paid subscription by one billing period from its current end."""
    new_end = subscription.end_date + period_length(subscription.billing_cycle)
    subscription.end_date = new_end
    subscription.next_billing_date = new_end
    subscription.status = SubscriptionStatus.ACTIVE


async def activate_after_payment(
    db: AsyncSession, subscription: Subscription, now: datetime | None = None
) -> Subscription:
    """
    Apply a successful payment.

    A pending checkout starts its first period now and replaces any other
    live subscription of the user; anything else is extended by a period.
    """
    now = now or datetime.now(UTC)
    if subscription.status == SubscriptionStatus.PENDING:
        subscription.start_date = now
        subscription.end_date = now + period_length(subscription.billing_cycle)
        subscription.next_billing_date = subscription.end_date
        subscription.status = SubscriptionStatus.ACTIVE
        superseded = await repository.supersede_others(db, subscription.user_id, subscription.id, now)
        if superseded:
            logger.info(f"Subscription {subscription.id} replaced {superseded}")
    else:
        advance_period(subscription)

    await db.flush()
    logger.info(
        f"Subscription {subscription.id} active until {subscription.end_date.isoformat()}"
    )
    return subscription


async def apply_failure(
    db: AsyncSession,
    subscription: Subscription,
    reason: str,
    now: datetime | None = None,
) -> bool:
    """
    Apply a failed payment attempt.

    Counts failed transactions of the subscription within the failure
    window; reaching the threshold suspends it.

    Returns:
        True if the subscription was suspended
    """
    now = now or datetime.now(UTC)
    since = now - timedelta(days=settings.renewal_failure_window_days)
    failures = await repository.count_failed_since(db, subscription.id, since)
    account = await UserRepository.get_by_id(db, subscription.user_id)

    if failures >= settings.renewal_failure_threshold:
        await repository.set_status(db, subscription, SubscriptionStatus.SUSPENDED)
        logger.warning(
            f"Subscription {subscription.id} suspended after {failures} failed payments"
        )
        if account is not None:
            await email.send_subscription_suspended(
                to_email=account.email,
                name=account.full_name,
                plan_name=subscription.plan_name,
                failed_attempts=failures,
            )
        return True

    logger.info(
        f"Payment failed for subscription {subscription.id} "
        f"({failures}/{settings.renewal_failure_threshold}): {reason}"
    )
    if account is not None:
        await email.send_renewal_failed(
            to_email=account.email,
            name=account.full_name,
            plan_name=subscription.plan_name,
            reason=reason,
        )
    return False


# ============================================
# Plans and features
# ============================================


def _plan_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        id=plan.id,
        name=plan.name,
        description=plan.description,
        price_monthly=plan.price_monthly,
        price_annual=plan.price_annual,
        currency=settings.billing_currency,
        trial_days=plan.trial_days,
        limits=plan.limits,
        features=list(plan.features),
        popular=plan.popular,
    )


def list_plans() -> list[PlanResponse]:
    return [_plan_response(FREE_PLAN), *(_plan_response(plan) for plan in PLANS.values())]


async def _effective_plan(db: AsyncSession, user_id: str) -> Plan:
    subscription = await repository.get_current_subscription(db, user_id)
    if subscription is None:
        return FREE_PLAN
    return get_plan(subscription.plan_id) or FREE_PLAN


async def get_current(db: AsyncSession, user: CurrentUser) -> CurrentSubscriptionResponse:
    subscription = await repository.get_current_subscription(db, user.id)
    if subscription is None:
        return CurrentSubscriptionResponse(
            plan_id=FREE_PLAN.id,
            plan_name=FREE_PLAN.name,
            status=SubscriptionStatus.ACTIVE.value,
            is_free=True,
        )
    return CurrentSubscriptionResponse(
        plan_id=subscription.plan_id,
        plan_name=subscription.plan_name,
        status=subscription.status.value,
        is_free=False,
        subscription=SubscriptionResponse.model_validate(subscription),
    )


async def subscription_history(db: AsyncSession, user: CurrentUser) -> list[SubscriptionResponse]:
    return [
        SubscriptionResponse.model_validate(s)
        for s in await repository.list_user_subscriptions(db, user.id)
    ]


async def get_features(db: AsyncSession, user: CurrentUser) -> FeaturesResponse:
    plan = await _effective_plan(db, user.id)
    return FeaturesResponse(plan_id=plan.id, limits=plan.limits, features=list(plan.features))


async def check_feature(db: AsyncSession, user: CurrentUser, feature: str) -> FeatureAccessResponse:
    plan = await _effective_plan(db, user.id)
    return FeatureAccessResponse(feature=feature, plan_id=plan.id, has_access=plan.has_feature(feature))


async def get_usage(db: AsyncSession, user: CurrentUser) -> UsageResponse:
    plan = await _effective_plan(db, user.id)
    children_count = len(await children_repository.list_by_parent(db, user.id))
    max_children = plan.limits.get("max_children")
    return UsageResponse(
        plan_id=plan.id,
        children_count=children_count,
        max_children=max_children,
        can_add_child=max_children is None or children_count < max_children,
    )


async def payment_history(
    db: AsyncSession, user: CurrentUser, limit: int = 10, offset: int = 0
) -> PaymentHistoryResponse:
    transactions, total = await repository.payment_history(db, user.id, limit, offset)
    return PaymentHistoryResponse(
        payments=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
        limit=limit,
        offset=offset,
    )


# ============================================
# Checkout, cancel, reactivate
# ============================================


def _ensure_gateway_available(gateway: PaymentGateway) -> None:
    if gateway == PaymentGateway.PAYFAST and not settings.payfast_enabled:
        raise ValidationError("PayFast is not configured.", "GATEWAY_UNAVAILABLE")
    if gateway == PaymentGateway.STRIPE and not settings.stripe_enabled:
        raise ValidationError("Stripe is not configured.", "GATEWAY_UNAVAILABLE")


async def upgrade(db: AsyncSession, user: CurrentUser, data: UpgradeRequest) -> UpgradeResponse:
    """
    Start a subscription to a paid plan.

    First-time subscribers to a plan with a trial get the trial straight
    away. Otherwise a pending subscription and a pending transaction are
    created and the gateway checkout is returned; the subscription turns
    active when the gateway reports payment.
    """
    if not user.is_parent:
        raise ForbiddenError("Only parent accounts can subscribe.")

    plan = PLANS.get(data.plan_id)
    if plan is None:
        raise ValidationError(f"Unknown plan: {data.plan_id}", "INVALID_PLAN")

    gateway = PaymentGateway(data.gateway)
    _ensure_gateway_available(gateway)

    account = await UserRepository.get_by_id(db, user.id)
    if account is None:
        raise NotFoundError("User")

    current = await repository.get_current_subscription(db, user.id)
    if current is not None and current.plan_id == plan.id and current.billing_cycle == data.billing_cycle:
        raise ConflictError("You are already subscribed to this plan.", "ALREADY_SUBSCRIBED")

    now = datetime.now(UTC)
    amount = plan.price(data.billing_cycle)
    currency = settings.billing_currency
    common = {
        "user_id": user.id,
        "plan_id": plan.id,
        "plan_name": plan.name,
        "price_monthly": plan.price_monthly,
        "price_annual": plan.price_annual,
        "currency": currency,
        "billing_cycle": data.billing_cycle,
        "gateway": gateway,
        "start_date": now,
        "auto_renew": True,
        "stripe_customer_id": account.stripe_customer_id,
    }

    if data.start_trial and plan.trial_days and not await repository.has_used_plan(db, user.id):
        trial_end = now + timedelta(days=plan.trial_days)
        subscription = await repository.create_subscription(
            db,
            status=SubscriptionStatus.TRIAL,
            end_date=trial_end,
            trial_end_date=trial_end,
            next_billing_date=trial_end,
            details={"source": "trial"},
            **common,
        )
        logger.info(f"Started {plan.trial_days}-day {plan.id} trial {subscription.id} for {user.id}")
        return UpgradeResponse(
            subscription=SubscriptionResponse.model_validate(subscription),
            amount=Decimal("0"),
            currency=currency,
            trial=True,
        )

    end = now + period_length(data.billing_cycle)
    subscription = await repository.create_subscription(
        db,
        status=SubscriptionStatus.PENDING,
        end_date=end,
        next_billing_date=end,
        details={"source": "upgrade"},
        **common,
    )

    response = UpgradeResponse(
        subscription=SubscriptionResponse.model_validate(subscription),
        amount=amount,
        currency=currency,
    )

    if gateway == PaymentGateway.PAYFAST:
        checkout = payfast.build_checkout(
            amount=amount,
            item_name=f"{plan.name} - {data.billing_cycle.value}",
            email=account.email,
            first_name=account.first_name,
            last_name=account.last_name,
            subscription_id=subscription.id,
            user_id=user.id,
        )
        transaction = await repository.create_transaction(
            db,
            subscription_id=subscription.id,
            user_id=user.id,
            gateway=gateway,
            reference=checkout.reference,
            amount=amount,
            currency=currency,
            status=TransactionStatus.PENDING,
            gateway_response={"checkout_url": checkout.url},
        )
        response.payfast = PayFastCheckoutResponse(
            url=checkout.url, fields=checkout.fields, redirect_url=checkout.redirect_url
        )
    else:
        customer_id = account.stripe_customer_id
        if not customer_id:
            customer_id = await stripe_gateway.create_customer(
                account.email, account.full_name, account.id
            )
            account.stripe_customer_id = customer_id
            subscription.stripe_customer_id = customer_id
        intent = await stripe_gateway.create_payment_intent(
            amount=amount,
            currency=currency,
            metadata={
                "subscription_id": subscription.id,
                "user_id": user.id,
                "plan_id": plan.id,
                "billing_cycle": data.billing_cycle.value,
            },
            customer_id=customer_id,
            idempotency_key=f"checkout:{subscription.id}",
        )
        transaction = await repository.create_transaction(
            db,
            subscription_id=subscription.id,
            user_id=user.id,
            gateway=gateway,
            reference=intent["id"],
            amount=amount,
            currency=currency,
            status=TransactionStatus.PENDING,
            gateway_response={"status": intent["status"]},
        )
        response.stripe = StripeCheckoutResponse(
            payment_intent_id=intent["id"],
            client_secret=intent["client_secret"],
            publishable_key=settings.stripe_publishable_key,
        )

    response.transaction_id = transaction.id
    logger.info(f"Created pending {gateway.value} checkout for subscription {subscription.id}")
    return response


async def cancel(db: AsyncSession, user: CurrentUser, data: CancelRequest) -> SubscriptionResponse:
    subscription = await repository.get_current_subscription(db, user.id)
    if subscription is None:
        raise NotFoundError("Active subscription", "NO_ACTIVE_SUBSCRIPTION")

    now = datetime.now(UTC)
    fields = {
        "auto_renew": False,
        "cancelled_at": now,
        "cancelled_by": user.id,
        "cancellation_reason": data.reason,
    }
    if data.immediate:
        fields.update(status=SubscriptionStatus.CANCELLED, end_date=now, next_billing_date=None)

    await repository.update_subscription(db, subscription, fields)
    logger.info(
        f"Subscription {subscription.id} cancelled "
        f"({'immediately' if data.immediate else 'at period end'})"
    )
    return SubscriptionResponse.model_validate(subscription)


async def reactivate(db: AsyncSession, user: CurrentUser) -> SubscriptionResponse:
    now = datetime.now(UTC)
    subscription = await repository.get_reactivatable_subscription(db, user.id, now)
    if subscription is None:
        raise NotFoundError("Cancelled subscription", "NO_CANCELLED_SUBSCRIPTION")

    status = subscription.status
    if status == SubscriptionStatus.CANCELLED:
        in_trial = subscription.trial_end_date is not None and subscription.trial_end_date > now
        status = SubscriptionStatus.TRIAL if in_trial else SubscriptionStatus.ACTIVE

    await repository.update_subscription(
        db,
        subscription,
        {
            "status": status,
            "auto_renew": True,
            "next_billing_date": subscription.end_date,
            "cancelled_at": None,
            "cancelled_by": None,
            "cancellation_reason": None,
        },
    )
    logger.info(f"Subscription {subscription.id} reactivated")
    return SubscriptionResponse.model_validate(subscription)


# ============================================
# Admin
# ============================================


async def create_manual_subscription(
    db: AsyncSession, admin: CurrentUser, data: ManualSubscriptionRequest
) -> SubscriptionResponse:
    plan = PLANS.get(data.plan_id)
    if plan is None:
        raise ValidationError(f"Unknown plan: {data.plan_id}", "INVALID_PLAN")
    if await UserRepository.get_by_id(db, data.user_id) is None:
        raise NotFoundError("User")

    now = datetime.now(UTC)
    end = now + timedelta(days=data.duration_days)
    subscription = await repository.create_subscription(
        db,
        user_id=data.user_id,
        plan_id=plan.id,
        plan_name=plan.name,
        price_monthly=Decimal("0"),
        price_annual=Decimal("0"),
        currency=settings.billing_currency,
        billing_cycle=data.billing_cycle,
        status=SubscriptionStatus.ACTIVE,
        gateway=PaymentGateway.MANUAL,
        start_date=now,
        end_date=end,
        next_billing_date=end,
        auto_renew=data.auto_renew,
        created_by=admin.id,
        details={"source": "manual", "created_by_admin": admin.id},
    )
    await repository.supersede_others(db, data.user_id, subscription.id, now)
    logger.info(f"Admin {admin.id} created manual subscription {subscription.id}")
    return SubscriptionResponse.model_validate(subscription)


async def list_subscriptions(
    db: AsyncSession,
    status: SubscriptionStatus | None,
    gateway: PaymentGateway | None,
    page: int,
    limit: int,
) -> SubscriptionListResponse:
    subscriptions, total = await repository.list_subscriptions(
        db, status=status, gateway=gateway, limit=limit, offset=(page - 1) * limit
    )
    return SubscriptionListResponse(
        subscriptions=[SubscriptionResponse.model_validate(s) for s in subscriptions],
        total=total,
        page=page,
        limit=limit,
    )


def monthly_value(subscription: Subscription) -> Decimal:
    if subscription.billing_cycle == BillingCycle.ANNUAL:
        return (subscription.price_annual / 12).quantize(Decimal("0.01"))
    return subscription.price_monthly


async def billing_stats(db: AsyncSession) -> BillingStatsResponse:
    now = datetime.now(UTC)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    active = await repository.list_active_for_revenue(db)
    mrr = sum((monthly_value(s) for s in active), Decimal("0"))
    arpu = (mrr / len(active)).quantize(Decimal("0.01")) if active else Decimal("0")

    return BillingStatsResponse(
        status_counts=await repository.status_counts(db),
        plan_counts=await repository.plan_counts(db),
        monthly_recurring_revenue=mrr,
        average_revenue_per_user=arpu,
        revenue_all_time=[RevenueRow(**row) for row in await repository.revenue_by_gateway(db)],
        revenue_this_month=[
            RevenueRow(**row) for row in await repository.revenue_by_gateway(db, start=month_start)
        ],
        transaction_status_counts=await repository.transaction_status_counts(db),
    )
