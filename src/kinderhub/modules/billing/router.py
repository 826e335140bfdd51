"""
Subscriptions Router

User endpoints:
- GET /subscriptions/plans - Available plans (public)
- GET /subscriptions/current - Caller's effective plan and subscription
- GET /subscriptions/history - All of the caller's subscriptions
- GET /subscriptions/features - Features and limits of the caller's plan
- GET /subscriptions/features/{feature} - Whether the caller's plan includes a feature
- GET /subscriptions/usage - Usage against plan limits
- GET /subscriptions/payments - Caller's payment history
- POST /subscriptions/upgrade - Start a trial or a PayFast/Stripe checkout (parent)
- POST /subscriptions/cancel - Cancel now or at period end
- POST /subscriptions/reactivate - Undo a cancellation before the period ends

Admin endpoints:
- POST /subscriptions/admin/manual-subscription - Grant a manual subscription
- GET /subscriptions/admin/subscriptions - List subscriptions (?status=&gateway=)
- GET /subscriptions/admin/stats - Revenue and status statistics
- POST /subscriptions/admin/subscriptions/{id}/renew - Renew one subscription now
- POST /subscriptions/admin/jobs/{job_id}/trigger - Run a billing job now
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser, get_current_admin, get_current_user
from kinderhub.core.database import get_db
from kinderhub.core.exceptions import ServiceError, to_http_exception
from kinderhub.core.scheduler import trigger_job_manually
from kinderhub.modules.billing import renewals, service
from kinderhub.modules.billing.jobs import BILLING_JOB_IDS
from kinderhub.modules.billing.models import PaymentGateway, SubscriptionStatus
from kinderhub.modules.billing.schemas import (
    BillingStatsResponse,
    CancelRequest,
    CurrentSubscriptionResponse,
    FeatureAccessResponse,
    FeaturesResponse,
    ManualSubscriptionRequest,
    PaymentHistoryResponse,
    PlanResponse,
    RenewalResultResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
    UpgradeRequest,
    UpgradeResponse,
    UsageResponse,
)

router = APIRouter()


# ============================================
# User endpoints
# ============================================


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans() -> list[PlanResponse]:
    return service.list_plans()


@router.get("/current", response_model=CurrentSubscriptionResponse)
async def get_current(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CurrentSubscriptionResponse:
    return await service.get_current(db, user)


@router.get("/history", response_model=list[SubscriptionResponse])
async def subscription_history(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[SubscriptionResponse]:
    return await service.subscription_history(db, user)


@router.get("/features", response_model=FeaturesResponse)
async def get_features(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> FeaturesResponse:
    return await service.get_features(db, user)


@router.get("/features/{feature}", response_model=FeatureAccessResponse)
async def check_feature(
    feature: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> FeatureAccessResponse:
    return await service.check_feature(db, user, feature)


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UsageResponse:
    return await service.get_usage(db, user)


@router.get("/payments", response_model=PaymentHistoryResponse)
async def payment_history(
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PaymentHistoryResponse:
    return await service.payment_history(db, user, limit, offset)


@router.post("/upgrade", response_model=UpgradeResponse, status_code=status.HTTP_201_CREATED)
async def upgrade(
    data: UpgradeRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UpgradeResponse:
    try:
        return await service.upgrade(db, user, data)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.post("/cancel", response_model=SubscriptionResponse)
async def cancel(
    data: CancelRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionResponse:
    try:
        return await service.cancel(db, user, data)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.post("/reactivate", response_model=SubscriptionResponse)
async def reactivate(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionResponse:
    try:
        return await service.reactivate(db, user)
    except ServiceError as e:
        raise to_http_exception(e) from e


# ============================================
# Admin endpoints
# ============================================


@router.post(
    "/admin/manual-subscription",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_manual_subscription(
    data: ManualSubscriptionRequest,
    admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionResponse:
    try:
        return await service.create_manual_subscription(db, admin, data)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.get("/admin/subscriptions", response_model=SubscriptionListResponse)
async def list_subscriptions(
    status_filter: SubscriptionStatus | None = Query(default=None, alias="status"),
    gateway: PaymentGateway | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionListResponse:
    return await service.list_subscriptions(db, status_filter, gateway, page, limit)


@router.get("/admin/stats", response_model=BillingStatsResponse)
async def billing_stats(
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> BillingStatsResponse:
    return await service.billing_stats(db)


@router.post("/admin/subscriptions/{subscription_id}/renew", response_model=RenewalResultResponse)
async def renew_subscription(
    subscription_id: str,
    _admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> RenewalResultResponse:
    try:
        outcome = await renewals.renew_by_id(db, subscription_id)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return RenewalResultResponse(
        subscription_id=outcome.subscription_id,
        outcome=outcome.outcome,
        transaction_id=outcome.transaction_id,
        detail=outcome.detail,
    )


@router.post("/admin/jobs/{job_id}/trigger")
async def trigger_billing_job(
    job_id: str,
    _admin: CurrentUser = Depends(get_current_admin),
) -> dict[str, Any]:
    if job_id not in BILLING_JOB_IDS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "JOB_NOT_FOUND", "message": f"Unknown billing job: {job_id}"},
        )
    try:
        return await trigger_job_manually(job_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "JOB_NOT_REGISTERED", "message": str(e)},
        ) from e
