"""
Billing Background Jobs

Scheduled tasks for the subscription lifecycle:
1. Renew subscriptions due within the lookahead window (daily 02:00)
2. Expire subscriptions whose period is over (every 6 hours)
3. Expire checkouts and payments left pending for over 24 hours (03:00 every third day)
4. E-mail last month's billing report to admins (08:00 on the 1st)

Design Principles:
- Jobs handle their own database sessions, one per processed item
- A failure on one subscription is logged and does not stop the run
- Runs never overlap: the scheduler runs one instance per job and each run
  holds a Redis lock (see ``kinderhub.core.scheduler``)
- Renewals are idempotent per billing period (see ``renewals``)

All schedules use the configured timezone (Africa/Johannesburg).
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from kinderhub.core import email
from kinderhub.core.config import settings
from kinderhub.core.database import async_session_maker
from kinderhub.core.scheduler import cron_trigger, register_job
from kinderhub.modules.billing import repository, renewals
from kinderhub.modules.billing.models import RENEWABLE_STATUSES, SubscriptionStatus
from kinderhub.modules.billing.service import expiry_deadline
from kinderhub.modules.users.models import StaffRole
from kinderhub.modules.users.repository import StaffRepository, UserRepository

logger = logging.getLogger(__name__)

JOB_ID_PROCESS_RENEWALS = "billing_process_renewals"
JOB_ID_EXPIRE_SUBSCRIPTIONS = "billing_expire_subscriptions"
JOB_ID_EXPIRE_PENDING = "billing_expire_pending_transactions"
JOB_ID_MONTHLY_REPORT = "billing_monthly_report"

SCHEDULES = {
    JOB_ID_PROCESS_RENEWALS: "0 2 * * *",
    JOB_ID_EXPIRE_SUBSCRIPTIONS: "0 */6 * * *",
    JOB_ID_EXPIRE_PENDING: "0 3 */3 * *",
    JOB_ID_MONTHLY_REPORT: "0 8 1 * *",
}

BILLING_JOB_IDS = tuple(SCHEDULES)

EXPIRABLE_STATUSES = (*RENEWABLE_STATUSES, SubscriptionStatus.CANCELLED)


async def _renew_one(subscription_id: str, now: datetime) -> dict[str, Any]:
    async with async_session_maker() as db:
        subscription = await repository.get_subscription(db, subscription_id)
        if subscription is None:
            return {"subscription_id": subscription_id, "status": "skipped", "reason": "not_found"}

        outcome = await renewals.renew_subscription(db, subscription, now)
        await db.commit()
        return {
            "subscription_id": subscription_id,
            "status": outcome.outcome,
            "transaction_id": outcome.transaction_id,
            "detail": outcome.detail,
        }


async def process_renewals() -> dict[str, Any]:
    """
    Renew every active or trial subscription set to auto-renew whose next
    billing date falls within the lookahead window.

    Each due subscription is processed once per run.

    Returns:
        Dict with job execution summary
    """
    executed_at = datetime.now(UTC)
    lookahead = timedelta(days=settings.renewal_lookahead_days)

    async with async_session_maker() as db:
        due = await repository.list_due_for_renewal(db, executed_at, lookahead)
        due_ids = [subscription.id for subscription in due]

    logger.info(f"Found {len(due_ids)} subscriptions due for renewal")

    results: dict[str, Any] = {
        "executed_at": executed_at.isoformat(),
        "renewals": [],
        "total_processed": 0,
        "total_errors": 0,
    }

    for subscription_id in due_ids:
        try:
            result = await _renew_one(subscription_id, executed_at)
            results["renewals"].append(result)
            results["total_processed"] += 1
        except Exception as e:
            logger.error(f"Error renewing subscription {subscription_id}: {e}", exc_info=True)
            results["renewals"].append(
                {"subscription_id": subscription_id, "status": "error", "error": str(e)}
            )
            results["total_errors"] += 1

    logger.info(
        f"Renewal job completed. "
        f"Processed: {results['total_processed']}, Errors: {results['total_errors']}"
    )
    return results


async def _expire_one(subscription_id: str, now: datetime, grace: timedelta) -> dict[str, Any]:
    async with async_session_maker() as db:
        subscription = await repository.get_subscription(db, subscription_id)
        if subscription is None:
            return {"subscription_id": subscription_id, "status": "skipped", "reason": "not_found"}
        if subscription.status not in EXPIRABLE_STATUSES or now < expiry_deadline(subscription, grace):
            # paid or changed since it was listed
            return {"subscription_id": subscription_id, "status": "skipped", "reason": "not_ended"}

        previous = subscription.status
        await repository.update_subscription(
            db,
            subscription,
            {"status": SubscriptionStatus.EXPIRED, "auto_renew": False, "next_billing_date": None},
        )
        account = await UserRepository.get_by_id(db, subscription.user_id)
        await db.commit()

        email_sent = False
        if account is not None:
            email_sent = await email.send_subscription_expired(
                to_email=account.email,
                name=account.full_name,
                plan_name=subscription.plan_name,
            )
            if not email_sent:
                logger.error(f"Failed to send expiry email for subscription {subscription_id}")

        logger.info(f"Expired subscription {subscription_id} (was {previous.value})")
        return {
            "subscription_id": subscription_id,
            "status": "expired",
            "previous_status": previous.value,
            "email_sent": email_sent,
        }


async def expire_ended_subscriptions() -> dict[str, Any]:
    """
    Expire subscriptions whose period has ended without renewal.

    Auto-renewing subscriptions are given ``renewal_grace_days`` past their
    end date before they expire, so failed renewals can be retried.
    """
    executed_at = datetime.now(UTC)
    grace = timedelta(days=settings.renewal_grace_days)

    async with async_session_maker() as db:
        ended_ids = [s.id for s in await repository.list_ended(db, executed_at, grace)]

    logger.info(f"Found {len(ended_ids)} subscriptions to expire")

    results: dict[str, Any] = {
        "executed_at": executed_at.isoformat(),
        "expired": [],
        "total_expired": 0,
        "total_errors": 0,
    }

    for subscription_id in ended_ids:
        try:
            result = await _expire_one(subscription_id, executed_at, grace)
            results["expired"].append(result)
            if result["status"] == "expired":
                results["total_expired"] += 1
        except Exception as e:
            logger.error(f"Error expiring subscription {subscription_id}: {e}", exc_info=True)
            results["expired"].append(
                {"subscription_id": subscription_id, "status": "error", "error": str(e)}
            )
            results["total_errors"] += 1

    logger.info(
        f"Subscription expiry job completed. "
        f"Expired: {results['total_expired']}, Errors: {results['total_errors']}"
    )
    return results


async def expire_stale_pending() -> dict[str, Any]:
    """
    Expire payments and checkouts still pending after
    ``pending_transaction_expiry_hours``.

    An expired renewal transaction lets the next renewal run make a new
    attempt for the same period.
    """
    executed_at = datetime.now(UTC)
    threshold = executed_at - timedelta(hours=settings.pending_transaction_expiry_hours)

    async with async_session_maker() as db:
        transaction_ids = await repository.expire_stale_pending(db, threshold)
        subscription_ids = await repository.expire_stale_pending_subscriptions(db, threshold)
        await db.commit()

    logger.info(
        f"Expired {len(transaction_ids)} pending transactions and "
        f"{len(subscription_ids)} unpaid checkouts older than {threshold.isoformat()}"
    )
    return {
        "executed_at": executed_at.isoformat(),
        "expired_transactions": len(transaction_ids),
        "expired_checkouts": len(subscription_ids),
    }


def previous_month(now: datetime, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Start and end (exclusive) of the calendar month before ``now`` in ``tz``."""
    local = now.astimezone(tz)
    this_month = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    last_month = (this_month - timedelta(days=1)).replace(day=1)
    return last_month, this_month


async def send_monthly_report() -> dict[str, Any]:
    """E-mail last month's revenue and current subscription counts to every admin."""
    executed_at = datetime.now(UTC)
    start, end = previous_month(executed_at, ZoneInfo(settings.timezone))
    period_label = start.strftime("%B %Y")

    async with async_session_maker() as db:
        revenue = await repository.revenue_by_gateway(db, start=start, end=end)
        counts = await repository.status_counts(db)
        admins = await StaffRepository.list_by_role(db, StaffRole.ADMIN)

    sent = 0
    for admin in admins:
        if await email.send_monthly_billing_report(
            to_email=admin.email,
            period_label=period_label,
            revenue_rows=revenue,
            status_counts=counts,
        ):
            sent += 1
        else:
            logger.error(f"Failed to send billing report to {admin.email}")

    logger.info(f"Monthly billing report for {period_label} sent to {sent}/{len(admins)} admins")
    return {
        "executed_at": executed_at.isoformat(),
        "period": period_label,
        "revenue": [{**row, "total": str(row["total"])} for row in revenue],
        "status_counts": counts,
        "reports_sent": sent,
    }


JOB_FUNCS = {
    JOB_ID_PROCESS_RENEWALS: process_renewals,
    JOB_ID_EXPIRE_SUBSCRIPTIONS: expire_ended_subscriptions,
    JOB_ID_EXPIRE_PENDING: expire_stale_pending,
    JOB_ID_MONTHLY_REPORT: send_monthly_report,
}


def register_billing_jobs() -> None:
    """
    Register the billing jobs with the scheduler.

    Call during application startup, before ``start_scheduler``.
    """
    for job_id, expression in SCHEDULES.items():
        register_job(job_id=job_id, func=JOB_FUNCS[job_id], trigger=cron_trigger(expression))
    logger.info(f"Registered {len(SCHEDULES)} billing jobs")
