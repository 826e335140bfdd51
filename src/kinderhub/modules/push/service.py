"""
Push Service

Sends Web Push notifications to every subscription of a user.
Subscriptions the push service reports as gone (404 / 410) are deleted.
When VAPID keys are not configured, sends are logged and skipped.
"""

import asyncio
import json
import logging
from typing import Any

from pywebpush import WebPushException, webpush
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.config import settings
from kinderhub.modules.push import repository
from kinderhub.modules.push.models import PushSubscription

logger = logging.getLogger(__name__)

GONE_STATUS_CODES = (404, 410)


def _send(subscription: PushSubscription, payload: str) -> None:
    webpush(
        subscription_info={
            "endpoint": subscription.endpoint,
            "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
        },
        data=payload,
        vapid_private_key=settings.vapid_private_key,
        vapid_claims={"sub": settings.vapid_subject},
    )


async def send_to_user(
    db: AsyncSession,
    user_id: str,
    user_type: str,
    payload: dict[str, Any],
) -> int:
    """
    Push ``payload`` to all of a user's subscriptions.

    Returns:
        Number of subscriptions the notification was accepted for
    """
    if not settings.push_enabled:
        logger.info(f"Push disabled, not notifying {user_type}:{user_id}: {payload.get('title')}")
        return 0

    subscriptions = await repository.list_for_user(db, user_id, user_type)
    body = json.dumps(payload, default=str)
    sent = 0

    for subscription in subscriptions:
        try:
            await asyncio.to_thread(_send, subscription, body)
            sent += 1
        except WebPushException as e:
            status_code = e.response.status_code if e.response is not None else None
            if status_code in GONE_STATUS_CODES:
                logger.info(f"Removing expired push subscription for {user_type}:{user_id}")
                await repository.delete_by_endpoint(db, subscription.endpoint)
            else:
                logger.warning(f"Push to {user_type}:{user_id} failed: {e}")

    return sent


async def subscribe(
    db: AsyncSession,
    user_id: str,
    user_type: str,
    endpoint: str,
    p256dh: str,
    auth: str,
    user_agent: str | None = None,
) -> None:
    await repository.upsert(db, user_id, user_type, endpoint, p256dh, auth, user_agent)
    logger.info(f"Push subscription stored for {user_type}:{user_id}")


async def unsubscribe(db: AsyncSession, user_id: str, endpoint: str) -> bool:
    return await repository.delete_by_endpoint(db, endpoint, user_id=user_id)
