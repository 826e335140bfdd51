"""
Notification Service

Inbox operations for the signed-in account and admin-issued notifications.
Only the recipient may read, mark or delete a notification.

Each new notification is also sent as a web push. Push runs in a savepoint
per recipient: a failed push is logged and never undoes the notifications.
"""

import logging
import math
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import ROLE_ADMIN, ROLE_PARENT, ROLE_TEACHER, CurrentUser
from kinderhub.core.exceptions import ForbiddenError, NotFoundError
from kinderhub.modules.notifications import repository
from kinderhub.modules.notifications.models import Notification, NotificationCategory
from kinderhub.modules.notifications.schemas import (
    CategorySummary,
    NotificationCreate,
    NotificationCreated,
    NotificationListResponse,
    NotificationResponse,
    Pagination,
)
from kinderhub.modules.push import service as push_service
from kinderhub.modules.users.models import StaffRole
from kinderhub.modules.users.repository import StaffRepository, UserRepository

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50


async def list_notifications(
    db: AsyncSession,
    user: CurrentUser,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    unread_only: bool = False,
    category: NotificationCategory | None = None,
) -> NotificationListResponse:
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    page = max(page, 1)

    notifications, total = await repository.list_for_recipient(
        db,
        user.id,
        user.role,
        offset=(page - 1) * limit,
        limit=limit,
        unread_only=unread_only,
        category=category,
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


async def _broadcast_recipients(db: AsyncSession, audience: str) -> list[tuple[str, str]]:
    recipients: list[tuple[str, str]] = []
    if audience in (ROLE_PARENT, "all"):
        recipients += [(u.id, ROLE_PARENT) for u in await UserRepository.list_active(db)]
    if audience in (ROLE_TEACHER, "all"):
        teachers = await StaffRepository.list_by_role(db, StaffRole.TEACHER)
        recipients += [(t.id, ROLE_TEACHER) for t in teachers]
    if audience in (ROLE_ADMIN, "all"):
        admins = await StaffRepository.list_by_role(db, StaffRole.ADMIN)
        recipients += [(a.id, ROLE_ADMIN) for a in admins]
    return recipients


async def _push(db: AsyncSession, notification: Notification) -> bool:
    payload = {
        "title": notification.title,
        "body": notification.body,
        "tag": f"notification:{notification.id}",
        "data": {
            **notification.data,
            "type": notification.category.value,
            "notification_id": notification.id,
        },
    }
    try:
        async with db.begin_nested():
            sent = await push_service.send_to_user(
                db, notification.recipient_id, notification.recipient_type, payload
            )
        return sent > 0
    except Exception as e:
        logger.error(
            f"Push failed for {notification.recipient_type}:{notification.recipient_id}: {e}"
        )
        return False


async def create_notifications(
    db: AsyncSession, data: NotificationCreate, admin: CurrentUser
) -> NotificationCreated:
    if data.broadcast:
        recipients = await _broadcast_recipients(db, data.broadcast)
    else:
        # duplicates in the request get one notification
        recipients = list(dict.fromkeys((r.id, r.type) for r in data.recipients))

    notifications = await repository.create_many(
        db, recipients, data.category, data.title, data.body, data.data
    )

    pushed = 0
    for notification in notifications:
        if await _push(db, notification):
            pushed += 1

    logger.info(
        f"Admin {admin.id} created {len(notifications)} {data.category.value} notifications "
        f"({pushed} pushed)"
    )
    return NotificationCreated(count=len(notifications), pushed=pushed)


async def _get_owned(db: AsyncSession, user: CurrentUser, notification_id: str) -> Notification:
    notification = await repository.get_by_id(db, notification_id)
    if notification is None:
        raise NotFoundError("Notification")
    if notification.recipient_id != user.id or notification.recipient_type != user.role:
        raise ForbiddenError("This notification belongs to another account.")
    return notification


async def mark_read(db: AsyncSession, user: CurrentUser, notification_id: str) -> Notification:
    notification = await _get_owned(db, user, notification_id)
    return await repository.mark_read(db, notification, datetime.now(UTC))


async def mark_all_read(db: AsyncSession, user: CurrentUser) -> int:
    return await repository.mark_all_read(db, user.id, user.role, datetime.now(UTC))


async def delete_notification(db: AsyncSession, user: CurrentUser, notification_id: str) -> None:
    notification = await _get_owned(db, user, notification_id)
    await repository.delete_one(db, notification)


async def unread_count(db: AsyncSession, user: CurrentUser) -> int:
    return await repository.count_unread(db, user.id, user.role)


async def summary(db: AsyncSession, user: CurrentUser) -> dict[str, CategorySummary]:
    """Totals per category; categories without notifications are left out."""
    rows = await repository.summary_by_category(db, user.id, user.role)
    return {
        category.value: CategorySummary(total=total, unread=unread)
        for category, total, unread in rows
    }
