"""
Notification Repository
"""

from datetime import datetime
from typing import Any

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.modules.notifications.models import Notification, NotificationCategory


def _owned_by(recipient_id: str, recipient_type: str) -> list:
    return [
        Notification.recipient_id == recipient_id,
        Notification.recipient_type == recipient_type,
    ]


async def create_many(
    db: AsyncSession,
    recipients: list[tuple[str, str]],
    category: NotificationCategory,
    title: str,
    body: str,
    data: dict[str, Any],
) -> list[Notification]:
    notifications = [
        Notification(
            recipient_id=recipient_id,
            recipient_type=recipient_type,
            category=category,
            title=title,
            body=body,
            data=data,
        )
        for recipient_id, recipient_type in recipients
    ]
    db.add_all(notifications)
    await db.flush()
    return notifications


async def get_by_id(db: AsyncSession, notification_id: str) -> Notification | None:
    result = await db.execute(select(Notification).where(Notification.id == notification_id))
    return result.scalar_one_or_none()


async def list_for_recipient(
    db: AsyncSession,
    recipient_id: str,
    recipient_type: str,
    *,
    offset: int,
    limit: int,
    unread_only: bool = False,
    category: NotificationCategory | None = None,
) -> tuple[list[Notification], int]:
    """Newest first, with the total matching the same filters."""
    conditions = _owned_by(recipient_id, recipient_type)
    if unread_only:
        conditions.append(Notification.read_at.is_(None))
    if category is not None:
        conditions.append(Notification.category == category)

    total = await db.scalar(select(func.count(Notification.id)).where(*conditions))
    result = await db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


async def mark_read(db: AsyncSession, notification: Notification, now: datetime) -> Notification:
    if notification.read_at is None:
        notification.read_at = now
        await db.flush()
    return notification


async def mark_all_read(
    db: AsyncSession, recipient_id: str, recipient_type: str, now: datetime
) -> int:
    result = await db.execute(
        update(Notification)
        .where(*_owned_by(recipient_id, recipient_type), Notification.read_at.is_(None))
        .values(read_at=now)
    )
    return result.rowcount


async def delete_one(db: AsyncSession, notification: Notification) -> None:
    await db.execute(delete(Notification).where(Notification.id == notification.id))


async def count_unread(db: AsyncSession, recipient_id: str, recipient_type: str) -> int:
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            *_owned_by(recipient_id, recipient_type), Notification.read_at.is_(None)
        )
    )
    return count or 0


async def summary_by_category(
    db: AsyncSession, recipient_id: str, recipient_type: str
) -> list[tuple[NotificationCategory, int, int]]:
    """(category, total, unread) for every category the recipient has."""
    unread = func.sum(case((Notification.read_at.is_(None), 1), else_=0))
    result = await db.execute(
        select(Notification.category, func.count(Notification.id), unread)
        .where(*_owned_by(recipient_id, recipient_type))
        .group_by(Notification.category)
    )
    return [(category, total, count or 0) for category, total, count in result.all()]
