"""
Notifications Router

Endpoints:
- GET /notifications - Own notifications, newest first (paginated)
- POST /notifications - Notify accounts or broadcast to a role (admin)
- GET /notifications/count/unread - Unread count
- GET /notifications/summary - Total and unread per category
- PUT /notifications/read-all - Mark all as read
- PUT /notifications/{id}/read - Mark one as read
- DELETE /notifications/{id} - Delete one
"""

import logging

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser, get_current_admin, get_current_user
from kinderhub.core.database import get_db
from kinderhub.core.exceptions import ServiceError, to_http_exception
from kinderhub.core.rate_limit import rate_limit
from kinderhub.modules.notifications import service
from kinderhub.modules.notifications.models import NotificationCategory
from kinderhub.modules.notifications.schemas import (
    CategorySummary,
    NotificationCreate,
    NotificationCreated,
    NotificationListResponse,
    NotificationResponse,
    ReadAllResponse,
    UnreadCountResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(service.DEFAULT_PAGE_SIZE, ge=1, le=service.MAX_PAGE_SIZE),
    unread_only: bool = False,
    category: NotificationCategory | None = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> NotificationListResponse:
    return await service.list_notifications(db, user, page, limit, unread_only, category)


@router.post("", response_model=NotificationCreated, status_code=status.HTTP_201_CREATED)
@rate_limit(limit=20, window_seconds=60)
async def create_notifications(
    request: Request,
    data: NotificationCreate,
    admin: CurrentUser = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
) -> NotificationCreated:
    return await service.create_notifications(db, data, admin)


@router.get("/count/unread", response_model=UnreadCountResponse)
async def unread_count(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread=await service.unread_count(db, user))


@router.get("/summary", response_model=dict[str, CategorySummary])
async def summary(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict[str, CategorySummary]:
    return await service.summary(db, user)


@router.put("/read-all", response_model=ReadAllResponse)
async def mark_all_read(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ReadAllResponse:
    return ReadAllResponse(updated=await service.mark_all_read(db, user))


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> NotificationResponse:
    try:
        notification = await service.mark_read(db, user, notification_id)
    except ServiceError as e:
        raise to_http_exception(e) from e
    return NotificationResponse.model_validate(notification)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.delete_notification(db, user, notification_id)
    except ServiceError as e:
        raise to_http_exception(e) from e
