"""
Push Router

Endpoints:
- GET /push/vapid-public-key - Public key for browser subscription
- POST /push/subscribe - Store a push subscription for the current user
- POST /push/unsubscribe - Remove a push subscription
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser, get_current_user
from kinderhub.core.config import settings
from kinderhub.core.database import get_db
from kinderhub.modules.push import service
from kinderhub.modules.push.schemas import SubscribeRequest, UnsubscribeRequest, VapidKeyResponse

router = APIRouter()


@router.get("/vapid-public-key", response_model=VapidKeyResponse)
async def vapid_public_key() -> VapidKeyResponse:
    return VapidKeyResponse(public_key=settings.vapid_public_key, enabled=settings.push_enabled)


@router.post("/subscribe", status_code=status.HTTP_201_CREATED)
async def subscribe(
    data: SubscribeRequest,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await service.subscribe(
        db,
        user_id=user.id,
        user_type=user.role,
        endpoint=data.endpoint,
        p256dh=data.keys.p256dh,
        auth=data.keys.auth,
        user_agent=request.headers.get("user-agent"),
    )
    return {"success": True}


@router.post("/unsubscribe")
async def unsubscribe(
    data: UnsubscribeRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> dict:
    removed = await service.unsubscribe(db, user.id, data.endpoint)
    return {"success": True, "removed": removed}
