"""
Push Subscription Repository
"""

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.modules.push.models import PushSubscription


async def upsert(
    db: AsyncSession,
    user_id: str,
    user_type: str,
    endpoint: str,
    p256dh: str,
    auth: str,
    user_agent: str | None = None,
) -> None:
    """Store a subscription; an existing endpoint is re-bound to this user."""
    values = {
        "user_id": user_id,
        "user_type": user_type,
        "p256dh": p256dh,
        "auth": auth,
        "user_agent": user_agent,
    }
    stmt = insert(PushSubscription).values(endpoint=endpoint, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[PushSubscription.endpoint],
        set_={**values, "updated_at": func.now()},
    )
    await db.execute(stmt)


async def list_for_user(db: AsyncSession, user_id: str, user_type: str) -> list[PushSubscription]:
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.user_type == user_type,
        )
    )
    return list(result.scalars().all())


async def delete_by_endpoint(db: AsyncSession, endpoint: str, user_id: str | None = None) -> bool:
    stmt = delete(PushSubscription).where(PushSubscription.endpoint == endpoint)
    if user_id is not None:
        stmt = stmt.where(PushSubscription.user_id == user_id)
    result = await db.execute(stmt)
    return result.rowcount > 0
