"""
Child Repository
"""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.modules.children.models import Child
from kinderhub.modules.classes.models import SchoolClass

logger = logging.getLogger(__name__)


async def create(db: AsyncSession, **fields: Any) -> Child:
    child = Child(**fields)
    db.add(child)
    await db.flush()
    await db.refresh(child)
    logger.info(f"Created child: {child.id} for parent {child.parent_id}")
    return child


async def get_by_id(db: AsyncSession, child_id: str) -> Child | None:
    return await db.get(Child, str(child_id))


async def list_by_parent(db: AsyncSession, parent_id: str) -> list[Child]:
    result = await db.execute(
        select(Child).where(Child.parent_id == str(parent_id)).order_by(Child.first_name)
    )
    return list(result.scalars().all())


async def list_by_class(db: AsyncSession, class_id: str) -> list[Child]:
    result = await db.execute(
        select(Child).where(Child.class_id == str(class_id)).order_by(Child.first_name)
    )
    return list(result.scalars().all())


async def list_for_teacher(db: AsyncSession, teacher_id: str) -> list[Child]:
    """Children in any class taught by the teacher."""
    result = await db.execute(
        select(Child)
        .join(SchoolClass, SchoolClass.id == Child.class_id)
        .where(SchoolClass.teacher_id == str(teacher_id))
        .order_by(Child.first_name)
    )
    return list(result.scalars().all())


async def list_all(db: AsyncSession, class_id: str | None = None) -> list[Child]:
    query = select(Child).order_by(Child.last_name, Child.first_name)
    if class_id:
        query = query.where(Child.class_id == str(class_id))
    result = await db.execute(query)
    return list(result.scalars().all())


async def update(db: AsyncSession, child: Child, fields: dict[str, Any]) -> Child:
    for key, value in fields.items():
        setattr(child, key, value)
    await db.flush()
    await db.refresh(child)
    return child


async def delete(db: AsyncSession, child: Child) -> None:
    await db.delete(child)
    await db.flush()
    logger.info(f"Deleted child: {child.id}")
