"""
Class Repository

Database operations for classes and class enrollment.
"""

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.modules.children.models import Child
from kinderhub.modules.classes.models import SchoolClass
from kinderhub.modules.users.models import Staff, StaffRole

logger = logging.getLogger(__name__)


async def create(db: AsyncSession, **fields: Any) -> SchoolClass:
    school_class = SchoolClass(**fields)
    db.add(school_class)
    await db.flush()
    await db.refresh(school_class)
    logger.info(f"Created class: {school_class.id} - {school_class.name}")
    return school_class


async def get_by_id(db: AsyncSession, class_id: str) -> SchoolClass | None:
    return await db.get(SchoolClass, str(class_id))


async def get_by_name(db: AsyncSession, name: str) -> SchoolClass | None:
    result = await db.execute(
        select(SchoolClass).where(func.lower(SchoolClass.name) == name.strip().lower())
    )
    return result.scalar_one_or_none()


async def list_with_counts(db: AsyncSession) -> list[tuple[SchoolClass, int, Staff | None]]:
    """All classes with their enrolled-children count and teacher."""
    student_count = (
        select(func.count(Child.id)).where(Child.class_id == SchoolClass.id).scalar_subquery()
    )
    result = await db.execute(
        select(SchoolClass, student_count, Staff)
        .outerjoin(Staff, Staff.id == SchoolClass.teacher_id)
        .order_by(SchoolClass.name)
    )
    return [(row[0], row[1] or 0, row[2]) for row in result.all()]


async def count_children(db: AsyncSession, class_id: str) -> int:
    result = await db.execute(select(func.count(Child.id)).where(Child.class_id == str(class_id)))
    return result.scalar_one()


async def update(db: AsyncSession, school_class: SchoolClass, fields: dict[str, Any]) -> SchoolClass:
    for key, value in fields.items():
        setattr(school_class, key, value)
    await db.flush()
    await db.refresh(school_class)
    return school_class


async def delete(db: AsyncSession, school_class: SchoolClass) -> None:
    await db.delete(school_class)
    await db.flush()
    logger.info(f"Deleted class: {school_class.id}")


async def set_child_class(db: AsyncSession, child: Child, class_id: str | None) -> Child:
    child.class_id = class_id
    await db.flush()
    return child


async def list_available_teachers(db: AsyncSession) -> list[Staff]:
    """Active teachers not assigned to any class."""
    assigned = select(SchoolClass.teacher_id).where(SchoolClass.teacher_id.is_not(None))
    result = await db.execute(
        select(Staff)
        .where(
            Staff.role == StaffRole.TEACHER,
            Staff.is_active.is_(True),
            Staff.id.not_in(assigned),
        )
        .order_by(Staff.first_name, Staff.last_name)
    )
    return list(result.scalars().all())
