"""
Homework Repository
"""

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.modules.homework.models import Homework, HomeworkSubmission

logger = logging.getLogger(__name__)


async def create(db: AsyncSession, **fields: Any) -> Homework:
    homework = Homework(**fields)
    db.add(homework)
    await db.flush()
    await db.refresh(homework)
    logger.info(f"Created homework: {homework.id} for class {homework.class_id}")
    return homework


async def get_by_id(db: AsyncSession, homework_id: str) -> Homework | None:
    return await db.get(Homework, str(homework_id))


async def update(db: AsyncSession, homework: Homework, fields: dict[str, Any]) -> Homework:
    for key, value in fields.items():
        setattr(homework, key, value)
    await db.flush()
    await db.refresh(homework)
    return homework


async def delete(db: AsyncSession, homework: Homework) -> None:
    await db.delete(homework)
    await db.flush()


async def list_for_classes(db: AsyncSession, class_ids: list[str]) -> list[Homework]:
    if not class_ids:
        return []
    result = await db.execute(
        select(Homework).where(Homework.class_id.in_(class_ids)).order_by(Homework.due_date.desc())
    )
    return list(result.scalars().all())


async def list_by_teacher(db: AsyncSession, teacher_id: str) -> list[Homework]:
    result = await db.execute(
        select(Homework)
        .where(Homework.teacher_id == str(teacher_id))
        .order_by(Homework.due_date.desc())
    )
    return list(result.scalars().all())


async def submission_counts(db: AsyncSession, homework_ids: list[str]) -> dict[str, tuple[int, int]]:
    """Map homework id to (submissions, graded submissions)."""
    if not homework_ids:
        return {}
    result = await db.execute(
        select(
            HomeworkSubmission.homework_id,
            func.count(HomeworkSubmission.id),
            func.count(HomeworkSubmission.graded_at),
        )
        .where(HomeworkSubmission.homework_id.in_(homework_ids))
        .group_by(HomeworkSubmission.homework_id)
    )
    return {row[0]: (row[1], row[2]) for row in result.all()}


async def list_submissions(
    db: AsyncSession,
    homework_ids: list[str],
    child_ids: list[str] | None = None,
) -> list[HomeworkSubmission]:
    if not homework_ids:
        return []
    query = select(HomeworkSubmission).where(HomeworkSubmission.homework_id.in_(homework_ids))
    if child_ids is not None:
        query = query.where(HomeworkSubmission.child_id.in_(child_ids))
    result = await db.execute(query.order_by(HomeworkSubmission.submitted_at))
    return list(result.scalars().all())


async def get_submission(
    db: AsyncSession, homework_id: str, child_id: str
) -> HomeworkSubmission | None:
    result = await db.execute(
        select(HomeworkSubmission).where(
            HomeworkSubmission.homework_id == str(homework_id),
            HomeworkSubmission.child_id == str(child_id),
        )
    )
    return result.scalar_one_or_none()


async def get_submission_by_id(db: AsyncSession, submission_id: str) -> HomeworkSubmission | None:
    return await db.get(HomeworkSubmission, str(submission_id))


async def create_submission(db: AsyncSession, **fields: Any) -> HomeworkSubmission:
    submission = HomeworkSubmission(submitted_at=datetime.now(UTC), **fields)
    db.add(submission)
    await db.flush()
    await db.refresh(submission)
    logger.info(f"Homework {submission.homework_id} submitted for child {submission.child_id}")
    return submission


async def grade_submission(
    db: AsyncSession,
    submission: HomeworkSubmission,
    *,
    grade: str,
    feedback: str | None,
    graded_by: str,
) -> HomeworkSubmission:
    submission.grade = grade
    submission.feedback = feedback
    submission.graded_by = graded_by
    submission.graded_at = datetime.now(UTC)
    await db.flush()
    await db.refresh(submission)
    return submission
