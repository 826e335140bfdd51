"""
Homework Service

Teachers set homework for their classes; parents submit it per child;
teachers grade submissions. Status for a child is derived from the
submission and the due date (see ``homework_status``).
"""

import logging
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser
from kinderhub.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from kinderhub.modules.children import repository as children_repository
from kinderhub.modules.classes import repository as classes_repository
from kinderhub.modules.homework import repository
from kinderhub.modules.homework.models import Homework, HomeworkStatus, HomeworkSubmission
from kinderhub.modules.homework.schemas import (
    ClassHomeworkItem,
    GradeRequest,
    HomeworkCreate,
    HomeworkDetailResponse,
    HomeworkResponse,
    HomeworkUpdate,
    ParentHomeworkItem,
    SubmissionCreate,
    SubmissionResponse,
    TeacherHomeworkResponse,
    TeacherHomeworkStats,
)

logger = logging.getLogger(__name__)


def homework_status(
    homework: Homework,
    submission: HomeworkSubmission | None,
    now: datetime | None = None,
) -> HomeworkStatus:
    """Derive the status of a homework item for one child."""
    if submission is not None:
        return HomeworkStatus.GRADED if submission.graded_at else HomeworkStatus.SUBMITTED
    if homework.due_date < (now or datetime.now(UTC)):
        return HomeworkStatus.OVERDUE
    return HomeworkStatus.PENDING


async def _get_homework(db: AsyncSession, homework_id: str) -> Homework:
    homework = await repository.get_by_id(db, homework_id)
    if homework is None:
        raise NotFoundError("Homework")
    return homework


async def _teaches_class(db: AsyncSession, user: CurrentUser, class_id: str) -> bool:
    if not user.is_teacher:
        return False
    school_class = await classes_repository.get_by_id(db, class_id)
    return school_class is not None and school_class.teacher_id == user.id


async def _ensure_can_manage(db: AsyncSession, user: CurrentUser, class_id: str) -> None:
    if user.is_admin or await _teaches_class(db, user, class_id):
        return
    raise ForbiddenError("Only the class teacher or an admin can manage this homework.")


async def parent_homework(
    db: AsyncSession,
    user: CurrentUser,
    parent_id: str,
    child_id: str | None = None,
) -> list[ParentHomeworkItem]:
    """Homework for every placed child of a parent, with per-child status."""
    if not user.is_admin and not (user.is_parent and user.id == parent_id):
        raise ForbiddenError("You can only view homework for your own children.")

    children = [
        child
        for child in await children_repository.list_by_parent(db, parent_id)
        if child.class_id and (child_id is None or child.id == child_id)
    ]
    class_ids = sorted({child.class_id for child in children})
    homework_items = await repository.list_for_classes(db, class_ids)
    submissions = await repository.list_submissions(
        db, [hw.id for hw in homework_items], [child.id for child in children]
    )
    by_key = {(s.homework_id, s.child_id): s for s in submissions}

    now = datetime.now(UTC)
    items = []
    for child in children:
        for homework in homework_items:
            if homework.class_id != child.class_id:
                continue
            submission = by_key.get((homework.id, child.id))
            items.append(
                ParentHomeworkItem(
                    homework=HomeworkResponse.model_validate(homework),
                    child_id=child.id,
                    child_name=child.full_name,
                    status=homework_status(homework, submission, now),
                    submission=SubmissionResponse.model_validate(submission) if submission else None,
                )
            )
    return items


async def _with_counts(db: AsyncSession, homework_items: list[Homework]) -> list[ClassHomeworkItem]:
    counts = await repository.submission_counts(db, [hw.id for hw in homework_items])
    class_sizes: dict[str, int] = {}
    result = []
    for homework in homework_items:
        if homework.class_id not in class_sizes:
            class_sizes[homework.class_id] = await classes_repository.count_children(
                db, homework.class_id
            )
        result.append(
            ClassHomeworkItem(
                **HomeworkResponse.model_validate(homework).model_dump(),
                submission_count=counts.get(homework.id, (0, 0))[0],
                class_size=class_sizes[homework.class_id],
            )
        )
    return result


async def class_homework(db: AsyncSession, user: CurrentUser, class_id: str) -> list[ClassHomeworkItem]:
    await _ensure_can_manage(db, user, class_id)
    return await _with_counts(db, await repository.list_for_classes(db, [class_id]))


async def teacher_homework(
    db: AsyncSession, user: CurrentUser, teacher_id: str
) -> TeacherHomeworkResponse:
    if not user.is_admin and user.id != teacher_id:
        raise ForbiddenError("You can only view your own homework.")

    homework_items = await repository.list_by_teacher(db, teacher_id)
    counts = await repository.submission_counts(db, [hw.id for hw in homework_items])
    now = datetime.now(UTC)

    stats = TeacherHomeworkStats(
        total=len(homework_items),
        active=sum(1 for hw in homework_items if hw.due_date >= now),
        past_due=sum(1 for hw in homework_items if hw.due_date < now),
        submissions=sum(submitted for submitted, _ in counts.values()),
        graded=sum(graded for _, graded in counts.values()),
    )
    return TeacherHomeworkResponse(homework=await _with_counts(db, homework_items), stats=stats)


async def homework_detail(
    db: AsyncSession, user: CurrentUser, homework_id: str
) -> HomeworkDetailResponse:
    homework = await _get_homework(db, homework_id)

    if user.is_parent:
        own_children = [
            child.id
            for child in await children_repository.list_by_parent(db, user.id)
            if child.class_id == homework.class_id
        ]
        if not own_children:
            raise ForbiddenError("None of your children are in this class.")
        submissions = await repository.list_submissions(db, [homework.id], own_children)
    else:
        await _ensure_can_manage(db, user, homework.class_id)
        submissions = await repository.list_submissions(db, [homework.id])

    return HomeworkDetailResponse(
        **HomeworkResponse.model_validate(homework).model_dump(),
        submissions=[SubmissionResponse.model_validate(s) for s in submissions],
    )


async def create_homework(db: AsyncSession, user: CurrentUser, data: HomeworkCreate) -> Homework:
    if await classes_repository.get_by_id(db, data.class_id) is None:
        raise NotFoundError("Class")
    await _ensure_can_manage(db, user, data.class_id)

    return await repository.create(
        db,
        teacher_id=user.id if user.is_teacher else None,
        **data.model_dump(),
    )


async def update_homework(
    db: AsyncSession, user: CurrentUser, homework_id: str, data: HomeworkUpdate
) -> Homework:
    homework = await _get_homework(db, homework_id)
    await _ensure_can_manage(db, user, homework.class_id)
    return await repository.update(db, homework, data.model_dump(exclude_unset=True))


async def delete_homework(db: AsyncSession, user: CurrentUser, homework_id: str) -> None:
    homework = await _get_homework(db, homework_id)
    await _ensure_can_manage(db, user, homework.class_id)
    await repository.delete(db, homework)
    logger.info(f"Deleted homework {homework_id}")


async def submit_homework(
    db: AsyncSession, user: CurrentUser, homework_id: str, data: SubmissionCreate
) -> HomeworkSubmission:
    if not user.is_parent:
        raise ForbiddenError("Only parents can submit homework.")

    homework = await _get_homework(db, homework_id)
    child = await children_repository.get_by_id(db, data.child_id)
    if child is None or child.parent_id != user.id:
        raise NotFoundError("Child")
    if child.class_id != homework.class_id:
        raise ValidationError("This homework is not assigned to the child's class.", "WRONG_CLASS")

    if await repository.get_submission(db, homework_id, child.id):
        raise ConflictError("Homework already submitted for this child.", "ALREADY_SUBMITTED")

    return await repository.create_submission(
        db,
        homework_id=homework_id,
        child_id=child.id,
        parent_id=user.id,
        comment=data.comment,
        file_url=data.file_url,
    )


async def grade_submission(
    db: AsyncSession, user: CurrentUser, submission_id: str, data: GradeRequest
) -> HomeworkSubmission:
    submission = await repository.get_submission_by_id(db, submission_id)
    if submission is None:
        raise NotFoundError("Submission")

    homework = await _get_homework(db, submission.homework_id)
    await _ensure_can_manage(db, user, homework.class_id)

    return await repository.grade_submission(
        db, submission, grade=data.grade, feedback=data.feedback, graded_by=user.id
    )
