"""
Classes Service

Class management and enrollment. Every class has a capacity
(``max_students``); enrollment beyond it is refused.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.exceptions import ConflictError, NotFoundError, ValidationError
from kinderhub.modules.children import repository as children_repository
from kinderhub.modules.children.models import Child
from kinderhub.modules.children.schemas import ChildResponse
from kinderhub.modules.classes import repository
from kinderhub.modules.classes.models import SchoolClass
from kinderhub.modules.classes.schemas import (
    ClassCreate,
    ClassDetailResponse,
    ClassResponse,
    ClassUpdate,
)
from kinderhub.modules.users.models import Staff, StaffRole
from kinderhub.modules.users.repository import StaffRepository

logger = logging.getLogger(__name__)


class ClassFullError(ConflictError):
    def __init__(self, school_class: SchoolClass):
        super().__init__(
            f"Class {school_class.name} is full ({school_class.max_students} students).",
            "CLASS_FULL",
        )


def _to_response(
    school_class: SchoolClass, student_count: int, teacher: Staff | None
) -> ClassResponse:
    return ClassResponse(
        id=school_class.id,
        name=school_class.name,
        description=school_class.description,
        age_group=school_class.age_group,
        room=school_class.room,
        schedule=school_class.schedule,
        max_students=school_class.max_students,
        teacher_id=school_class.teacher_id,
        teacher_name=teacher.full_name if teacher else None,
        student_count=student_count,
    )


async def _get_class(db: AsyncSession, class_id: str) -> SchoolClass:
    school_class = await repository.get_by_id(db, class_id)
    if school_class is None:
        raise NotFoundError("Class")
    return school_class


async def ensure_class_has_capacity(db: AsyncSession, class_id: str) -> SchoolClass:
    """Raise unless the class exists and has a free place."""
    school_class = await _get_class(db, class_id)
    if await repository.count_children(db, class_id) >= school_class.max_students:
        raise ClassFullError(school_class)
    return school_class


async def _validate_teacher(db: AsyncSession, teacher_id: str) -> Staff:
    teacher = await StaffRepository.get_by_id(db, teacher_id)
    if teacher is None or teacher.role != StaffRole.TEACHER:
        raise ValidationError("teacher_id does not refer to a teacher.", "INVALID_TEACHER")
    return teacher


async def list_classes(db: AsyncSession) -> list[ClassResponse]:
    rows = await repository.list_with_counts(db)
    return [_to_response(school_class, count, teacher) for school_class, count, teacher in rows]


async def get_class_detail(db: AsyncSession, class_id: str) -> ClassDetailResponse:
    school_class = await _get_class(db, class_id)
    children = await children_repository.list_by_class(db, class_id)
    teacher = (
        await StaffRepository.get_by_id(db, school_class.teacher_id)
        if school_class.teacher_id
        else None
    )
    base = _to_response(school_class, len(children), teacher)
    return ClassDetailResponse(
        **base.model_dump(),
        children=[ChildResponse.model_validate(child) for child in children],
    )


async def create_class(db: AsyncSession, data: ClassCreate) -> SchoolClass:
    if await repository.get_by_name(db, data.name):
        raise ConflictError(f"A class named {data.name} already exists.", "CLASS_EXISTS")
    if data.teacher_id:
        await _validate_teacher(db, data.teacher_id)
    return await repository.create(db, **data.model_dump())


async def update_class(db: AsyncSession, class_id: str, data: ClassUpdate) -> SchoolClass:
    school_class = await _get_class(db, class_id)
    fields = data.model_dump(exclude_unset=True)

    if fields.get("name") and fields["name"].lower() != school_class.name.lower():
        if await repository.get_by_name(db, fields["name"]):
            raise ConflictError(f"A class named {fields['name']} already exists.", "CLASS_EXISTS")

    if fields.get("teacher_id"):
        await _validate_teacher(db, fields["teacher_id"])

    if "max_students" in fields:
        enrolled = await repository.count_children(db, class_id)
        if fields["max_students"] < enrolled:
            raise ValidationError(
                f"Capacity cannot be below the {enrolled} children already enrolled.",
                "CAPACITY_TOO_LOW",
            )

    return await repository.update(db, school_class, fields)


async def delete_class(db: AsyncSession, class_id: str) -> None:
    school_class = await _get_class(db, class_id)
    enrolled = await repository.count_children(db, class_id)
    if enrolled:
        raise ConflictError(
            f"Class still has {enrolled} enrolled children. Move them first.", "CLASS_NOT_EMPTY"
        )
    await repository.delete(db, school_class)


async def enroll_child(db: AsyncSession, class_id: str, child_id: str) -> Child:
    child = await children_repository.get_by_id(db, child_id)
    if child is None:
        raise NotFoundError("Child")
    if child.class_id == class_id:
        raise ConflictError("Child is already enrolled in this class.", "ALREADY_ENROLLED")

    await ensure_class_has_capacity(db, class_id)
    child = await repository.set_child_class(db, child, class_id)
    logger.info(f"Enrolled child {child_id} in class {class_id}")
    return child


async def remove_child(db: AsyncSession, class_id: str, child_id: str) -> Child:
    child = await children_repository.get_by_id(db, child_id)
    if child is None or child.class_id != class_id:
        raise NotFoundError("Enrollment")
    child = await repository.set_child_class(db, child, None)
    logger.info(f"Removed child {child_id} from class {class_id}")
    return child


async def list_available_teachers(db: AsyncSession) -> list[Staff]:
    return await repository.list_available_teachers(db)
