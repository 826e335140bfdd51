"""
Children Service

Access rules:
- admin: every child
- parent: own children
- teacher: children placed in a class the teacher is assigned to
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser
from kinderhub.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from kinderhub.modules.children import repository
from kinderhub.modules.children.models import Child
from kinderhub.modules.children.schemas import ChildCreate, ChildUpdate
from kinderhub.modules.classes import repository as classes_repository
from kinderhub.modules.classes.service import ensure_class_has_capacity
from kinderhub.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)


async def can_access_child(db: AsyncSession, user: CurrentUser, child: Child) -> bool:
    if user.is_admin:
        return True
    if user.is_parent:
        return child.parent_id == user.id
    if user.is_teacher and child.class_id:
        school_class = await classes_repository.get_by_id(db, child.class_id)
        return school_class is not None and school_class.teacher_id == user.id
    return False


async def get_child(db: AsyncSession, user: CurrentUser, child_id: str) -> Child:
    child = await repository.get_by_id(db, child_id)
    if child is None:
        raise NotFoundError("Child")
    if not await can_access_child(db, user, child):
        raise ForbiddenError("You do not have access to this child.")
    return child


async def list_children(
    db: AsyncSession, user: CurrentUser, class_id: str | None = None
) -> list[Child]:
    """Children visible to the caller, optionally narrowed to one class."""
    if user.is_admin:
        return await repository.list_all(db, class_id)

    if user.is_teacher:
        children = await repository.list_for_teacher(db, user.id)
    else:
        children = await repository.list_by_parent(db, user.id)

    if class_id:
        children = [child for child in children if child.class_id == class_id]
    return children


async def list_parent_children(db: AsyncSession, user: CurrentUser, parent_id: str) -> list[Child]:
    if not user.is_admin and not (user.is_parent and user.id == parent_id):
        raise ForbiddenError("You can only view your own children.")
    return await repository.list_by_parent(db, parent_id)


async def create_child(db: AsyncSession, user: CurrentUser, data: ChildCreate) -> Child:
    if user.is_parent:
        parent_id = user.id
        class_id = None
    elif user.is_admin:
        if not data.parent_id:
            raise ValidationError("parent_id is required.", "PARENT_REQUIRED")
        if await UserRepository.get_by_id(db, data.parent_id) is None:
            raise NotFoundError("Parent")
        parent_id = data.parent_id
        class_id = data.class_id
    else:
        raise ForbiddenError("Only parents and admins can register children.")

    if class_id:
        await ensure_class_has_capacity(db, class_id)

    fields = data.model_dump(exclude={"parent_id", "class_id"})
    return await repository.create(db, parent_id=parent_id, class_id=class_id, **fields)


async def update_child(
    db: AsyncSession, user: CurrentUser, child_id: str, data: ChildUpdate
) -> Child:
    child = await repository.get_by_id(db, child_id)
    if child is None:
        raise NotFoundError("Child")

    if not (user.is_admin or (user.is_parent and child.parent_id == user.id)):
        raise ForbiddenError("You cannot update this child.")

    fields = data.model_dump(exclude_unset=True)
    if "class_id" in fields:
        if not user.is_admin:
            raise ForbiddenError("Only admins can change a child's class.")
        if fields["class_id"] and fields["class_id"] != child.class_id:
            await ensure_class_has_capacity(db, fields["class_id"])

    return await repository.update(db, child, fields)


async def delete_child(db: AsyncSession, user: CurrentUser, child_id: str) -> None:
    if not user.is_admin:
        raise ForbiddenError("Only admins can delete children.")
    child = await repository.get_by_id(db, child_id)
    if child is None:
        raise NotFoundError("Child")
    await repository.delete(db, child)
