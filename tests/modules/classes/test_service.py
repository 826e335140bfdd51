"""
Unit tests for the classes service: capacity, enrollment and deletion rules.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kinderhub.core.exceptions import ConflictError, NotFoundError, ValidationError
from kinderhub.modules.classes.schemas import ClassCreate, ClassUpdate
from kinderhub.modules.classes.service import (
    ClassFullError,
    create_class,
    delete_class,
    enroll_child,
    remove_child,
    update_class,
)
from kinderhub.modules.users.models import StaffRole

SERVICE = "kinderhub.modules.classes.service"


def make_class(max_students: int = 2):
    school_class = MagicMock()
    school_class.id = "class-1"
    school_class.name = "Sunflowers"
    school_class.max_students = max_students
    school_class.teacher_id = None
    return school_class


def make_child(class_id: str | None = None):
    child = MagicMock()
    child.id = "child-1"
    child.class_id = class_id
    return child


@pytest.fixture
def repos():
    with (
        patch(f"{SERVICE}.repository") as repo,
        patch(f"{SERVICE}.children_repository") as children_repo,
        patch(f"{SERVICE}.StaffRepository") as staff_repo,
    ):
        repo.get_by_id = AsyncMock(return_value=make_class())
        repo.get_by_name = AsyncMock(return_value=None)
        repo.count_children = AsyncMock(return_value=0)
        repo.create = AsyncMock()
        repo.update = AsyncMock()
        repo.delete = AsyncMock()
        repo.set_child_class = AsyncMock(side_effect=lambda db, child, class_id: child)
        children_repo.get_by_id = AsyncMock(return_value=make_child())
        staff_repo.get_by_id = AsyncMock()
        yield repo, children_repo, staff_repo


class TestEnrollChild:
    @pytest.mark.asyncio
    async def test_enrolls_when_there_is_room(self, mock_db, repos):
        repo, _, _ = repos
        repo.count_children.return_value = 1

        await enroll_child(mock_db, "class-1", "child-1")

        repo.set_child_class.assert_awaited_once()
        assert repo.set_child_class.call_args.args[2] == "class-1"

    @pytest.mark.asyncio
    async def test_full_class_rejected(self, mock_db, repos):
        repo, _, _ = repos
        repo.count_children.return_value = 2

        with pytest.raises(ClassFullError) as exc:
            await enroll_child(mock_db, "class-1", "child-1")

        assert exc.value.error_code == "CLASS_FULL"
        assert exc.value.status_code == 409
        repo.set_child_class.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_already_enrolled(self, mock_db, repos):
        _, children_repo, _ = repos
        children_repo.get_by_id.return_value = make_child("class-1")

        with pytest.raises(ConflictError) as exc:
            await enroll_child(mock_db, "class-1", "child-1")
        assert exc.value.error_code == "ALREADY_ENROLLED"

    @pytest.mark.asyncio
    async def test_unknown_child(self, mock_db, repos):
        _, children_repo, _ = repos
        children_repo.get_by_id.return_value = None

        with pytest.raises(NotFoundError):
            await enroll_child(mock_db, "class-1", "missing")

    @pytest.mark.asyncio
    async def test_unknown_class(self, mock_db, repos):
        repo, _, _ = repos
        repo.get_by_id.return_value = None

        with pytest.raises(NotFoundError):
            await enroll_child(mock_db, "missing", "child-1")


class TestRemoveChild:
    @pytest.mark.asyncio
    async def test_child_in_other_class(self, mock_db, repos):
        _, children_repo, _ = repos
        children_repo.get_by_id.return_value = make_child("class-2")

        with pytest.raises(NotFoundError):
            await remove_child(mock_db, "class-1", "child-1")

    @pytest.mark.asyncio
    async def test_clears_class(self, mock_db, repos):
        repo, children_repo, _ = repos
        children_repo.get_by_id.return_value = make_child("class-1")

        await remove_child(mock_db, "class-1", "child-1")

        assert repo.set_child_class.call_args.args[2] is None


class TestClassLifecycle:
    @pytest.mark.asyncio
    async def test_capacity_cannot_drop_below_enrolled(self, mock_db, repos):
        repo, _, _ = repos
        repo.count_children.return_value = 5

        with pytest.raises(ValidationError) as exc:
            await update_class(mock_db, "class-1", ClassUpdate(max_students=4))
        assert exc.value.error_code == "CAPACITY_TOO_LOW"

    @pytest.mark.asyncio
    async def test_delete_non_empty_class(self, mock_db, repos):
        repo, _, _ = repos
        repo.count_children.return_value = 1

        with pytest.raises(ConflictError) as exc:
            await delete_class(mock_db, "class-1")
        assert exc.value.error_code == "CLASS_NOT_EMPTY"
        repo.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_name(self, mock_db, repos):
        repo, _, _ = repos
        repo.get_by_name.return_value = make_class()

        with pytest.raises(ConflictError):
            await create_class(mock_db, ClassCreate(name="Sunflowers"))

    @pytest.mark.asyncio
    async def test_teacher_must_be_a_teacher(self, mock_db, repos):
        _, _, staff_repo = repos
        admin = MagicMock()
        admin.role = StaffRole.ADMIN
        staff_repo.get_by_id.return_value = admin

        with pytest.raises(ValidationError) as exc:
            await create_class(mock_db, ClassCreate(name="Tulips", teacher_id="staff-1"))
        assert exc.value.error_code == "INVALID_TEACHER"
