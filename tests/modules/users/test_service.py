"""
Unit tests for admin account management.
"""

from unittest.mock import AsyncMock, patch

import pytest

from kinderhub.core.exceptions import ConflictError, NotFoundError
from kinderhub.core.security import verify_password
from kinderhub.modules.users import service
from kinderhub.modules.users.models import Staff, StaffRole, User
from kinderhub.modules.users.schemas import AccountCreate, AccountUpdate, ParentUpdate

SERVICE = "kinderhub.modules.users.service"


def make_teacher(**fields) -> Staff:
    values = {
        "id": "t-1",
        "email": "terry@test.com",
        "password_hash": "x",
        "first_name": "Terry",
        "last_name": "Teacher",
        "role": StaffRole.TEACHER,
        "is_active": True,
    }
    values.update(fields)
    return Staff(**values)


def make_parent(**fields) -> User:
    values = {
        "id": "p-1",
        "email": "pat@test.com",
        "password_hash": "x",
        "first_name": "Pat",
        "last_name": "Parent",
        "phone": "0821234567",
        "is_active": True,
    }
    values.update(fields)
    return User(**values)


@pytest.fixture
def staff_repo():
    with patch(f"{SERVICE}.StaffRepository") as repo:
        repo.get_by_id = AsyncMock(return_value=make_teacher())
        repo.email_taken = AsyncMock(return_value=False)
        repo.create = AsyncMock(side_effect=lambda db, **fields: make_teacher(**fields))
        repo.list_by_role = AsyncMock(return_value=[])
        yield repo


@pytest.fixture
def user_repo():
    with patch(f"{SERVICE}.UserRepository") as repo:
        repo.get_by_id = AsyncMock(return_value=make_parent())
        repo.get_by_email = AsyncMock(return_value=None)
        repo.email_exists = AsyncMock(return_value=False)
        yield repo


@pytest.fixture
def revoke_all():
    with patch(f"{SERVICE}.sessions.revoke_all_sessions", new_callable=AsyncMock) as revoke:
        yield revoke


class TestTeachers:
    @pytest.mark.asyncio
    async def test_create_hashes_password(self, mock_db, staff_repo):
        data = AccountCreate(
            email="new@test.com", password="password123", first_name="New", last_name="Teacher"
        )

        await service.create_teacher(mock_db, data)

        fields = staff_repo.create.call_args.kwargs
        assert fields["role"] == StaffRole.TEACHER
        assert verify_password("password123", fields["password_hash"])

    @pytest.mark.asyncio
    async def test_create_with_taken_email(self, mock_db, staff_repo):
        staff_repo.email_taken.return_value = True
        data = AccountCreate(
            email="admin@test.com", password="password123", first_name="A", last_name="B"
        )

        with pytest.raises(ConflictError) as exc:
            await service.create_teacher(mock_db, data)
        assert exc.value.error_code == "EMAIL_EXISTS"

    @pytest.mark.asyncio
    async def test_admin_is_not_a_teacher(self, mock_db, staff_repo):
        staff_repo.get_by_id.return_value = make_teacher(role=StaffRole.ADMIN)

        with pytest.raises(NotFoundError):
            await service.update_teacher(mock_db, "t-1", AccountUpdate(first_name="X"))

    @pytest.mark.asyncio
    async def test_list_includes_deactivated(self, mock_db, staff_repo):
        await service.list_teachers(mock_db)

        staff_repo.list_by_role.assert_awaited_once_with(
            mock_db, StaffRole.TEACHER, include_inactive=True
        )

    @pytest.mark.asyncio
    async def test_rename_keeps_sessions(self, mock_db, staff_repo, revoke_all):
        teacher = await service.update_teacher(mock_db, "t-1", AccountUpdate(first_name="Tess"))

        assert teacher.first_name == "Tess"
        revoke_all.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_email_change_checks_other_accounts(self, mock_db, staff_repo, revoke_all):
        teacher = await service.update_teacher(
            mock_db, "t-1", AccountUpdate(email="Terry.New@Test.com")
        )

        staff_repo.email_taken.assert_awaited_once_with(
            mock_db, "terry.new@test.com", exclude_id="t-1"
        )
        assert teacher.email == "terry.new@test.com"

    @pytest.mark.asyncio
    async def test_null_name_is_ignored(self, mock_db, staff_repo, revoke_all):
        teacher = await service.update_teacher(
            mock_db, "t-1", AccountUpdate(first_name=None, phone=None)
        )

        assert teacher.first_name == "Terry"
        assert teacher.phone is None

    @pytest.mark.asyncio
    async def test_password_change_signs_out(self, mock_db, staff_repo, revoke_all):
        teacher = await service.update_teacher(
            mock_db, "t-1", AccountUpdate(password="another-password")
        )

        assert verify_password("another-password", teacher.password_hash)
        revoke_all.assert_awaited_once_with("teacher", "t-1")

    @pytest.mark.asyncio
    async def test_deactivation_signs_out(self, mock_db, staff_repo, revoke_all):
        await service.update_teacher(mock_db, "t-1", AccountUpdate(is_active=False))

        revoke_all.assert_awaited_once_with("teacher", "t-1")

    @pytest.mark.asyncio
    async def test_admin_password_reset(self, mock_db, staff_repo, revoke_all):
        teacher = staff_repo.get_by_id.return_value

        await service.reset_teacher_password(mock_db, "t-1", "reset-password-1")

        assert verify_password("reset-password-1", teacher.password_hash)
        revoke_all.assert_awaited_once_with("teacher", "t-1")

    @pytest.mark.asyncio
    async def test_delete_missing_teacher(self, mock_db, staff_repo, revoke_all):
        staff_repo.get_by_id.return_value = None

        with pytest.raises(NotFoundError):
            await service.delete_teacher(mock_db, "t-9")
        mock_db.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_signs_out(self, mock_db, staff_repo, revoke_all):
        await service.delete_teacher(mock_db, "t-1")

        mock_db.delete.assert_awaited_once()
        revoke_all.assert_awaited_once_with("teacher", "t-1")


class TestParents:
    @pytest.mark.asyncio
    async def test_email_of_another_parent_rejected(self, mock_db, user_repo):
        user_repo.get_by_email.return_value = make_parent(id="p-2")

        with pytest.raises(ConflictError):
            await service.update_parent(mock_db, "p-1", ParentUpdate(email="other@test.com"))

    @pytest.mark.asyncio
    async def test_own_email_in_other_case_allowed(self, mock_db, user_repo, revoke_all):
        user_repo.get_by_email.return_value = make_parent()

        parent = await service.update_parent(mock_db, "p-1", ParentUpdate(email="PAT@test.com"))

        assert parent.email == "pat@test.com"

    @pytest.mark.asyncio
    async def test_address_can_be_cleared(self, mock_db, user_repo, revoke_all):
        user_repo.get_by_id.return_value = make_parent(address="1 Main Rd")

        parent = await service.update_parent(mock_db, "p-1", ParentUpdate(address=None))

        assert parent.address is None

    @pytest.mark.asyncio
    async def test_delete_missing_parent(self, mock_db, user_repo):
        user_repo.get_by_id.return_value = None

        with pytest.raises(NotFoundError):
            await service.delete_parent(mock_db, "p-9")

    @pytest.mark.asyncio
    async def test_delete_signs_out(self, mock_db, user_repo, revoke_all):
        await service.delete_parent(mock_db, "p-1")

        revoke_all.assert_awaited_once_with("parent", "p-1")
