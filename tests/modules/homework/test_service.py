"""
Unit tests for homework status and submission rules.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kinderhub.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from kinderhub.modules.homework.models import HomeworkStatus
from kinderhub.modules.homework.schemas import HomeworkCreate, SubmissionCreate
from kinderhub.modules.homework.service import create_homework, homework_status, submit_homework

SERVICE = "kinderhub.modules.homework.service"
NOW = datetime(2026, 3, 10, 9, 0, tzinfo=UTC)


def make_homework(due_date: datetime = NOW + timedelta(days=1)):
    homework = MagicMock()
    homework.id = "hw-1"
    homework.class_id = "class-1"
    homework.due_date = due_date
    return homework


def make_submission(graded: bool = False):
    submission = MagicMock()
    submission.graded_at = NOW if graded else None
    return submission


class TestHomeworkStatus:
    def test_pending_before_due_date(self):
        assert homework_status(make_homework(), None, NOW) == HomeworkStatus.PENDING

    def test_overdue_after_due_date(self):
        homework = make_homework(NOW - timedelta(minutes=1))
        assert homework_status(homework, None, NOW) == HomeworkStatus.OVERDUE

    def test_submitted_even_when_late(self):
        homework = make_homework(NOW - timedelta(days=2))
        assert homework_status(homework, make_submission(), NOW) == HomeworkStatus.SUBMITTED

    def test_graded(self):
        assert homework_status(make_homework(), make_submission(True), NOW) == HomeworkStatus.GRADED


@pytest.fixture
def repos():
    with (
        patch(f"{SERVICE}.repository") as repo,
        patch(f"{SERVICE}.children_repository") as children_repo,
        patch(f"{SERVICE}.classes_repository") as classes_repo,
    ):
        repo.get_by_id = AsyncMock(return_value=make_homework())
        repo.get_submission = AsyncMock(return_value=None)
        repo.create_submission = AsyncMock()
        repo.create = AsyncMock()
        children_repo.get_by_id = AsyncMock()
        classes_repo.get_by_id = AsyncMock()
        yield repo, children_repo, classes_repo


def make_child(parent_id: str, class_id: str = "class-1"):
    child = MagicMock()
    child.id = "child-1"
    child.parent_id = parent_id
    child.class_id = class_id
    return child


class TestSubmitHomework:
    @pytest.mark.asyncio
    async def test_parent_submits_for_own_child(self, mock_db, parent_user, repos):
        repo, children_repo, _ = repos
        children_repo.get_by_id.return_value = make_child(parent_user.id)

        await submit_homework(mock_db, parent_user, "hw-1", SubmissionCreate(child_id="child-1"))

        kwargs = repo.create_submission.call_args.kwargs
        assert kwargs["child_id"] == "child-1"
        assert kwargs["parent_id"] == parent_user.id

    @pytest.mark.asyncio
    async def test_teacher_cannot_submit(self, mock_db, teacher_user, repos):
        with pytest.raises(ForbiddenError):
            await submit_homework(mock_db, teacher_user, "hw-1", SubmissionCreate(child_id="c"))

    @pytest.mark.asyncio
    async def test_other_parents_child(self, mock_db, parent_user, repos):
        _, children_repo, _ = repos
        children_repo.get_by_id.return_value = make_child("someone-else")

        with pytest.raises(NotFoundError):
            await submit_homework(mock_db, parent_user, "hw-1", SubmissionCreate(child_id="child-1"))

    @pytest.mark.asyncio
    async def test_child_in_other_class(self, mock_db, parent_user, repos):
        _, children_repo, _ = repos
        children_repo.get_by_id.return_value = make_child(parent_user.id, "class-2")

        with pytest.raises(ValidationError) as exc:
            await submit_homework(mock_db, parent_user, "hw-1", SubmissionCreate(child_id="child-1"))
        assert exc.value.error_code == "WRONG_CLASS"

    @pytest.mark.asyncio
    async def test_second_submission_rejected(self, mock_db, parent_user, repos):
        repo, children_repo, _ = repos
        children_repo.get_by_id.return_value = make_child(parent_user.id)
        repo.get_submission.return_value = make_submission()

        with pytest.raises(ConflictError) as exc:
            await submit_homework(mock_db, parent_user, "hw-1", SubmissionCreate(child_id="child-1"))
        assert exc.value.error_code == "ALREADY_SUBMITTED"
        repo.create_submission.assert_not_awaited()


class TestCreateHomework:
    def payload(self) -> HomeworkCreate:
        return HomeworkCreate(title="Colour the leaf", due_date=NOW, class_id="class-1")

    @pytest.mark.asyncio
    async def test_class_teacher_can_create(self, mock_db, teacher_user, repos):
        repo, _, classes_repo = repos
        school_class = MagicMock()
        school_class.teacher_id = teacher_user.id
        classes_repo.get_by_id.return_value = school_class

        await create_homework(mock_db, teacher_user, self.payload())

        assert repo.create.call_args.kwargs["teacher_id"] == teacher_user.id

    @pytest.mark.asyncio
    async def test_other_teacher_forbidden(self, mock_db, teacher_user, repos):
        _, _, classes_repo = repos
        school_class = MagicMock()
        school_class.teacher_id = "another-teacher"
        classes_repo.get_by_id.return_value = school_class

        with pytest.raises(ForbiddenError):
            await create_homework(mock_db, teacher_user, self.payload())

    @pytest.mark.asyncio
    async def test_admin_creates_without_teacher(self, mock_db, admin_user, repos):
        repo, _, classes_repo = repos
        classes_repo.get_by_id.return_value = MagicMock()

        await create_homework(mock_db, admin_user, self.payload())

        assert repo.create.call_args.kwargs["teacher_id"] is None
