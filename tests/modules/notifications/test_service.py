"""
Unit tests for the notification inbox and admin-issued notifications.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError as SchemaValidationError

from kinderhub.core.exceptions import ForbiddenError, NotFoundError
from kinderhub.modules.notifications import service
from kinderhub.modules.notifications.models import Notification, NotificationCategory
from kinderhub.modules.notifications.schemas import NotificationCreate

SERVICE = "kinderhub.modules.notifications.service"
PARENT_ID = "11111111-1111-1111-1111-111111111111"


def make_notification(**fields) -> Notification:
    values = {
        "id": "n-1",
        "recipient_id": PARENT_ID,
        "recipient_type": "parent",
        "category": NotificationCategory.EVENT,
        "title": "Sports day",
        "body": "Friday at 10:00",
        "data": {},
    }
    values.update(fields)
    return Notification(**values)


@pytest.fixture
def repo():
    with patch(f"{SERVICE}.repository") as repo:
        repo.list_for_recipient = AsyncMock(return_value=([], 0))
        repo.create_many = AsyncMock(
            side_effect=lambda db, recipients, category, title, body, data: [
                make_notification(
                    id=f"n-{i}",
                    recipient_id=rid,
                    recipient_type=rtype,
                    category=category,
                    title=title,
                    body=body,
                    data=data,
                )
                for i, (rid, rtype) in enumerate(recipients)
            ]
        )
        repo.get_by_id = AsyncMock(return_value=make_notification())
        repo.mark_read = AsyncMock(side_effect=lambda db, n, now: n)
        repo.delete_one = AsyncMock()
        repo.summary_by_category = AsyncMock(return_value=[])
        yield repo


@pytest.fixture
def push():
    with patch(f"{SERVICE}.push_service.send_to_user", new_callable=AsyncMock) as send:
        send.return_value = 1
        yield send


class TestCreateSchema:
    def test_needs_exactly_one_target(self):
        with pytest.raises(SchemaValidationError):
            NotificationCreate(category="event", title="t", body="b")
        with pytest.raises(SchemaValidationError):
            NotificationCreate(
                category="event",
                title="t",
                body="b",
                broadcast="all",
                recipients=[{"id": PARENT_ID, "type": "parent"}],
            )

    def test_unknown_category_rejected(self):
        with pytest.raises(SchemaValidationError):
            NotificationCreate(category="homework", title="t", body="b", broadcast="all")

    def test_title_limit(self):
        with pytest.raises(SchemaValidationError):
            NotificationCreate(category="alert", title="x" * 201, body="b", broadcast="all")


class TestListNotifications:
    @pytest.mark.asyncio
    async def test_page_maps_to_offset(self, mock_db, parent_user, repo):
        repo.list_for_recipient.return_value = ([make_notification()], 41)

        result = await service.list_notifications(
            mock_db, parent_user, page=3, limit=20, unread_only=True
        )

        kwargs = repo.list_for_recipient.call_args.kwargs
        assert kwargs["offset"] == 40
        assert kwargs["limit"] == 20
        assert kwargs["unread_only"] is True
        assert repo.list_for_recipient.call_args.args[1:] == (PARENT_ID, "parent")
        assert result.pagination.pages == 3
        assert result.notifications[0].title == "Sports day"

    @pytest.mark.asyncio
    async def test_limit_capped(self, mock_db, parent_user, repo):
        result = await service.list_notifications(mock_db, parent_user, limit=500)

        assert repo.list_for_recipient.call_args.kwargs["limit"] == 50
        assert result.pagination.pages == 0


class TestCreateNotifications:
    @pytest.mark.asyncio
    async def test_explicit_recipients_deduplicated(self, mock_db, admin_user, repo, push):
        data = NotificationCreate(
            category="alert",
            title=" Closed today ",
            body="Burst pipe",
            recipients=[
                {"id": PARENT_ID, "type": "parent"},
                {"id": PARENT_ID, "type": "parent"},
                {"id": "t-1", "type": "teacher"},
            ],
        )

        result = await service.create_notifications(mock_db, data, admin_user)

        recipients = repo.create_many.call_args.args[1]
        assert recipients == [(PARENT_ID, "parent"), ("t-1", "teacher")]
        assert repo.create_many.call_args.args[3] == "Closed today"
        assert (result.count, result.pushed) == (2, 2)
        payload = push.call_args.args[3]
        assert payload["data"]["type"] == "alert"

    @pytest.mark.asyncio
    async def test_broadcast_to_parents(self, mock_db, admin_user, repo, push):
        parents = [MagicMock(id="p-1"), MagicMock(id="p-2")]
        data = NotificationCreate(category="event", title="t", body="b", broadcast="parent")

        with (
            patch(f"{SERVICE}.UserRepository.list_active", new_callable=AsyncMock) as active,
            patch(f"{SERVICE}.StaffRepository.list_by_role", new_callable=AsyncMock) as staff,
        ):
            active.return_value = parents
            result = await service.create_notifications(mock_db, data, admin_user)

        staff.assert_not_awaited()
        assert repo.create_many.call_args.args[1] == [("p-1", "parent"), ("p-2", "parent")]
        assert result.count == 2

    @pytest.mark.asyncio
    async def test_broadcast_to_all(self, mock_db, admin_user, repo, push):
        data = NotificationCreate(category="system", title="t", body="b", broadcast="all")

        with (
            patch(f"{SERVICE}.UserRepository.list_active", new_callable=AsyncMock) as active,
            patch(f"{SERVICE}.StaffRepository.list_by_role", new_callable=AsyncMock) as staff,
        ):
            active.return_value = [MagicMock(id="p-1")]
            staff.side_effect = [[MagicMock(id="t-1")], [MagicMock(id="a-1")]]
            await service.create_notifications(mock_db, data, admin_user)

        assert repo.create_many.call_args.args[1] == [
            ("p-1", "parent"),
            ("t-1", "teacher"),
            ("a-1", "admin"),
        ]

    @pytest.mark.asyncio
    async def test_push_failure_keeps_notifications(self, mock_db, admin_user, repo, push):
        push.side_effect = [RuntimeError("push service down"), 1]
        data = NotificationCreate(
            category="event",
            title="t",
            body="b",
            recipients=[{"id": "p-1", "type": "parent"}, {"id": "p-2", "type": "parent"}],
        )

        result = await service.create_notifications(mock_db, data, admin_user)

        assert (result.count, result.pushed) == (2, 1)
        assert mock_db.begin_nested.call_count == 2
        mock_db.rollback.assert_not_awaited()


class TestOwnership:
    @pytest.mark.asyncio
    async def test_mark_read_missing(self, mock_db, parent_user, repo):
        repo.get_by_id.return_value = None

        with pytest.raises(NotFoundError):
            await service.mark_read(mock_db, parent_user, "n-9")

    @pytest.mark.asyncio
    async def test_mark_read_of_someone_else(self, mock_db, teacher_user, repo):
        with pytest.raises(ForbiddenError):
            await service.mark_read(mock_db, teacher_user, "n-1")
        repo.mark_read.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_same_id_with_other_role_is_not_owner(self, mock_db, parent_user, repo):
        repo.get_by_id.return_value = make_notification(recipient_type="teacher")

        with pytest.raises(ForbiddenError):
            await service.delete_notification(mock_db, parent_user, "n-1")
        repo.delete_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_owner_deletes(self, mock_db, parent_user, repo):
        await service.delete_notification(mock_db, parent_user, "n-1")

        repo.delete_one.assert_awaited_once()


class TestSummary:
    @pytest.mark.asyncio
    async def test_keyed_by_category(self, mock_db, parent_user, repo):
        repo.summary_by_category.return_value = [
            (NotificationCategory.EVENT, 3, 1),
            (NotificationCategory.ALERT, 1, 0),
        ]

        result = await service.summary(mock_db, parent_user)

        assert set(result) == {"event", "alert"}
        assert (result["event"].total, result["event"].unread) == (3, 1)
