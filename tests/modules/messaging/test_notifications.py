"""
Tests for push notification suppression.
"""

from datetime import UTC, datetime, time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kinderhub.modules.messaging.helpers import Participant
from kinderhub.modules.messaging.models import Message, MessagePriority, MessageType
from kinderhub.modules.messaging.notifications import notify_new_message, should_notify

RECIPIENT = Participant("11111111-1111-1111-1111-111111111111", "parent")
SENDER = Participant("22222222-2222-2222-2222-222222222222", "teacher")
NIGHT = datetime(2026, 3, 10, 23, 30, tzinfo=UTC)
NOON = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def make_preference(enabled: bool = True, show_preview: bool = True):
    preference = MagicMock()
    preference.enabled = enabled
    preference.show_preview = show_preview
    preference.quiet_hours_start = time(21, 0)
    preference.quiet_hours_end = time(7, 0)
    return preference


@pytest.fixture
def repo():
    with patch("kinderhub.modules.messaging.notifications.repository") as repo:
        repo.get_conversation_settings = AsyncMock(return_value={})
        repo.get_notification_preference = AsyncMock(return_value=None)
        yield repo


class TestShouldNotify:
    @pytest.mark.asyncio
    async def test_defaults_notify_with_preview(self, mock_db, repo):
        assert await should_notify(mock_db, RECIPIENT, SENDER, MessagePriority.NORMAL, NIGHT) == (
            True,
            True,
        )

    @pytest.mark.asyncio
    async def test_muted_conversation(self, mock_db, repo):
        conversation = MagicMock()
        conversation.is_muted = True
        repo.get_conversation_settings.return_value = {SENDER: conversation}

        notify, _ = await should_notify(mock_db, RECIPIENT, SENDER, MessagePriority.URGENT, NOON)

        assert notify is False

    @pytest.mark.asyncio
    async def test_disabled_preference(self, mock_db, repo):
        repo.get_notification_preference.return_value = make_preference(enabled=False)

        notify, _ = await should_notify(mock_db, RECIPIENT, SENDER, MessagePriority.NORMAL, NOON)

        assert notify is False

    @pytest.mark.asyncio
    async def test_quiet_hours_suppress(self, mock_db, repo):
        repo.get_notification_preference.return_value = make_preference()

        notify, _ = await should_notify(mock_db, RECIPIENT, SENDER, MessagePriority.HIGH, NIGHT)

        assert notify is False

    @pytest.mark.asyncio
    async def test_outside_quiet_hours(self, mock_db, repo):
        repo.get_notification_preference.return_value = make_preference(show_preview=False)

        assert await should_notify(mock_db, RECIPIENT, SENDER, MessagePriority.NORMAL, NOON) == (
            True,
            False,
        )

    @pytest.mark.asyncio
    async def test_urgent_ignores_quiet_hours(self, mock_db, repo):
        repo.get_notification_preference.return_value = make_preference()

        notify, _ = await should_notify(mock_db, RECIPIENT, SENDER, MessagePriority.URGENT, NIGHT)

        assert notify is True


class Savepoint:
    """Records how the ``begin_nested`` block ended."""

    def __init__(self):
        self.rolled_back = False
        self.released = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.released = True
        else:
            self.rolled_back = True
        return False


class TestNotifyNewMessage:
    @pytest.fixture
    def message(self):
        return Message(
            id="msg-1",
            sender_id=SENDER.id,
            sender_type=SENDER.type,
            recipient_id=RECIPIENT.id,
            recipient_type=RECIPIENT.type,
            body="Bring a hat tomorrow",
            message_type=MessageType.TEXT,
            priority=MessagePriority.NORMAL,
        )

    @pytest.fixture
    def savepoint(self, mock_db):
        savepoint = Savepoint()
        mock_db.begin_nested = MagicMock(return_value=savepoint)
        return savepoint

    @pytest.mark.asyncio
    async def test_sends_inside_savepoint(self, mock_db, repo, message, savepoint):
        with patch(
            "kinderhub.modules.messaging.notifications.push_service.send_to_user",
            new_callable=AsyncMock,
            return_value=2,
        ) as send:
            assert await notify_new_message(mock_db, message, "Terry Teacher") is True

        payload = send.call_args.args[3]
        assert payload["title"] == "Terry Teacher"
        assert payload["body"] == "Bring a hat tomorrow"
        assert savepoint.released is True

    @pytest.mark.asyncio
    async def test_database_error_rolls_back_only_the_savepoint(
        self, mock_db, repo, message, savepoint
    ):
        with patch(
            "kinderhub.modules.messaging.notifications.push_service.send_to_user",
            new_callable=AsyncMock,
            side_effect=RuntimeError("connection reset while deleting subscription"),
        ):
            assert await notify_new_message(mock_db, message, "Terry Teacher") is False

        assert savepoint.rolled_back is True
        mock_db.rollback.assert_not_awaited()
