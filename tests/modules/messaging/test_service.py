"""
Unit tests for the messaging service.

Repository, realtime events and push notifications are mocked at the
service import site.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kinderhub.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from kinderhub.modules.messaging import repository as real_repository
from kinderhub.modules.messaging.helpers import Participant, conversation_id
from kinderhub.modules.messaging.models import (
    Message,
    MessagePriority,
    MessageStatus,
    MessageType,
    PresenceStatus,
)
from kinderhub.modules.messaging.schemas import SendMessageRequest
from kinderhub.modules.messaging.service import (
    get_conversation_messages,
    get_typing,
    list_conversations,
    mark_message_read,
    search_messages,
    send_message,
)

SERVICE = "kinderhub.modules.messaging.service"


def build_message(sender: Participant, recipient: Participant, **fields) -> Message:
    values = {
        "id": "msg-1",
        "sender_id": sender.id,
        "sender_type": sender.type,
        "recipient_id": recipient.id,
        "recipient_type": recipient.type,
        "body": "Bring a hat tomorrow",
        "message_type": MessageType.TEXT,
        "priority": MessagePriority.NORMAL,
        "status": MessageStatus.SENT,
        "created_at": datetime(2026, 3, 10, 9, 0, tzinfo=UTC),
    }
    values.update(fields)
    return Message(**values)


@pytest.fixture
def deps():
    with (
        patch(f"{SERVICE}.repository") as repo,
        patch(f"{SERVICE}.events") as events,
        patch(f"{SERVICE}.notifications") as notifications,
        patch(f"{SERVICE}.users_repository") as users_repo,
    ):
        repo.create_message = AsyncMock(side_effect=lambda db, **fields: build_message(
            Participant(fields["sender_id"], fields["sender_type"]),
            Participant(fields["recipient_id"], fields["recipient_type"]),
            body=fields["body"],
        ))
        repo.get_message = AsyncMock(return_value=None)
        repo.get_presence = AsyncMock(return_value=None)
        repo.mark_delivered = AsyncMock(side_effect=real_repository.mark_delivered)
        repo.mark_conversation_read = AsyncMock(return_value=[])
        repo.mark_message_read = AsyncMock(return_value=True)
        repo.get_conversation_messages = AsyncMock(return_value=([], 0))
        repo.list_reactions = AsyncMock(return_value=[])
        repo.search_messages = AsyncMock(return_value=([], 0))
        events.publish = AsyncMock(return_value=1)
        events.NEW_MESSAGE = "message:new"
        events.MESSAGE_READ = "message:read"
        notifications.notify_new_message = AsyncMock(return_value=True)
        account = MagicMock()
        account.is_active = True
        users_repo.get_account = AsyncMock(return_value=account)
        users_repo.get_display_names = AsyncMock(return_value={})
        yield repo, events, notifications, users_repo


def teacher_of(user) -> Participant:
    return Participant(user.id, user.role)


class TestSendMessage:
    def request(self, recipient) -> SendMessageRequest:
        return SendMessageRequest(
            recipient_id=recipient.id, recipient_type=recipient.role, body="Bring a hat tomorrow"
        )

    @pytest.mark.asyncio
    async def test_offline_recipient_stays_sent(self, mock_db, parent_user, teacher_user, deps):
        repo, events, notifications, _ = deps

        response = await send_message(mock_db, teacher_user, self.request(parent_user))

        assert response.status == MessageStatus.SENT
        assert response.delivered_at is None
        repo.mark_delivered.assert_not_awaited()
        events.publish.assert_awaited_once()
        assert events.publish.call_args.args[0] == Participant(parent_user.id, "parent")
        notifications.notify_new_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_online_recipient_is_delivered(self, mock_db, parent_user, teacher_user, deps):
        repo, _, _, _ = deps
        presence = MagicMock()
        presence.status = PresenceStatus.ONLINE
        repo.get_presence.return_value = presence

        response = await send_message(mock_db, teacher_user, self.request(parent_user))

        assert response.status == MessageStatus.DELIVERED
        assert response.delivered_at is not None

    @pytest.mark.asyncio
    async def test_away_recipient_is_not_delivered(self, mock_db, parent_user, teacher_user, deps):
        repo, _, _, _ = deps
        presence = MagicMock()
        presence.status = PresenceStatus.AWAY
        repo.get_presence.return_value = presence

        response = await send_message(mock_db, teacher_user, self.request(parent_user))

        assert response.status == MessageStatus.SENT

    @pytest.mark.asyncio
    async def test_cannot_message_self(self, mock_db, teacher_user, deps):
        with pytest.raises(ValidationError) as exc:
            await send_message(mock_db, teacher_user, self.request(teacher_user))
        assert exc.value.error_code == "CANNOT_MESSAGE_SELF"

    @pytest.mark.asyncio
    async def test_unknown_recipient(self, mock_db, parent_user, teacher_user, deps):
        _, _, _, users_repo = deps
        users_repo.get_account.return_value = None

        with pytest.raises(NotFoundError):
            await send_message(mock_db, teacher_user, self.request(parent_user))

    @pytest.mark.asyncio
    async def test_reply_must_be_in_same_conversation(
        self, mock_db, parent_user, teacher_user, admin_user, deps
    ):
        repo, _, _, _ = deps
        repo.get_message.return_value = build_message(
            teacher_of(admin_user), teacher_of(teacher_user)
        )
        data = self.request(parent_user)
        data.reply_to_message_id = "msg-0"

        with pytest.raises(ValidationError) as exc:
            await send_message(mock_db, teacher_user, data)
        assert exc.value.error_code == "INVALID_REPLY"


class TestReading:
    @pytest.mark.asyncio
    async def test_fetching_conversation_marks_read(self, mock_db, parent_user, teacher_user, deps):
        repo, events, _, _ = deps
        repo.mark_conversation_read.return_value = ["msg-1", "msg-2"]

        page = await get_conversation_messages(
            mock_db, parent_user, f"{teacher_user.id}_teacher"
        )

        reader, other = repo.mark_conversation_read.call_args.args[1:]
        assert reader == Participant(parent_user.id, "parent")
        assert other == Participant(teacher_user.id, "teacher")
        receipt_to, event, data = events.publish.call_args.args
        assert receipt_to == other
        assert event == "message:read"
        assert data["message_ids"] == ["msg-1", "msg-2"]
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_nothing_unread_sends_no_receipt(self, mock_db, parent_user, teacher_user, deps):
        _, events, _, _ = deps

        await get_conversation_messages(mock_db, parent_user, f"{teacher_user.id}_teacher")

        events.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_conversation_id(self, mock_db, parent_user, deps):
        with pytest.raises(ValidationError) as exc:
            await get_conversation_messages(mock_db, parent_user, "nobody")
        assert exc.value.error_code == "INVALID_CONVERSATION"

    @pytest.mark.asyncio
    async def test_only_recipient_marks_read(self, mock_db, parent_user, teacher_user, deps):
        repo, _, _, _ = deps
        repo.get_message.return_value = build_message(
            teacher_of(teacher_user), teacher_of(parent_user)
        )

        with pytest.raises(ForbiddenError):
            await mark_message_read(mock_db, teacher_user, "msg-1")


class TestSearch:
    @pytest.mark.asyncio
    async def test_query_too_short(self, mock_db, parent_user, deps):
        with pytest.raises(ValidationError) as exc:
            await search_messages(mock_db, parent_user, " a ")
        assert exc.value.error_code == "QUERY_TOO_SHORT"

    @pytest.mark.asyncio
    async def test_results_carry_conversation(self, mock_db, parent_user, teacher_user, deps):
        repo, _, _, _ = deps
        message = build_message(teacher_of(teacher_user), teacher_of(parent_user))
        repo.search_messages.return_value = ([(message, 0.5)], 1)

        result = await search_messages(mock_db, parent_user, "hat")

        assert result.total == 1
        assert result.results[0].conversation_id == f"{teacher_user.id}_teacher"
        assert result.results[0].relevance == 0.5


class TestListConversations:
    @pytest.fixture
    def counterparts(self, deps, parent_user):
        repo, _, _, _ = deps
        me = Participant(parent_user.id, parent_user.role)
        teacher = Participant("22222222-2222-2222-2222-222222222222", "teacher")
        admin = Participant("33333333-3333-3333-3333-333333333333", "admin")
        archived = Participant("55555555-5555-5555-5555-555555555555", "teacher")
        repo.list_latest_per_counterpart = AsyncMock(
            return_value=[
                build_message(teacher, me, id="msg-1"),
                build_message(me, admin, id="msg-2"),
                build_message(archived, me, id="msg-3"),
            ]
        )
        repo.unread_counts_by_sender = AsyncMock(return_value={teacher: 2})
        repo.get_presences = AsyncMock(return_value={})
        repo.get_active_typers = AsyncMock(return_value=[])
        repo.get_conversation_settings = AsyncMock(
            return_value={
                admin: MagicMock(is_muted=False, is_archived=False, is_pinned=True),
                archived: MagicMock(is_muted=True, is_archived=True, is_pinned=False),
            }
        )
        return teacher, admin, archived

    @pytest.mark.asyncio
    async def test_archived_hidden_and_pinned_first(
        self, mock_db, parent_user, deps, counterparts
    ):
        teacher, admin, _ = counterparts

        result = await list_conversations(mock_db, parent_user)

        assert [c.conversation_id for c in result] == [
            conversation_id(admin),
            conversation_id(teacher),
        ]
        assert result[0].is_pinned is True
        assert result[1].unread_count == 2

    @pytest.mark.asyncio
    async def test_include_archived_keeps_recency_after_pinned(
        self, mock_db, parent_user, deps, counterparts
    ):
        teacher, admin, archived = counterparts

        result = await list_conversations(mock_db, parent_user, include_archived=True)

        assert [c.conversation_id for c in result] == [
            conversation_id(admin),
            conversation_id(teacher),
            conversation_id(archived),
        ]
        assert result[2].is_archived is True
        assert result[2].is_muted is True


class TestTyping:
    @pytest.mark.asyncio
    async def test_only_other_participant_is_reported(
        self, mock_db, parent_user, teacher_user, deps
    ):
        repo, _, _, _ = deps
        expires_at = datetime(2026, 3, 10, 9, 0, 10, tzinfo=UTC)
        repo.get_active_typers = AsyncMock(
            return_value=[
                MagicMock(user_id=teacher_user.id, user_type="teacher", expires_at=expires_at),
                MagicMock(user_id=parent_user.id, user_type="parent", expires_at=expires_at),
            ]
        )
        conversation = conversation_id(Participant(teacher_user.id, "teacher"))

        result = await get_typing(mock_db, parent_user, conversation)

        assert [t.user_id for t in result.typing] == [teacher_user.id]
        keys, now = repo.get_active_typers.call_args.args[1:]
        assert len(keys) == 1
        assert now.tzinfo is not None
