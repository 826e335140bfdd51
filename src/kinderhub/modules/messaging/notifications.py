"""
Message Notifications

Decides whether a new message should raise a push notification for its
recipient, and sends it.

A notification is suppressed when the recipient has muted the
conversation, disabled message notifications, or is inside their quiet
hours. Urgent messages ignore quiet hours.
"""

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.config import settings
from kinderhub.modules.messaging import repository
from kinderhub.modules.messaging.helpers import Participant, conversation_id, in_quiet_hours
from kinderhub.modules.messaging.models import Message, MessagePriority, NotificationType
from kinderhub.modules.push import service as push_service

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 120


def _local_now() -> datetime:
    return datetime.now(ZoneInfo(settings.timezone))


def _preview(message: Message) -> str:
    if message.body.strip():
        text = message.body.strip()
        return text if len(text) <= PREVIEW_LENGTH else text[: PREVIEW_LENGTH - 3] + "..."
    return f"Sent a {message.message_type.value}"


async def should_notify(
    db: AsyncSession,
    recipient: Participant,
    sender: Participant,
    priority: MessagePriority,
    now: datetime | None = None,
) -> tuple[bool, bool]:
    """
    Decide whether to push a notification.

    Returns:
        (notify, show_preview)
    """
    settings_by_other = await repository.get_conversation_settings(db, recipient, [sender])
    conversation = settings_by_other.get(sender)
    if conversation is not None and conversation.is_muted:
        return False, False

    notification_type = (
        NotificationType.URGENT if priority == MessagePriority.URGENT else NotificationType.MESSAGE
    )
    preference = await repository.get_notification_preference(db, recipient, notification_type)
    if preference is None:
        return True, True
    if not preference.enabled:
        return False, False

    if priority != MessagePriority.URGENT:
        local_time = (now or _local_now()).time()
        if in_quiet_hours(local_time, preference.quiet_hours_start, preference.quiet_hours_end):
            return False, False

    return True, preference.show_preview


async def notify_new_message(db: AsyncSession, message: Message, sender_name: str) -> bool:
    """
    Push a new-message notification to the recipient if their settings allow it.

    Runs in a savepoint on the request session: a failure here rolls back
    only the notification work, never the message itself.
    """
    recipient = Participant(message.recipient_id, message.recipient_type)
    sender = Participant(message.sender_id, message.sender_type)

    try:
        async with db.begin_nested():
            notify, show_preview = await should_notify(db, recipient, sender, message.priority)
            if not notify:
                logger.debug(f"Notification for message {message.id} suppressed by recipient settings")
                return False

            payload = {
                "title": sender_name,
                "body": _preview(message) if show_preview else "New message",
                "tag": conversation_id(sender),
                "data": {
                    "type": NotificationType.MESSAGE.value,
                    "message_id": message.id,
                    "conversation_id": conversation_id(sender),
                    "priority": message.priority.value,
                },
            }
            sent = await push_service.send_to_user(db, recipient.id, recipient.type, payload)
        return sent > 0
    except Exception as e:
        logger.error(f"Failed to send push notification for message {message.id}: {e}")
        return False
