"""
Messaging Service

Business logic for direct messages between participants.

Delivery tracking:
- A new message is ``sent``; it becomes ``delivered`` immediately when the
  recipient's presence is ``online``
- Fetching a conversation marks every unread message addressed to the
  caller as ``read`` and publishes a read receipt to the sender

Typing indicators expire ``TYPING_TTL`` after they were set and are only
checked when read.
"""

import logging
from collections import defaultdict
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser
from kinderhub.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from kinderhub.modules.messaging import events, notifications, repository
from kinderhub.modules.messaging.helpers import (
    Participant,
    conversation_id,
    conversation_key,
    parse_conversation_id,
)
from kinderhub.modules.messaging.models import (
    Message,
    MessageReaction,
    NotificationType,
    PresenceStatus,
)
from kinderhub.modules.messaging.schemas import (
    Contact,
    ConversationSettingsResponse,
    ConversationSettingsUpdate,
    ConversationSummary,
    DeliveryStatusResponse,
    MessagePage,
    MessageResponse,
    NotificationPreferenceResponse,
    NotificationPreferenceUpdate,
    PresenceResponse,
    ReactionGroup,
    ReactionsResponse,
    SearchResponse,
    SearchResult,
    SendMessageRequest,
    TypingRequest,
    TypingResponse,
    TypingUser,
)
from kinderhub.modules.users import repository as users_repository
from kinderhub.modules.users.models import StaffRole
from kinderhub.modules.users.repository import StaffRepository, UserRepository

logger = logging.getLogger(__name__)

TYPING_TTL = timedelta(seconds=10)
MIN_SEARCH_LENGTH = 2
UNKNOWN_NAME = "Unknown user"


def _me(user: CurrentUser) -> Participant:
    return Participant(user.id, user.role)


def _counterpart(message: Message, me: Participant) -> Participant:
    if message.sender_id == me.id and message.sender_type == me.type:
        return Participant(message.recipient_id, message.recipient_type)
    return Participant(message.sender_id, message.sender_type)


def _is_participant(message: Message, me: Participant) -> bool:
    return (message.sender_id, message.sender_type) == me or (
        message.recipient_id,
        message.recipient_type,
    ) == me


def _parse(value: str) -> Participant:
    try:
        return parse_conversation_id(value)
    except ValueError as e:
        raise ValidationError(str(e), "INVALID_CONVERSATION") from e


def group_reactions(
    reactions: list[MessageReaction], viewer: Participant
) -> dict[str, list[ReactionGroup]]:
    """Group reaction rows by message, then by emoji in first-use order."""
    grouped: dict[str, dict[str, ReactionGroup]] = defaultdict(dict)
    for reaction in reactions:
        groups = grouped[reaction.message_id]
        group = groups.get(reaction.emoji)
        if group is None:
            group = groups[reaction.emoji] = ReactionGroup(emoji=reaction.emoji, count=0, user_ids=[])
        group.count += 1
        group.user_ids.append(reaction.user_id)
        if (reaction.user_id, reaction.user_type) == viewer:
            group.reacted_by_me = True
    return {message_id: list(groups.values()) for message_id, groups in grouped.items()}


async def _to_responses(
    db: AsyncSession, messages: list[Message], viewer: Participant
) -> list[MessageResponse]:
    reactions = group_reactions(await repository.list_reactions(db, [m.id for m in messages]), viewer)
    responses = []
    for message in messages:
        response = MessageResponse.model_validate(message)
        response.reactions = reactions.get(message.id, [])
        responses.append(response)
    return responses


async def _get_message(db: AsyncSession, message_id: str) -> Message:
    message = await repository.get_message(db, message_id)
    if message is None:
        raise NotFoundError("Message", "MESSAGE_NOT_FOUND")
    return message


async def _get_participant_message(db: AsyncSession, message_id: str, me: Participant) -> Message:
    message = await _get_message(db, message_id)
    if not _is_participant(message, me):
        raise ForbiddenError("You are not part of this conversation.", "NOT_A_PARTICIPANT")
    return message


# ============================================
# Messages
# ============================================


async def send_message(
    db: AsyncSession, user: CurrentUser, data: SendMessageRequest
) -> MessageResponse:
    sender = _me(user)
    recipient = Participant(data.recipient_id, data.recipient_type)
    if recipient == sender:
        raise ValidationError("You cannot send a message to yourself.", "CANNOT_MESSAGE_SELF")

    account = await users_repository.get_account(db, recipient.type, recipient.id)
    if account is None or not account.is_active:
        raise NotFoundError("Recipient", "RECIPIENT_NOT_FOUND")

    if data.reply_to_message_id:
        original = await repository.get_message(db, data.reply_to_message_id)
        if original is None or not (
            _is_participant(original, sender) and _is_participant(original, recipient)
        ):
            raise ValidationError(
                "Replies must reference a message in the same conversation.", "INVALID_REPLY"
            )

    message = await repository.create_message(
        db,
        sender_id=sender.id,
        sender_type=sender.type,
        recipient_id=recipient.id,
        recipient_type=recipient.type,
        **data.model_dump(exclude={"recipient_id", "recipient_type"}),
    )

    presence = await repository.get_presence(db, recipient)
    if presence is not None and presence.status == PresenceStatus.ONLINE:
        await repository.mark_delivered(db, message)

    logger.info(f"Message {message.id} from {sender.type}:{sender.id} is {message.status.value}")

    response = MessageResponse.model_validate(message)
    await events.publish(
        recipient,
        events.NEW_MESSAGE,
        {"conversation_id": conversation_id(sender), "message": response.model_dump(mode="json")},
    )

    sender_name = user.name
    if not sender_name:
        names = await users_repository.get_display_names(db, [sender])
        sender_name = names.get(sender, UNKNOWN_NAME)
    await notifications.notify_new_message(db, message, sender_name)

    return response


async def list_conversations(
    db: AsyncSession, user: CurrentUser, include_archived: bool = False
) -> list[ConversationSummary]:
    """
    One entry per counterpart, pinned first, then most recent first.
    """
    me = _me(user)
    latest = await repository.list_latest_per_counterpart(db, me)
    if not latest:
        return []

    others = [_counterpart(message, me) for message in latest]
    names = await users_repository.get_display_names(db, others)
    unread = await repository.unread_counts_by_sender(db, me)
    presences = await repository.get_presences(db, others)
    view_settings = await repository.get_conversation_settings(db, me, others)

    keys = {conversation_key(me, other): other for other in others}
    typing = {
        Participant(row.user_id, row.user_type)
        for row in await repository.get_active_typers(db, list(keys), datetime.now(UTC))
    }

    last_messages = await _to_responses(db, latest, me)
    summaries = []
    for other, last_message in zip(others, last_messages, strict=True):
        conversation = view_settings.get(other)
        if conversation is not None and conversation.is_archived and not include_archived:
            continue
        presence = presences.get(other)
        summaries.append(
            ConversationSummary(
                conversation_id=conversation_id(other),
                other_id=other.id,
                other_type=other.type,
                other_name=names.get(other, UNKNOWN_NAME),
                other_status=presence.status if presence else PresenceStatus.OFFLINE,
                other_last_seen=presence.last_seen if presence else None,
                last_message=last_message,
                unread_count=unread.get(other, 0),
                is_typing=other in typing,
                is_muted=bool(conversation and conversation.is_muted),
                is_archived=bool(conversation and conversation.is_archived),
                is_pinned=bool(conversation and conversation.is_pinned),
            )
        )

    summaries.sort(key=lambda s: s.is_pinned, reverse=True)
    return summaries


async def get_conversation_messages(
    db: AsyncSession,
    user: CurrentUser,
    conversation: str,
    page: int = 1,
    limit: int = 50,
) -> MessagePage:
    """
    A page of the conversation, newest first.

    Unread messages addressed to the caller are marked read before the page
    is loaded, and the sender receives a read receipt.
    """
    me = _me(user)
    other = _parse(conversation)

    read_ids = await repository.mark_conversation_read(db, me, other)
    if read_ids:
        logger.debug(f"Marked {len(read_ids)} messages read for {me.type}:{me.id}")
        await events.publish(
            other,
            events.MESSAGE_READ,
            {
                "conversation_id": conversation_id(me),
                "message_ids": read_ids,
                "read_at": datetime.now(UTC).isoformat(),
            },
        )

    offset = (page - 1) * limit
    messages, total = await repository.get_conversation_messages(db, me, other, limit, offset)
    return MessagePage(
        conversation_id=conversation,
        messages=await _to_responses(db, messages, me),
        total=total,
        page=page,
        limit=limit,
        has_more=offset + len(messages) < total,
    )


async def mark_message_read(
    db: AsyncSession, user: CurrentUser, message_id: str
) -> DeliveryStatusResponse:
    me = _me(user)
    message = await _get_message(db, message_id)
    if (message.recipient_id, message.recipient_type) != me:
        raise ForbiddenError("Only the recipient can mark a message as read.", "NOT_RECIPIENT")

    if await repository.mark_message_read(db, message.id, me):
        await db.refresh(message)
        await events.publish(
            Participant(message.sender_id, message.sender_type),
            events.MESSAGE_READ,
            {
                "conversation_id": conversation_id(me),
                "message_ids": [message.id],
                "read_at": message.read_at.isoformat() if message.read_at else None,
            },
        )

    return _delivery_status(message)


def _delivery_status(message: Message) -> DeliveryStatusResponse:
    return DeliveryStatusResponse(
        message_id=message.id,
        status=message.status,
        delivered_at=message.delivered_at,
        read_at=message.read_at,
    )


async def get_delivery_status(
    db: AsyncSession, user: CurrentUser, message_id: str
) -> DeliveryStatusResponse:
    message = await _get_message(db, message_id)
    if (message.sender_id, message.sender_type) != _me(user):
        raise ForbiddenError("Only the sender can view delivery status.", "NOT_SENDER")
    return _delivery_status(message)


async def unread_count(db: AsyncSession, user: CurrentUser) -> int:
    return await repository.unread_count(db, _me(user))


# ============================================
# Reactions
# ============================================


async def _reactions_response(
    db: AsyncSession, message_id: str, viewer: Participant
) -> ReactionsResponse:
    grouped = group_reactions(await repository.list_reactions(db, [message_id]), viewer)
    return ReactionsResponse(message_id=message_id, reactions=grouped.get(message_id, []))


async def add_reaction(
    db: AsyncSession, user: CurrentUser, message_id: str, emoji: str
) -> ReactionsResponse:
    me = _me(user)
    message = await _get_participant_message(db, message_id, me)
    await repository.add_reaction(db, message.id, me, emoji)
    await events.publish(
        _counterpart(message, me),
        events.REACTION_ADDED,
        {"message_id": message.id, "emoji": emoji, "user_id": me.id, "user_type": me.type},
    )
    return await _reactions_response(db, message.id, me)


async def remove_reaction(
    db: AsyncSession, user: CurrentUser, message_id: str, emoji: str
) -> ReactionsResponse:
    me = _me(user)
    message = await _get_participant_message(db, message_id, me)
    if not await repository.remove_reaction(db, message.id, me, emoji):
        raise NotFoundError("Reaction", "REACTION_NOT_FOUND")
    await events.publish(
        _counterpart(message, me),
        events.REACTION_REMOVED,
        {"message_id": message.id, "emoji": emoji, "user_id": me.id, "user_type": me.type},
    )
    return await _reactions_response(db, message.id, me)


async def list_reactions(db: AsyncSession, user: CurrentUser, message_id: str) -> ReactionsResponse:
    me = _me(user)
    message = await _get_participant_message(db, message_id, me)
    return await _reactions_response(db, message.id, me)


# ============================================
# Presence and typing
# ============================================


async def update_presence(
    db: AsyncSession, user: CurrentUser, status: PresenceStatus
) -> PresenceResponse:
    me = _me(user)
    await repository.upsert_presence(db, me, status)
    now = datetime.now(UTC)
    await events.publish_presence(me, status.value, now)
    return PresenceResponse(user_id=me.id, user_type=me.type, status=status, last_seen=now)


async def get_presence(db: AsyncSession, participant: Participant) -> PresenceResponse:
    presence = await repository.get_presence(db, participant)
    if presence is None:
        return PresenceResponse(
            user_id=participant.id,
            user_type=participant.type,
            status=PresenceStatus.OFFLINE,
            last_seen=None,
        )
    return PresenceResponse(
        user_id=participant.id,
        user_type=participant.type,
        status=presence.status,
        last_seen=presence.last_seen,
    )


async def set_typing(db: AsyncSession, user: CurrentUser, data: TypingRequest) -> None:
    me = _me(user)
    other = _parse(data.conversation_id)
    key = conversation_key(me, other)

    expires_at = None
    if data.is_typing:
        expires_at = datetime.now(UTC) + TYPING_TTL
        await repository.set_typing(db, key, me, expires_at)
    else:
        await repository.clear_typing(db, key, me)

    await events.publish(
        other,
        events.TYPING,
        {
            "conversation_id": conversation_id(me),
            "user_id": me.id,
            "user_type": me.type,
            "is_typing": data.is_typing,
            "expires_at": expires_at.isoformat() if expires_at else None,
        },
    )


async def get_typing(db: AsyncSession, user: CurrentUser, conversation: str) -> TypingResponse:
    me = _me(user)
    other = _parse(conversation)
    rows = await repository.get_active_typers(db, [conversation_key(me, other)], datetime.now(UTC))
    return TypingResponse(
        conversation_id=conversation,
        typing=[
            TypingUser(user_id=row.user_id, user_type=row.user_type, expires_at=row.expires_at)
            for row in rows
            if (row.user_id, row.user_type) != me
        ],
    )


# ============================================
# Search and contacts
# ============================================


async def search_messages(
    db: AsyncSession,
    user: CurrentUser,
    query: str,
    page: int = 1,
    limit: int = 20,
) -> SearchResponse:
    query = query.strip()
    if len(query) < MIN_SEARCH_LENGTH:
        raise ValidationError(
            f"Search query must be at least {MIN_SEARCH_LENGTH} characters.", "QUERY_TOO_SHORT"
        )

    me = _me(user)
    rows, total = await repository.search_messages(db, me, query, limit, (page - 1) * limit)
    responses = await _to_responses(db, [message for message, _ in rows], me)
    return SearchResponse(
        query=query,
        results=[
            SearchResult(
                conversation_id=conversation_id(_counterpart(message, me)),
                relevance=relevance,
                message=response,
            )
            for (message, relevance), response in zip(rows, responses, strict=True)
        ],
        total=total,
        page=page,
        limit=limit,
    )


async def get_contacts(db: AsyncSession, user: CurrentUser) -> list[Contact]:
    """
    People the caller can message.

    Parents see the teachers of their children's classes; teachers see the
    parents of children in their classes; both see every admin. Admins see
    all parents and teachers.
    """
    if user.is_parent:
        accounts = [
            *await repository.list_teachers_of_parent(db, user.id),
            *await StaffRepository.list_by_role(db, StaffRole.ADMIN),
        ]
    elif user.is_teacher:
        accounts = [
            *await repository.list_parents_of_teacher(db, user.id),
            *await StaffRepository.list_by_role(db, StaffRole.ADMIN),
        ]
    else:
        accounts = [
            *await UserRepository.list_active(db),
            *await StaffRepository.list_by_role(db, StaffRole.TEACHER),
        ]

    me = _me(user)
    participants = [
        p for p in (Participant(a.id, a.role.value) for a in accounts) if p != me
    ]
    presences = await repository.get_presences(db, participants)
    by_participant = {Participant(a.id, a.role.value): a for a in accounts}

    contacts = []
    for participant in participants:
        account = by_participant[participant]
        presence = presences.get(participant)
        contacts.append(
            Contact(
                id=participant.id,
                type=participant.type,
                name=account.full_name,
                email=account.email,
                status=presence.status if presence else PresenceStatus.OFFLINE,
                conversation_id=conversation_id(participant),
            )
        )
    return contacts


# ============================================
# Preferences and conversation settings
# ============================================


async def get_notification_preferences(
    db: AsyncSession, user: CurrentUser
) -> list[NotificationPreferenceResponse]:
    """Preferences for every notification type, defaults filled in."""
    stored = {
        pref.notification_type: pref
        for pref in await repository.get_notification_preferences(db, _me(user))
    }
    result = []
    for notification_type in NotificationType:
        pref = stored.get(notification_type)
        if pref is None:
            result.append(NotificationPreferenceResponse(notification_type=notification_type))
        else:
            result.append(
                NotificationPreferenceResponse(
                    notification_type=notification_type,
                    enabled=pref.enabled,
                    sound_enabled=pref.sound_enabled,
                    vibration_enabled=pref.vibration_enabled,
                    show_preview=pref.show_preview,
                    quiet_hours_start=pref.quiet_hours_start,
                    quiet_hours_end=pref.quiet_hours_end,
                )
            )
    return result


async def update_notification_preferences(
    db: AsyncSession, user: CurrentUser, data: NotificationPreferenceUpdate
) -> list[NotificationPreferenceResponse]:
    fields = data.model_dump(exclude_unset=True, exclude={"notification_type"})
    if ("quiet_hours_start" in fields) != ("quiet_hours_end" in fields):
        raise ValidationError(
            "Quiet hours need both a start and an end.", "INCOMPLETE_QUIET_HOURS"
        )
    await repository.upsert_notification_preference(db, _me(user), data.notification_type, fields)
    return await get_notification_preferences(db, user)


async def get_conversation_settings(
    db: AsyncSession, user: CurrentUser, conversation: str
) -> ConversationSettingsResponse:
    other = _parse(conversation)
    stored = (await repository.get_conversation_settings(db, _me(user), [other])).get(other)
    if stored is None:
        return ConversationSettingsResponse(conversation_id=conversation)
    return ConversationSettingsResponse(
        conversation_id=conversation,
        is_muted=stored.is_muted,
        is_archived=stored.is_archived,
        is_pinned=stored.is_pinned,
    )


async def update_conversation_settings(
    db: AsyncSession,
    user: CurrentUser,
    conversation: str,
    data: ConversationSettingsUpdate,
) -> ConversationSettingsResponse:
    other = _parse(conversation)
    fields = {key: value for key, value in data.model_dump().items() if value is not None}
    await repository.upsert_conversation_settings(db, _me(user), other, fields)
    return await get_conversation_settings(db, user, conversation)
