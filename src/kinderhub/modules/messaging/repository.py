"""
Messaging Repository

Database operations for messages, reactions, presence, typing indicators,
notification preferences and conversation settings. Upserts use
PostgreSQL ``INSERT ... ON CONFLICT``.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, case, delete, func, literal_column, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.modules.children.models import Child
from kinderhub.modules.classes.models import SchoolClass
from kinderhub.modules.messaging.helpers import Participant
from kinderhub.modules.messaging.models import (
    ConversationSettings,
    Message,
    MessageReaction,
    MessageStatus,
    NotificationPreference,
    NotificationType,
    PresenceStatus,
    TypingIndicator,
    UserPresence,
)
from kinderhub.modules.users.models import Staff, StaffRole, User

logger = logging.getLogger(__name__)

# Rendered inline so the expression matches the ix_messages_search index
SEARCH_LANGUAGE = literal_column("'english'::regconfig")


def _between(a: Participant, b: Participant):
    """Filter for messages exchanged between two participants in either direction."""
    return or_(
        and_(
            Message.sender_id == a.id,
            Message.sender_type == a.type,
            Message.recipient_id == b.id,
            Message.recipient_type == b.type,
        ),
        and_(
            Message.sender_id == b.id,
            Message.sender_type == b.type,
            Message.recipient_id == a.id,
            Message.recipient_type == a.type,
        ),
    )


def _involving(user: Participant):
    return or_(
        and_(Message.sender_id == user.id, Message.sender_type == user.type),
        and_(Message.recipient_id == user.id, Message.recipient_type == user.type),
    )


def _addressed_to(user: Participant):
    return and_(Message.recipient_id == user.id, Message.recipient_type == user.type)


# ============================================
# Messages
# ============================================


async def create_message(db: AsyncSession, **fields: Any) -> Message:
    message = Message(status=MessageStatus.SENT, **fields)
    db.add(message)
    await db.flush()
    await db.refresh(message)
    return message


async def get_message(db: AsyncSession, message_id: str) -> Message | None:
    return await db.get(Message, str(message_id))


async def mark_delivered(db: AsyncSession, message: Message) -> Message:
    message.status = MessageStatus.DELIVERED
    message.delivered_at = datetime.now(UTC)
    await db.flush()
    return message


async def mark_conversation_read(
    db: AsyncSession, reader: Participant, other: Participant
) -> list[str]:
    """
    Mark every unread message from ``other`` to ``reader`` as read.

    Returns:
        Ids of the messages that changed
    """
    now = datetime.now(UTC)
    result = await db.execute(
        update(Message)
        .where(
            _addressed_to(reader),
            Message.sender_id == other.id,
            Message.sender_type == other.type,
            Message.status != MessageStatus.READ,
        )
        .values(
            status=MessageStatus.READ,
            read_at=now,
            delivered_at=func.coalesce(Message.delivered_at, now),
        )
        .returning(Message.id)
        .execution_options(synchronize_session=False)
    )
    return [row[0] for row in result.all()]


async def mark_message_read(db: AsyncSession, message_id: str, reader: Participant) -> bool:
    now = datetime.now(UTC)
    result = await db.execute(
        update(Message)
        .where(
            Message.id == str(message_id),
            _addressed_to(reader),
            Message.status != MessageStatus.READ,
        )
        .values(
            status=MessageStatus.READ,
            read_at=now,
            delivered_at=func.coalesce(Message.delivered_at, now),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def get_conversation_messages(
    db: AsyncSession,
    user: Participant,
    other: Participant,
    limit: int,
    offset: int,
) -> tuple[list[Message], int]:
    """A page of messages, newest first, plus the total count."""
    total = await db.scalar(select(func.count(Message.id)).where(_between(user, other)))
    result = await db.execute(
        select(Message)
        .where(_between(user, other))
        .order_by(Message.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total or 0


async def list_latest_per_counterpart(db: AsyncSession, user: Participant) -> list[Message]:
    """The most recent message of each conversation the user takes part in."""
    is_sender = and_(Message.sender_id == user.id, Message.sender_type == user.type)
    other_id = case((is_sender, Message.recipient_id), else_=Message.sender_id)
    other_type = case((is_sender, Message.recipient_type), else_=Message.sender_type)

    result = await db.execute(
        select(Message)
        .where(_involving(user))
        .distinct(other_id, other_type)
        .order_by(other_id, other_type, Message.created_at.desc())
    )
    messages = list(result.scalars().all())
    messages.sort(key=lambda m: m.created_at, reverse=True)
    return messages


async def unread_counts_by_sender(
    db: AsyncSession, user: Participant
) -> dict[Participant, int]:
    result = await db.execute(
        select(Message.sender_id, Message.sender_type, func.count(Message.id))
        .where(_addressed_to(user), Message.status != MessageStatus.READ)
        .group_by(Message.sender_id, Message.sender_type)
    )
    return {Participant(row[0], row[1]): row[2] for row in result.all()}


async def unread_count(db: AsyncSession, user: Participant) -> int:
    total = await db.scalar(
        select(func.count(Message.id)).where(
            _addressed_to(user), Message.status != MessageStatus.READ
        )
    )
    return total or 0


def _search_vector():
    return func.to_tsvector(
        SEARCH_LANGUAGE,
        func.coalesce(Message.subject, literal_column("''")) + literal_column("' '") + Message.body,
    )


async def search_messages(
    db: AsyncSession,
    user: Participant,
    query_text: str,
    limit: int,
    offset: int,
) -> tuple[list[tuple[Message, float]], int]:
    """Full-text search over the user's messages, ranked by relevance."""
    ts_query = func.plainto_tsquery(SEARCH_LANGUAGE, query_text)
    vector = _search_vector()
    matches = and_(_involving(user), vector.op("@@")(ts_query))
    rank = func.ts_rank(vector, ts_query).label("relevance")

    total = await db.scalar(select(func.count(Message.id)).where(matches))
    result = await db.execute(
        select(Message, rank)
        .where(matches)
        .order_by(rank.desc(), Message.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return [(row[0], float(row[1])) for row in result.all()], total or 0


# ============================================
# Reactions
# ============================================


async def add_reaction(db: AsyncSession, message_id: str, user: Participant, emoji: str) -> None:
    stmt = insert(MessageReaction).values(
        message_id=str(message_id), user_id=user.id, user_type=user.type, emoji=emoji
    )
    stmt = stmt.on_conflict_do_update(
        constraint="uq_message_reaction",
        set_={"updated_at": func.now()},
    )
    await db.execute(stmt)


async def remove_reaction(
    db: AsyncSession, message_id: str, user: Participant, emoji: str
) -> bool:
    result = await db.execute(
        delete(MessageReaction).where(
            MessageReaction.message_id == str(message_id),
            MessageReaction.user_id == user.id,
            MessageReaction.user_type == user.type,
            MessageReaction.emoji == emoji,
        )
    )
    return result.rowcount > 0


async def list_reactions(db: AsyncSession, message_ids: list[str]) -> list[MessageReaction]:
    if not message_ids:
        return []
    result = await db.execute(
        select(MessageReaction)
        .where(MessageReaction.message_id.in_(message_ids))
        .order_by(MessageReaction.created_at)
    )
    return list(result.scalars().all())


# ============================================
# Presence
# ============================================


async def get_presence(db: AsyncSession, user: Participant) -> UserPresence | None:
    result = await db.execute(
        select(UserPresence).where(
            UserPresence.user_id == user.id, UserPresence.user_type == user.type
        )
    )
    return result.scalar_one_or_none()


async def get_presences(
    db: AsyncSession, participants: list[Participant]
) -> dict[Participant, UserPresence]:
    if not participants:
        return {}
    ids = sorted({p.id for p in participants})
    result = await db.execute(select(UserPresence).where(UserPresence.user_id.in_(ids)))
    wanted = set(participants)
    return {
        key: presence
        for presence in result.scalars().all()
        if (key := Participant(presence.user_id, presence.user_type)) in wanted
    }


async def upsert_presence(db: AsyncSession, user: Participant, status: PresenceStatus) -> None:
    now = datetime.now(UTC)
    stmt = insert(UserPresence).values(
        user_id=user.id, user_type=user.type, status=status, last_seen=now
    )
    stmt = stmt.on_conflict_do_update(
        constraint="uq_user_presence",
        set_={"status": status, "last_seen": now, "updated_at": func.now()},
    )
    await db.execute(stmt)


# ============================================
# Typing indicators
# ============================================


async def set_typing(
    db: AsyncSession, key: str, user: Participant, expires_at: datetime
) -> None:
    stmt = insert(TypingIndicator).values(
        conversation_key=key, user_id=user.id, user_type=user.type, expires_at=expires_at
    )
    stmt = stmt.on_conflict_do_update(
        constraint="uq_typing_indicator",
        set_={"expires_at": expires_at, "updated_at": func.now()},
    )
    await db.execute(stmt)


async def clear_typing(db: AsyncSession, key: str, user: Participant) -> None:
    await db.execute(
        delete(TypingIndicator).where(
            TypingIndicator.conversation_key == key,
            TypingIndicator.user_id == user.id,
            TypingIndicator.user_type == user.type,
        )
    )


async def get_active_typers(
    db: AsyncSession, keys: list[str], now: datetime
) -> list[TypingIndicator]:
    """Unexpired typing rows for the given conversation keys."""
    if not keys:
        return []
    result = await db.execute(
        select(TypingIndicator).where(
            TypingIndicator.conversation_key.in_(keys),
            TypingIndicator.expires_at > now,
        )
    )
    return list(result.scalars().all())


# ============================================
# Notification preferences and conversation settings
# ============================================


async def get_notification_preferences(
    db: AsyncSession, user: Participant
) -> list[NotificationPreference]:
    result = await db.execute(
        select(NotificationPreference).where(
            NotificationPreference.user_id == user.id,
            NotificationPreference.user_type == user.type,
        )
    )
    return list(result.scalars().all())


async def get_notification_preference(
    db: AsyncSession, user: Participant, notification_type: NotificationType
) -> NotificationPreference | None:
    result = await db.execute(
        select(NotificationPreference).where(
            NotificationPreference.user_id == user.id,
            NotificationPreference.user_type == user.type,
            NotificationPreference.notification_type == notification_type,
        )
    )
    return result.scalar_one_or_none()


async def upsert_notification_preference(
    db: AsyncSession,
    user: Participant,
    notification_type: NotificationType,
    fields: dict[str, Any],
) -> None:
    stmt = insert(NotificationPreference).values(
        user_id=user.id, user_type=user.type, notification_type=notification_type, **fields
    )
    stmt = stmt.on_conflict_do_update(
        constraint="uq_notification_preference",
        set_={**fields, "updated_at": func.now()},
    )
    await db.execute(stmt)


async def get_conversation_settings(
    db: AsyncSession, user: Participant, others: list[Participant] | None = None
) -> dict[Participant, ConversationSettings]:
    query = select(ConversationSettings).where(
        ConversationSettings.user_id == user.id,
        ConversationSettings.user_type == user.type,
    )
    if others is not None:
        if not others:
            return {}
        query = query.where(ConversationSettings.other_id.in_(sorted({o.id for o in others})))
    result = await db.execute(query)
    return {
        Participant(row.other_id, row.other_type): row for row in result.scalars().all()
    }


async def upsert_conversation_settings(
    db: AsyncSession, user: Participant, other: Participant, fields: dict[str, Any]
) -> None:
    stmt = insert(ConversationSettings).values(
        user_id=user.id,
        user_type=user.type,
        other_id=other.id,
        other_type=other.type,
        **fields,
    )
    stmt = stmt.on_conflict_do_update(
        constraint="uq_conversation_settings",
        set_={**fields, "updated_at": func.now()},
    )
    await db.execute(stmt)


# ============================================
# Contacts
# ============================================


async def list_teachers_of_parent(db: AsyncSession, parent_id: str) -> list[Staff]:
    """Teachers of the classes the parent's children are placed in."""
    result = await db.execute(
        select(Staff)
        .join(SchoolClass, SchoolClass.teacher_id == Staff.id)
        .join(Child, Child.class_id == SchoolClass.id)
        .where(
            Child.parent_id == parent_id,
            Staff.role == StaffRole.TEACHER,
            Staff.is_active.is_(True),
        )
        .distinct()
        .order_by(Staff.first_name, Staff.last_name)
    )
    return list(result.scalars().all())


async def list_parents_of_teacher(db: AsyncSession, teacher_id: str) -> list[User]:
    """Parents of children placed in the teacher's classes."""
    result = await db.execute(
        select(User)
        .join(Child, Child.parent_id == User.id)
        .join(SchoolClass, SchoolClass.id == Child.class_id)
        .where(SchoolClass.teacher_id == teacher_id, User.is_active.is_(True))
        .distinct()
        .order_by(User.first_name, User.last_name)
    )
    return list(result.scalars().all())
