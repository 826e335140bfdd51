"""
Messaging Models

Participants are identified by (id, type) where type is the account role
(parent, teacher, admin); ids point into ``users`` or ``staff`` depending
on the type, so they carry no foreign key.

A conversation is not stored: it is the set of messages between two
participants.
"""

from datetime import datetime, time
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from kinderhub.modules.shared import BaseModel, pg_enum


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    VOICE = "voice"


class MessagePriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class PresenceStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"
    OFFLINE = "offline"


class NotificationType(str, Enum):
    MESSAGE = "message"
    HOMEWORK = "homework"
    ANNOUNCEMENT = "announcement"
    URGENT = "urgent"


class Message(BaseModel):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_sender", "sender_id", "sender_type"),
        Index("ix_messages_recipient_status", "recipient_id", "recipient_type", "status"),
    )

    sender_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    sender_type: Mapped[str] = mapped_column(String(20), nullable=False)
    recipient_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    recipient_type: Mapped[str] = mapped_column(String(20), nullable=False)

    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[MessageType] = mapped_column(
        pg_enum(MessageType, "message_type"), default=MessageType.TEXT, nullable=False
    )
    priority: Mapped[MessagePriority] = mapped_column(
        pg_enum(MessagePriority, "message_priority"), default=MessagePriority.NORMAL, nullable=False
    )
    reply_to_message_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("messages.id", ondelete="SET NULL"),
        nullable=True,
    )

    attachment_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    attachment_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    voice_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[MessageStatus] = mapped_column(
        pg_enum(MessageStatus, "message_status"), default=MessageStatus.SENT, nullable=False
    )
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, status={self.status.value})>"


class MessageReaction(BaseModel):
    __tablename__ = "message_reactions"
    __table_args__ = (
        UniqueConstraint(
            "message_id", "user_id", "user_type", "emoji", name="uq_message_reaction"
        ),
    )

    message_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    user_type: Mapped[str] = mapped_column(String(20), nullable=False)
    emoji: Mapped[str] = mapped_column(String(16), nullable=False)


class UserPresence(BaseModel):
    __tablename__ = "user_presence"
    __table_args__ = (UniqueConstraint("user_id", "user_type", name="uq_user_presence"),)

    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    user_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[PresenceStatus] = mapped_column(
        pg_enum(PresenceStatus, "presence_status"), default=PresenceStatus.OFFLINE, nullable=False
    )
    last_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class TypingIndicator(BaseModel):
    """A participant typing in a conversation; ignored once ``expires_at`` passes."""

    __tablename__ = "typing_indicators"
    __table_args__ = (
        UniqueConstraint("conversation_key", "user_id", "user_type", name="uq_typing_indicator"),
    )

    conversation_key: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    user_type: Mapped[str] = mapped_column(String(20), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class NotificationPreference(BaseModel):
    __tablename__ = "notification_preferences"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "user_type", "notification_type", name="uq_notification_preference"
        ),
    )

    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    user_type: Mapped[str] = mapped_column(String(20), nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        pg_enum(NotificationType, "notification_type"), nullable=False
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sound_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    vibration_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    show_preview: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    quiet_hours_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    quiet_hours_end: Mapped[time | None] = mapped_column(Time, nullable=True)


class ConversationSettings(BaseModel):
    """One participant's view settings for a conversation with another participant."""

    __tablename__ = "conversation_settings"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "user_type", "other_id", "other_type", name="uq_conversation_settings"
        ),
    )

    user_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    user_type: Mapped[str] = mapped_column(String(20), nullable=False)
    other_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    other_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_muted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
