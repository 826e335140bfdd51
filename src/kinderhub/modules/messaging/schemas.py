"""
Messaging Schemas
"""

from datetime import datetime, time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kinderhub.modules.messaging.models import (
    MessagePriority,
    MessageStatus,
    MessageType,
    NotificationType,
    PresenceStatus,
)

ParticipantType = Literal["parent", "teacher", "admin"]


# ============================================
# Messages
# ============================================


class SendMessageRequest(BaseModel):
    recipient_id: str
    recipient_type: ParticipantType
    subject: str | None = Field(default=None, max_length=255)
    body: str = Field(default="", max_length=10000)
    message_type: MessageType = MessageType.TEXT
    priority: MessagePriority = MessagePriority.NORMAL
    reply_to_message_id: str | None = None
    attachment_url: str | None = None
    attachment_type: str | None = Field(default=None, max_length=100)
    attachment_size: int | None = Field(default=None, ge=0)
    voice_duration: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def require_content(self) -> "SendMessageRequest":
        if not self.body.strip() and not self.attachment_url:
            raise ValueError("A message needs a body or an attachment")
        return self


class ReactionGroup(BaseModel):
    emoji: str
    count: int
    user_ids: list[str]
    reacted_by_me: bool = False


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sender_id: str
    sender_type: str
    recipient_id: str
    recipient_type: str
    subject: str | None
    body: str
    message_type: MessageType
    priority: MessagePriority
    reply_to_message_id: str | None
    attachment_url: str | None
    attachment_type: str | None
    attachment_size: int | None
    voice_duration: int | None
    status: MessageStatus
    delivered_at: datetime | None
    read_at: datetime | None
    created_at: datetime
    reactions: list[ReactionGroup] = []


class MessagePage(BaseModel):
    conversation_id: str
    messages: list[MessageResponse]
    total: int
    page: int
    limit: int
    has_more: bool


class DeliveryStatusResponse(BaseModel):
    message_id: str
    status: MessageStatus
    delivered_at: datetime | None
    read_at: datetime | None


class UnreadCountResponse(BaseModel):
    unread_count: int


# ============================================
# Conversations
# ============================================


class ConversationSummary(BaseModel):
    conversation_id: str
    other_id: str
    other_type: str
    other_name: str
    other_status: PresenceStatus = PresenceStatus.OFFLINE
    other_last_seen: datetime | None = None
    last_message: MessageResponse
    unread_count: int = 0
    is_typing: bool = False
    is_muted: bool = False
    is_archived: bool = False
    is_pinned: bool = False


class ConversationSettingsUpdate(BaseModel):
    is_muted: bool | None = None
    is_archived: bool | None = None
    is_pinned: bool | None = None


class ConversationSettingsResponse(BaseModel):
    conversation_id: str
    is_muted: bool = False
    is_archived: bool = False
    is_pinned: bool = False


# ============================================
# Reactions, presence, typing
# ============================================


class ReactionRequest(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=16)


class ReactionsResponse(BaseModel):
    message_id: str
    reactions: list[ReactionGroup]


class PresenceUpdate(BaseModel):
    status: PresenceStatus


class PresenceResponse(BaseModel):
    user_id: str
    user_type: str
    status: PresenceStatus
    last_seen: datetime | None


class TypingRequest(BaseModel):
    conversation_id: str
    is_typing: bool = True


class TypingUser(BaseModel):
    user_id: str
    user_type: str
    expires_at: datetime


class TypingResponse(BaseModel):
    conversation_id: str
    typing: list[TypingUser]


# ============================================
# Search and contacts
# ============================================


class SearchResult(BaseModel):
    conversation_id: str
    relevance: float
    message: MessageResponse


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult]
    total: int
    page: int
    limit: int


class Contact(BaseModel):
    id: str
    type: str
    name: str
    email: str
    status: PresenceStatus = PresenceStatus.OFFLINE
    conversation_id: str


# ============================================
# Notification preferences
# ============================================


class NotificationPreferenceUpdate(BaseModel):
    notification_type: NotificationType = NotificationType.MESSAGE
    enabled: bool | None = None
    sound_enabled: bool | None = None
    vibration_enabled: bool | None = None
    show_preview: bool | None = None
    quiet_hours_start: time | None = None
    quiet_hours_end: time | None = None


class NotificationPreferenceResponse(BaseModel):
    notification_type: NotificationType
    enabled: bool = True
    sound_enabled: bool = True
    vibration_enabled: bool = True
    show_preview: bool = True
    quiet_hours_start: time | None = None
    quiet_hours_end: time | None = None
