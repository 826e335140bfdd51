"""
Messaging Router

Endpoints:
- POST /messaging/messages - Send a message
- GET /messaging/conversations - Conversation list (?include_archived=)
- GET /messaging/conversations/{conversation_id}/messages - Paged messages, marks unread as read
- GET/PUT /messaging/conversations/{conversation_id}/settings - Mute, archive, pin
- GET /messaging/conversations/{conversation_id}/typing - Active typers
- POST /messaging/messages/{id}/read - Mark one message read (recipient)
- GET /messaging/messages/{id}/status - Delivery status (sender)
- GET/POST /messaging/messages/{id}/reactions - List / add reactions
- DELETE /messaging/messages/{id}/reactions/{emoji} - Remove own reaction
- PUT /messaging/presence - Update own presence
- GET /messaging/presence/{user_type}/{user_id} - Presence of a participant
- POST /messaging/typing - Start or stop typing
- GET /messaging/search?q= - Full-text search
- GET /messaging/contacts - People the caller can message
- GET /messaging/unread-count - Unread messages addressed to the caller
- GET/PUT /messaging/notification-preferences - Notification preferences
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core.auth import CurrentUser, get_current_user
from kinderhub.core.database import get_db
from kinderhub.core.exceptions import ServiceError, to_http_exception
from kinderhub.modules.messaging import service
from kinderhub.modules.messaging.helpers import Participant
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
    ParticipantType,
    PresenceResponse,
    PresenceUpdate,
    ReactionRequest,
    ReactionsResponse,
    SearchResponse,
    SendMessageRequest,
    TypingRequest,
    TypingResponse,
    UnreadCountResponse,
)

router = APIRouter()


# ============================================
# Messages and conversations
# ============================================


@router.post("/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    data: SendMessageRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    try:
        return await service.send_message(db, user, data)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    include_archived: bool = Query(default=False),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ConversationSummary]:
    return await service.list_conversations(db, user, include_archived)


@router.get("/conversations/{conversation_id}/messages", response_model=MessagePage)
async def get_conversation_messages(
    conversation_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessagePage:
    try:
        return await service.get_conversation_messages(db, user, conversation_id, page, limit)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.get(
    "/conversations/{conversation_id}/settings", response_model=ConversationSettingsResponse
)
async def get_conversation_settings(
    conversation_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ConversationSettingsResponse:
    try:
        return await service.get_conversation_settings(db, user, conversation_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.put(
    "/conversations/{conversation_id}/settings", response_model=ConversationSettingsResponse
)
async def update_conversation_settings(
    conversation_id: str,
    data: ConversationSettingsUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ConversationSettingsResponse:
    try:
        return await service.update_conversation_settings(db, user, conversation_id, data)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.get("/conversations/{conversation_id}/typing", response_model=TypingResponse)
async def get_typing(
    conversation_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> TypingResponse:
    try:
        return await service.get_typing(db, user, conversation_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.post("/messages/{message_id}/read", response_model=DeliveryStatusResponse)
async def mark_message_read(
    message_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DeliveryStatusResponse:
    try:
        return await service.mark_message_read(db, user, message_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.get("/messages/{message_id}/status", response_model=DeliveryStatusResponse)
async def get_delivery_status(
    message_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DeliveryStatusResponse:
    try:
        return await service.get_delivery_status(db, user, message_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


# ============================================
# Reactions
# ============================================


@router.get("/messages/{message_id}/reactions", response_model=ReactionsResponse)
async def list_reactions(
    message_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ReactionsResponse:
    try:
        return await service.list_reactions(db, user, message_id)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.post("/messages/{message_id}/reactions", response_model=ReactionsResponse)
async def add_reaction(
    message_id: str,
    data: ReactionRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ReactionsResponse:
    try:
        return await service.add_reaction(db, user, message_id, data.emoji)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.delete("/messages/{message_id}/reactions/{emoji}", response_model=ReactionsResponse)
async def remove_reaction(
    message_id: str,
    emoji: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ReactionsResponse:
    try:
        return await service.remove_reaction(db, user, message_id, emoji)
    except ServiceError as e:
        raise to_http_exception(e) from e


# ============================================
# Presence and typing
# ============================================


@router.put("/presence", response_model=PresenceResponse)
async def update_presence(
    data: PresenceUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PresenceResponse:
    return await service.update_presence(db, user, data.status)


@router.get("/presence/{user_type}/{user_id}", response_model=PresenceResponse)
async def get_presence(
    user_type: ParticipantType,
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PresenceResponse:
    return await service.get_presence(db, Participant(user_id, user_type))


@router.post("/typing", status_code=status.HTTP_204_NO_CONTENT)
async def set_typing(
    data: TypingRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await service.set_typing(db, user, data)
    except ServiceError as e:
        raise to_http_exception(e) from e


# ============================================
# Search, contacts, counts
# ============================================


@router.get("/search", response_model=SearchResponse)
async def search_messages(
    q: str = Query(..., max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SearchResponse:
    try:
        return await service.search_messages(db, user, q, page, limit)
    except ServiceError as e:
        raise to_http_exception(e) from e


@router.get("/contacts", response_model=list[Contact])
async def get_contacts(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[Contact]:
    return await service.get_contacts(db, user)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=await service.unread_count(db, user))


# ============================================
# Notification preferences
# ============================================


@router.get("/notification-preferences", response_model=list[NotificationPreferenceResponse])
async def get_notification_preferences(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[NotificationPreferenceResponse]:
    return await service.get_notification_preferences(db, user)


@router.put("/notification-preferences", response_model=list[NotificationPreferenceResponse])
async def update_notification_preferences(
    data: NotificationPreferenceUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[NotificationPreferenceResponse]:
    try:
        return await service.update_notification_preferences(db, user, data)
    except ServiceError as e:
        raise to_http_exception(e) from e
