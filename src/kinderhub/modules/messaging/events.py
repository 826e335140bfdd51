"""
Realtime Messaging Events

Events are published as JSON on Redis channels; a realtime gateway
subscribed to those channels relays them to connected clients.

Channels:
- ``messaging:{user_type}:{user_id}`` - events addressed to one participant
- ``messaging:presence`` - presence changes, broadcast
"""

import logging
from datetime import UTC, datetime
from typing import Any

from kinderhub.core.redis import publish_json
from kinderhub.modules.messaging.helpers import Participant

logger = logging.getLogger(__name__)

PRESENCE_CHANNEL = "messaging:presence"

NEW_MESSAGE = "message:new"
MESSAGE_READ = "message:read"
REACTION_ADDED = "reaction:added"
REACTION_REMOVED = "reaction:removed"
TYPING = "typing"
PRESENCE = "presence"


def user_channel(user: Participant) -> str:
    return f"messaging:{user.type}:{user.id}"


async def publish(user: Participant, event: str, data: dict[str, Any]) -> int:
    payload = {"event": event, "data": data, "sent_at": datetime.now(UTC).isoformat()}
    receivers = await publish_json(user_channel(user), payload)
    logger.debug(f"Published {event} to {user_channel(user)} ({receivers} receivers)")
    return receivers


async def publish_presence(user: Participant, status: str, last_seen: datetime) -> int:
    return await publish_json(
        PRESENCE_CHANNEL,
        {
            "event": PRESENCE,
            "data": {
                "user_id": user.id,
                "user_type": user.type,
                "status": status,
                "last_seen": last_seen.isoformat(),
            },
        },
    )
