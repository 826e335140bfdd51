"""
Redis Configuration

Async Redis client used for rate limiting, job run locks and realtime
event fan-out. Redis is optional outside production: callers check for
``None`` and degrade.
"""

import json
import logging
from typing import Any

from redis.asyncio import Redis, from_url

from kinderhub.core.config import settings

logger = logging.getLogger(__name__)

redis_client: Redis | None = None


async def init_redis() -> Redis:
    """Connect to Redis. Call on application startup."""
    global redis_client
    client = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    await client.ping()
    redis_client = client
    return redis_client


async def get_redis() -> Redis | None:
    """FastAPI dependency returning the client, or None if Redis is unavailable."""
    return redis_client


async def publish_json(channel: str, payload: dict[str, Any]) -> int:
    """
    Publish a JSON payload on a channel.

    Returns:
        Number of subscribers that received it (0 when Redis is unavailable
        or the publish failed)
    """
    if redis_client is None:
        return 0

    try:
        return await redis_client.publish(channel, json.dumps(payload, default=str))
    except Exception as e:
        logger.warning(f"Failed to publish on {channel}: {e}")
        return 0


async def close_redis() -> None:
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
