"""
Session Revocation

Tokens are stateless, so signing out is recorded in Redis:

- ``auth:revoked:{jti}`` marks one token as revoked until it would have
  expired anyway.
- ``auth:valid_after:{role}:{id}`` revokes every token of an account
  issued before the stored time (password reset, admin reset).

Without Redis nothing can be revoked; the attempt is logged and tokens
stay valid until they expire.
"""

import logging
import time

from kinderhub.core import redis as redis_module
from kinderhub.core.config import settings

logger = logging.getLogger(__name__)

REVOKED_TOKEN_PREFIX = "auth:revoked:"
VALID_AFTER_PREFIX = "auth:valid_after:"


def _valid_after_key(role: str, account_id: str) -> str:
    return f"{VALID_AFTER_PREFIX}{role}:{account_id}"


async def revoke_token(token_id: str | None, expires_at: int | None) -> bool:
    """
    Revoke a single token by its ``jti`` claim.

    Returns:
        True if the revocation was stored
    """
    client = redis_module.redis_client
    if client is None or not token_id:
        logger.warning("Token revocation skipped: Redis unavailable or token has no id")
        return False

    ttl = max(int((expires_at or 0) - time.time()), 1)
    await client.set(f"{REVOKED_TOKEN_PREFIX}{token_id}", "1", ex=ttl)
    return True


async def revoke_all_sessions(role: str, account_id: str) -> bool:
    """Revoke every token issued to an account up to now."""
    client = redis_module.redis_client
    if client is None:
        logger.warning(f"Cannot revoke sessions of {role}:{account_id}: Redis unavailable")
        return False

    # Refresh tokens are the longest-lived; older markers protect nothing
    ttl = settings.refresh_token_expire_days * 24 * 60 * 60
    await client.set(_valid_after_key(role, account_id), repr(time.time()), ex=ttl)
    logger.info(f"Revoked all sessions of {role}:{account_id}")
    return True


async def is_revoked(
    role: str,
    account_id: str,
    token_id: str | None,
    issued_at: int | float | None,
) -> bool:
    """True when the token was signed out or issued before a revoke-all."""
    client = redis_module.redis_client
    if client is None:
        return False

    try:
        if token_id and await client.exists(f"{REVOKED_TOKEN_PREFIX}{token_id}"):
            return True
        valid_after = await client.get(_valid_after_key(role, account_id))
    except Exception as e:
        logger.warning(f"Revocation check failed for {role}:{account_id}: {e}")
        return False

    if valid_after is None:
        return False
    return issued_at is None or float(issued_at) < float(valid_after)
