"""
Authentication and Authorization Module

FastAPI dependencies that validate bearer tokens and enforce roles.
Tokens are verified through the ``TokenCodec`` in security.py.

Roles:
- parent: accounts in the ``users`` table
- teacher, admin: accounts in the ``staff`` table

SECURITY NOTE:
- Development tokens (``dev-admin``, ``dev-teacher``, ``dev-parent``) are
  accepted ONLY when PYTHON_ENV=development
- Production environments MUST set PYTHON_ENV=production
"""

import logging
import os
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from kinderhub.core import sessions
from kinderhub.core.config import settings
from kinderhub.core.security import ACCESS_TOKEN_TYPE, token_codec

logger = logging.getLogger(__name__)

ROLE_PARENT = "parent"
ROLE_TEACHER = "teacher"
ROLE_ADMIN = "admin"
ALL_ROLES = (ROLE_PARENT, ROLE_TEACHER, ROLE_ADMIN)

security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token for authentication",
)


@dataclass
class CurrentUser:
    """
    The authenticated caller, populated from token claims.

    Attributes:
        id: Account id (UUID string) in ``users`` or ``staff``
        email: Account email
        role: One of parent, teacher, admin
        name: Display name
        token_id: ``jti`` of the presented token, used to sign it out
        issued_at: ``iat`` claim (epoch seconds)
        expires_at: ``exp`` claim (epoch seconds)
    """

    id: str
    email: str
    role: str
    name: str | None = None
    token_id: str | None = None
    issued_at: int | None = None
    expires_at: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_teacher(self) -> bool:
        return self.role == ROLE_TEACHER

    @property
    def is_parent(self) -> bool:
        return self.role == ROLE_PARENT

    def __str__(self) -> str:
        return f"CurrentUser(id={self.id}, email={self.email}, role={self.role})"


def _is_dev_mode_safe() -> bool:
    """
    Check if development tokens may be accepted.

    Requires settings.is_development, not settings.is_production, and a
    PYTHON_ENV environment variable that is neither production nor staging.
    """
    env_var = os.getenv("PYTHON_ENV", "").lower()

    is_safe = (
        settings.is_development
        and not settings.is_production
        and env_var not in ("production", "staging")
    )

    if is_safe:
        logger.warning(
            "SECURITY: Development auth mode is ENABLED. This MUST NOT be used in production!"
        )

    return is_safe


_DEVELOPMENT_MODE = _is_dev_mode_safe()

_DEV_USERS = {
    "dev-admin": CurrentUser(
        id="00000000-0000-0000-0000-000000000001",
        email="admin@kinderhub.dev",
        role=ROLE_ADMIN,
        name="Development Admin",
    ),
    "dev-teacher": CurrentUser(
        id="00000000-0000-0000-0000-000000000002",
        email="teacher@kinderhub.dev",
        role=ROLE_TEACHER,
        name="Development Teacher",
    ),
    "dev-parent": CurrentUser(
        id="00000000-0000-0000-0000-000000000003",
        email="parent@kinderhub.dev",
        role=ROLE_PARENT,
        name="Development Parent",
    ),
}


def _unauthorized(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def validate_access_token(token: str) -> CurrentUser:
    """
    Validate an access token and extract the caller.

    Args:
        token: Raw bearer token

    Returns:
        CurrentUser built from the token claims

    Raises:
        HTTPException 401: If the token is invalid, expired, of the wrong
            type, or missing required claims
    """
    if _DEVELOPMENT_MODE and token in _DEV_USERS:
        logger.debug("Development mode: Using test token")
        return _DEV_USERS[token]

    payload = token_codec.verify(token)

    if payload is None:
        logger.warning("Invalid or expired JWT token")
        raise _unauthorized("INVALID_TOKEN", "Invalid or expired authentication token.")

    if payload.get("type", ACCESS_TOKEN_TYPE) != ACCESS_TOKEN_TYPE:
        logger.warning(f"Invalid token type: {payload.get('type')}")
        raise _unauthorized("INVALID_TOKEN_TYPE", "This endpoint requires an access token.")

    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or role not in ALL_ROLES:
        logger.warning(f"Invalid token claims: sub={user_id!r} role={role!r}")
        raise _unauthorized("INVALID_TOKEN_CLAIMS", "Token contains invalid or missing claims.")

    return CurrentUser(
        id=str(user_id),
        email=payload.get("email", ""),
        role=role,
        name=payload.get("name"),
        token_id=payload.get("jti"),
        issued_at=payload.get("iat"),
        expires_at=payload.get("exp"),
    )


async def _ensure_not_revoked(user: CurrentUser) -> None:
    if user.issued_at is None:
        # development tokens
        return
    if await sessions.is_revoked(user.role, user.id, user.token_id, user.issued_at):
        logger.warning(f"Revoked token presented by {user.role}:{user.id}")
        raise _unauthorized("TOKEN_REVOKED", "This session has been signed out.")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """FastAPI dependency returning the authenticated caller."""
    user = validate_access_token(credentials.credentials)
    await _ensure_not_revoked(user)
    logger.debug(f"Authenticated user: {user.id} ({user.role})")
    return user


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(HTTPBearer(auto_error=False)),
) -> CurrentUser | None:
    """Return the caller if a valid token was sent, otherwise None."""
    if not credentials:
        return None

    try:
        user = validate_access_token(credentials.credentials)
        await _ensure_not_revoked(user)
    except HTTPException:
        return None
    return user


def require_roles(*roles: str) -> Callable[..., Coroutine[Any, Any, CurrentUser]]:
    """
    Build a dependency that only admits callers with one of ``roles``.

    Usage:
        @router.post("/classes")
        async def create_class(
            user: CurrentUser = Depends(require_roles("admin")),
        ): ...
    """

    async def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            logger.warning(
                f"Access denied: user {user.id} has role '{user.role}', requires one of {roles}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "INSUFFICIENT_ROLE",
                    "message": f"This endpoint requires one of the roles: {', '.join(roles)}.",
                },
            )
        return user

    return dependency


get_current_admin = require_roles(ROLE_ADMIN)


__all__ = [
    "ROLE_ADMIN",
    "ROLE_PARENT",
    "ROLE_TEACHER",
    "CurrentUser",
    "get_current_admin",
    "get_current_user",
    "get_optional_user",
    "require_roles",
    "validate_access_token",
]
