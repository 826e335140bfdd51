"""
Authentication Service

Login for parents, teachers and admins, parent registration, token refresh,
logout and password changes and resets.

Logout and password resets revoke tokens through ``core.sessions``. A reset
link is e-mailed for any active account; the response never reveals whether
the address is registered.

Passwords stored in the legacy PBKDF2 format are re-hashed with bcrypt on
the first successful login, so the legacy format drains out over time.
"""

import hashlib
import logging
import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.core import email, sessions
from kinderhub.core.auth import CurrentUser
from kinderhub.core.config import settings
from kinderhub.core.exceptions import (
    AccountInactiveError,
    ConflictError,
    InvalidCredentialsError,
    ServiceError,
    ValidationError,
)
from kinderhub.core.security import (
    REFRESH_TOKEN_TYPE,
    create_access_token,
    create_refresh_token,
    hash_password,
    needs_rehash,
    token_codec,
    verify_password,
)
from kinderhub.modules.auth import repository
from kinderhub.modules.users import repository as users_repository
from kinderhub.modules.users.models import User
from kinderhub.modules.users.repository import Account, UserRepository

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
RESET_TOKEN_LIFETIME = timedelta(hours=1)


class InvalidRefreshTokenError(ServiceError):
    def __init__(self):
        super().__init__(
            message="Invalid or expired refresh token.",
            error_code="INVALID_REFRESH_TOKEN",
            status_code=401,
        )


class InvalidResetTokenError(ServiceError):
    def __init__(self):
        super().__init__(
            message="Invalid or expired reset token.",
            error_code="INVALID_RESET_TOKEN",
            status_code=400,
        )


def _role_of(account: Account) -> str:
    return account.role.value


def check_password_strength(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", "WEAK_PASSWORD"
        )


def issue_tokens(account: Account) -> dict[str, str]:
    """Create an access/refresh token pair for an account."""
    role = _role_of(account)
    claims = {
        "email": account.email,
        "role": role,
        "name": account.full_name,
    }
    return {
        "access_token": create_access_token(subject=str(account.id), additional_claims=claims),
        "refresh_token": create_refresh_token(subject=str(account.id), additional_claims={"role": role}),
    }


async def authenticate(db: AsyncSession, email: str, password: str, role: str) -> Account:
    """
    Check credentials for the given role.

    Raises:
        InvalidCredentialsError: Unknown email or wrong password
        AccountInactiveError: Account is deactivated
    """
    account = await users_repository.get_account_by_email(db, role, email)

    if account is None:
        logger.warning(f"Login attempt for non-existent {role} account: {email}")
        raise InvalidCredentialsError()

    if not verify_password(password, account.password_hash):
        logger.warning(f"Invalid password for {role} account: {email}")
        raise InvalidCredentialsError()

    if not account.is_active:
        logger.warning(f"Login attempt for inactive account: {email}")
        raise AccountInactiveError()

    if needs_rehash(account.password_hash):
        await users_repository.update_password_hash(db, account, hash_password(password))
        logger.info(f"Migrated password hash to bcrypt for {role} account {account.id}")

    await users_repository.record_login(db, account)
    logger.info(f"User logged in: {account.email} (role: {role})")
    return account


async def register_parent(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: str | None = None,
    address: str | None = None,
) -> User:
    check_password_strength(password)

    if await UserRepository.email_exists(db, email):
        raise ConflictError("An account with this email already exists.", "EMAIL_EXISTS")

    return await UserRepository.create(
        db,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        address=address,
    )


async def refresh_access_token(db: AsyncSession, refresh_token: str) -> dict[str, str]:
    """Exchange a refresh token for a new token pair."""
    payload = token_codec.verify(refresh_token, expected_type=REFRESH_TOKEN_TYPE)
    if payload is None or not payload.get("sub") or not payload.get("role"):
        raise InvalidRefreshTokenError()

    if await sessions.is_revoked(
        payload["role"], payload["sub"], payload.get("jti"), payload.get("iat")
    ):
        logger.warning(f"Revoked refresh token presented by {payload['role']}:{payload['sub']}")
        raise InvalidRefreshTokenError()

    account = await users_repository.get_account(db, payload["role"], payload["sub"])
    if account is None or not account.is_active:
        raise InvalidRefreshTokenError()

    return issue_tokens(account)


async def change_password(
    db: AsyncSession,
    account: Account,
    current_password: str,
    new_password: str,
) -> None:
    if not verify_password(current_password, account.password_hash):
        raise InvalidCredentialsError()

    check_password_strength(new_password)

    await users_repository.update_password_hash(db, account, hash_password(new_password))
    logger.info(f"Password changed for account {account.id}")


async def logout(user: CurrentUser, refresh_token: str | None = None) -> None:
    """Revoke the caller's access token and, if given, their refresh token."""
    await sessions.revoke_token(user.token_id, user.expires_at)

    if refresh_token:
        payload = token_codec.verify(refresh_token, expected_type=REFRESH_TOKEN_TYPE)
        if payload is not None and payload.get("sub") == user.id:
            await sessions.revoke_token(payload.get("jti"), payload.get("exp"))

    logger.info(f"Logged out {user.role}:{user.id}")


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


async def request_password_reset(db: AsyncSession, email_address: str, role: str) -> None:
    """E-mail a reset link if an active account with this address exists."""
    account = await users_repository.get_account_by_email(db, role, email_address)
    if account is None or not account.is_active:
        logger.info(f"Password reset requested for unknown or inactive {role} account")
        return

    token = secrets.token_urlsafe(32)
    await repository.create_reset_token(
        db,
        account_id=str(account.id),
        account_role=role,
        token_hash=_digest(token),
        expires_at=datetime.now(UTC) + RESET_TOKEN_LIFETIME,
    )

    await email.send_password_reset(
        to_email=account.email,
        name=account.full_name,
        reset_url=f"{settings.frontend_url}/reset-password?token={token}",
        expires_minutes=int(RESET_TOKEN_LIFETIME.total_seconds() // 60),
    )
    logger.info(f"Password reset link issued for {role} account {account.id}")


async def reset_password(db: AsyncSession, token: str, new_password: str) -> None:
    """
    Redeem a reset token.

    Every outstanding reset token of the account is consumed and all of its
    sessions are revoked.

    Raises:
        ValidationError: New password too short
        InvalidResetTokenError: Unknown, used or expired token
    """
    check_password_strength(new_password)

    now = datetime.now(UTC)
    reset = await repository.get_usable_reset_token(db, _digest(token), now)
    if reset is None:
        raise InvalidResetTokenError()

    account = await users_repository.get_account(db, reset.account_role, reset.account_id)
    if account is None or not account.is_active:
        raise InvalidResetTokenError()

    await users_repository.update_password_hash(db, account, hash_password(new_password))
    await repository.consume_reset_tokens(db, reset.account_id, reset.account_role, now)
    await sessions.revoke_all_sessions(reset.account_role, reset.account_id)
    logger.info(f"Password reset completed for {reset.account_role} account {reset.account_id}")
