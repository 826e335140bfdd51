"""
Password Reset Repository
"""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kinderhub.modules.auth.models import PasswordResetToken


async def create_reset_token(
    db: AsyncSession,
    account_id: str,
    account_role: str,
    token_hash: str,
    expires_at: datetime,
) -> PasswordResetToken:
    reset = PasswordResetToken(
        account_id=account_id,
        account_role=account_role,
        token_hash=token_hash,
        expires_at=expires_at,
    )
    db.add(reset)
    await db.flush()
    return reset


async def get_usable_reset_token(
    db: AsyncSession,
    token_hash: str,
    now: datetime,
) -> PasswordResetToken | None:
    """Unused, unexpired token with this digest; locked for the redeeming transaction."""
    result = await db.execute(
        select(PasswordResetToken)
        .where(
            PasswordResetToken.token_hash == token_hash,
            PasswordResetToken.used_at.is_(None),
            PasswordResetToken.expires_at > now,
        )
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def consume_reset_tokens(
    db: AsyncSession,
    account_id: str,
    account_role: str,
    now: datetime,
) -> None:
    """Mark every outstanding token of the account as used."""
    await db.execute(
        update(PasswordResetToken)
        .where(
            PasswordResetToken.account_id == account_id,
            PasswordResetToken.account_role == account_role,
            PasswordResetToken.used_at.is_(None),
        )
        .values(used_at=now)
    )
