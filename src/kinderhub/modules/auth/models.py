"""
Password Reset Models

Only a SHA-256 digest of each reset token is stored; the token itself
exists solely in the e-mailed link.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from kinderhub.modules.shared import BaseModel


class PasswordResetToken(BaseModel):
    """A single-use password reset token for a parent or staff account."""

    __tablename__ = "password_reset_tokens"

    account_id: Mapped[str] = mapped_column(UUID(as_uuid=False), index=True, nullable=False)
    account_role: Mapped[str] = mapped_column(String(20), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PasswordResetToken(id={self.id}, account={self.account_role}:{self.account_id})>"
