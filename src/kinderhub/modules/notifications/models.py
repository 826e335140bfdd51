"""
In-App Notification Model

One row per recipient. Admin broadcasts fan out into a row for each
account.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from kinderhub.modules.shared import BaseModel, pg_enum


class NotificationCategory(str, Enum):
    MESSAGE = "message"
    EVENT = "event"
    SYSTEM = "system"
    ALERT = "alert"


class Notification(BaseModel):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_recipient", "recipient_id", "recipient_type", "created_at"),
    )

    recipient_id: Mapped[str] = mapped_column(UUID(as_uuid=False), nullable=False)
    recipient_type: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[NotificationCategory] = mapped_column(
        pg_enum(NotificationCategory, "notification_category"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, default=dict, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, recipient={self.recipient_type}:{self.recipient_id})>"
