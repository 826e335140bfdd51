"""Notification schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kinderhub.modules.notifications.models import NotificationCategory


class Recipient(BaseModel):
    id: str
    type: Literal["parent", "teacher", "admin"]


class NotificationCreate(BaseModel):
    """
    Admin-issued notification.

    Exactly one target: explicit ``recipients`` or a ``broadcast`` to every
    active account of a role ("all" for everyone).
    """

    category: NotificationCategory
    title: str = Field(min_length=1, max_length=200)
    body: str = Field(min_length=1, max_length=1000)
    data: dict[str, Any] = Field(default_factory=dict)
    recipients: list[Recipient] = Field(default_factory=list, max_length=500)
    broadcast: Literal["parent", "teacher", "admin", "all"] | None = None

    @model_validator(mode="after")
    def one_target(self) -> "NotificationCreate":
        if bool(self.recipients) == bool(self.broadcast):
            raise ValueError("Specify either recipients or broadcast.")
        self.title = self.title.strip()
        self.body = self.body.strip()
        return self


class NotificationCreated(BaseModel):
    count: int
    pushed: int


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    category: NotificationCategory
    title: str
    body: str
    data: dict[str, Any] = {}
    read_at: datetime | None = None
    created_at: datetime | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    pagination: Pagination


class UnreadCountResponse(BaseModel):
    unread: int


class CategorySummary(BaseModel):
    total: int
    unread: int


class ReadAllResponse(BaseModel):
    updated: int
