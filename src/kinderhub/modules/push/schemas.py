"""
Push Schemas
"""

from pydantic import BaseModel, Field


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class SubscribeRequest(BaseModel):
    """Mirrors the browser's ``PushSubscription.toJSON()`` shape."""

    endpoint: str = Field(..., min_length=1)
    keys: SubscriptionKeys


class UnsubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=1)


class VapidKeyResponse(BaseModel):
    public_key: str | None
    enabled: bool
