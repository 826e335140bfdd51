"""
Shared fixtures.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kinderhub.core import redis as redis_module
from kinderhub.core.auth import ROLE_ADMIN, ROLE_PARENT, ROLE_TEACHER, CurrentUser
from kinderhub.core.config import settings
from kinderhub.modules.billing.models import (
    BillingCycle,
    PaymentGateway,
    Subscription,
    SubscriptionStatus,
    SubscriptionTransaction,
    TransactionStatus,
)


BILLING_NOW = datetime(2026, 3, 10, 0, 0, tzinfo=UTC)
USER_ID = "11111111-1111-1111-1111-111111111111"


def build_subscription(**fields) -> Subscription:
    values = {
        "id": "44444444-4444-4444-4444-444444444444",
        "user_id": USER_ID,
        "plan_id": "family",
        "plan_name": "Family Plan",
        "price_monthly": Decimal("199.00"),
        "price_annual": Decimal("1990.00"),
        "currency": "ZAR",
        "billing_cycle": BillingCycle.MONTHLY,
        "status": SubscriptionStatus.ACTIVE,
        "gateway": PaymentGateway.STRIPE,
        "start_date": BILLING_NOW - timedelta(days=29),
        "end_date": BILLING_NOW + timedelta(hours=12),
        "next_billing_date": BILLING_NOW + timedelta(hours=12),
        "auto_renew": True,
        "stripe_customer_id": "cus_123",
        "stripe_payment_method_id": "pm_123",
        "details": {},
        "created_at": BILLING_NOW - timedelta(days=29),
    }
    values.update(fields)
    return Subscription(**values)


def build_transaction(**fields) -> SubscriptionTransaction:
    values = {
        "id": "55555555-5555-5555-5555-555555555555",
        "subscription_id": "44444444-4444-4444-4444-444444444444",
        "user_id": USER_ID,
        "gateway": PaymentGateway.PAYFAST,
        "reference": "SUB_1_abc",
        "amount": Decimal("199.00"),
        "currency": "ZAR",
        "status": TransactionStatus.PENDING,
        "is_renewal": False,
        "gateway_response": {},
        "created_at": BILLING_NOW,
    }
    values.update(fields)
    return SubscriptionTransaction(**values)


@pytest.fixture
def make_subscription():
    return build_subscription


@pytest.fixture
def make_transaction():
    return build_transaction


@pytest.fixture
def subscription():
    return build_subscription()


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Keep bcrypt cheap in tests."""
    monkeypatch.setattr(settings, "bcrypt_rounds", 4)


@pytest.fixture
def mock_db():
    """Create a mock database session."""
    db = AsyncMock()
    db.commit = AsyncMock()
    db.flush = AsyncMock()
    db.refresh = AsyncMock()
    db.rollback = AsyncMock()
    db.get = AsyncMock()
    db.execute = AsyncMock()
    db.scalar = AsyncMock()
    db.add = MagicMock()
    # Supports ``async with db.begin_nested():``
    db.begin_nested = MagicMock()
    return db


@pytest.fixture
def parent_user():
    return CurrentUser(
        id="11111111-1111-1111-1111-111111111111",
        email="parent@test.com",
        role=ROLE_PARENT,
        name="Pat Parent",
    )


@pytest.fixture
def teacher_user():
    return CurrentUser(
        id="22222222-2222-2222-2222-222222222222",
        email="teacher@test.com",
        role=ROLE_TEACHER,
        name="Terry Teacher",
    )


@pytest.fixture
def admin_user():
    return CurrentUser(
        id="33333333-3333-3333-3333-333333333333",
        email="admin@test.com",
        role=ROLE_ADMIN,
        name="Ada Admin",
    )


@pytest.fixture
def session_redis():
    """In-memory Redis stand-in for session revocation keys."""
    store: dict[str, str] = {}

    async def set_value(key, value, ex=None):
        store[key] = value
        return True

    async def exists(key):
        return int(key in store)

    async def get(key):
        return store.get(key)

    client = AsyncMock()
    client.store = store
    client.set = AsyncMock(side_effect=set_value)
    client.exists = AsyncMock(side_effect=exists)
    client.get = AsyncMock(side_effect=get)
    with patch.object(redis_module, "redis_client", client):
        yield client
