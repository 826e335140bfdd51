"""
Tests for the notification endpoints.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from kinderhub.core import rate_limit
from kinderhub.core.auth import get_current_user
from kinderhub.core.database import get_db
from kinderhub.core.exceptions import ForbiddenError
from kinderhub.main import app
from kinderhub.modules.notifications.schemas import NotificationCreated

ROUTER = "kinderhub.modules.notifications.router"


@pytest.fixture
def as_user(mock_db):
    async def override_get_db():
        yield mock_db

    def login(user):
        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = lambda: user
        return TestClient(app)

    rate_limit._memory_store.clear()
    yield login
    app.dependency_overrides.clear()
    rate_limit._memory_store.clear()


def test_unread_count(as_user, parent_user):
    client = as_user(parent_user)

    with patch(f"{ROUTER}.service.unread_count", new_callable=AsyncMock, return_value=4):
        response = client.get("/api/notifications/count/unread")

    assert response.status_code == 200
    assert response.json() == {"unread": 4}


def test_limit_above_fifty_rejected(as_user, parent_user):
    client = as_user(parent_user)

    response = client.get("/api/notifications", params={"limit": 51})

    assert response.status_code == 422


def test_only_admins_create(as_user, parent_user):
    client = as_user(parent_user)

    response = client.post(
        "/api/notifications",
        json={"category": "event", "title": "t", "body": "b", "broadcast": "all"},
    )

    assert response.status_code == 403


def test_admin_broadcast(as_user, admin_user, mock_db):
    client = as_user(admin_user)

    with patch(f"{ROUTER}.service.create_notifications", new_callable=AsyncMock) as create:
        create.return_value = NotificationCreated(count=12, pushed=5)
        response = client.post(
            "/api/notifications",
            json={"category": "event", "title": "t", "body": "b", "broadcast": "parent"},
        )

    assert response.status_code == 201
    assert response.json() == {"count": 12, "pushed": 5}
    assert create.call_args.args[1].broadcast == "parent"


def test_marking_someone_elses_notification(as_user, teacher_user):
    client = as_user(teacher_user)

    with patch(
        f"{ROUTER}.service.mark_read",
        new_callable=AsyncMock,
        side_effect=ForbiddenError("This notification belongs to another account."),
    ):
        response = client.put("/api/notifications/n-1/read")

    assert response.status_code == 403
    assert response.json()["error"] == "ACCESS_DENIED"
