"""Tests for the notification and scheduler HTTP endpoints."""

import httpx
import pytest

from notifier.api.deps import get_database
from notifier.api.routes import scheduler as scheduler_routes
from notifier.config import settings
from notifier.main import app
from notifier.notify.service import NotificationService


@pytest.fixture
async def client(session_factory):
    async def get_test_database():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_database] = get_test_database
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
async def user_with_notifications(seed, session_factory):
    user = await seed.user()
    async with session_factory() as db:
        service = NotificationService(db)
        welcome = await service.notify_consumer_welcome(user.id)
        await service.notify_gps_reminder(user.id)
        await db.commit()
    return user, welcome


@pytest.mark.asyncio
async def test_list_and_count(client, user_with_notifications):
    user, _ = user_with_notifications

    response = await client.get(f"/api/notifications/users/{user.id}")
    assert response.status_code == 200
    body = response.json()
    assert len(body) == 2
    assert {n["type"] for n in body} == {"CONSUMER_WELCOME", "GPS_REMINDER"}

    response = await client.get(f"/api/notifications/users/{user.id}/unread-count")
    assert response.json() == {"user_id": user.id, "unread": 2}


@pytest.mark.asyncio
async def test_mark_read_and_delete(client, user_with_notifications):
    user, welcome = user_with_notifications

    response = await client.patch(f"/api/notifications/users/{user.id}/{welcome.id}/read")
    assert response.status_code == 200
    assert response.json()["read"] is True

    response = await client.patch(f"/api/notifications/users/{user.id}/mark-all-read")
    assert response.json()["updated"] == 1

    response = await client.delete(f"/api/notifications/users/{user.id}/{welcome.id}")
    assert response.status_code == 200

    response = await client.delete(f"/api/notifications/users/{user.id}/{welcome.id}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_notification_of_other_user_is_not_found(client, seed, user_with_notifications):
    _, welcome = user_with_notifications
    stranger = await seed.user()

    response = await client.patch(f"/api/notifications/users/{stranger.id}/{welcome.id}/read")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_trigger_requires_admin_key(client, monkeypatch):
    monkeypatch.setattr(settings, "admin_api_key", "secret")

    response = await client.post("/api/scheduler/trigger", headers={"X-Admin-API-Key": "wrong"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_trigger_without_configured_key(client, monkeypatch):
    monkeypatch.setattr(settings, "admin_api_key", "")

    response = await client.post("/api/scheduler/trigger", headers={"X-Admin-API-Key": "any"})
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_trigger_runs_scheduled_notifications(client, monkeypatch):
    monkeypatch.setattr(settings, "admin_api_key", "secret")

    async def fake_trigger():
        return {"trigger": "manual", "status": "completed", "results": {}}

    monkeypatch.setattr(
        scheduler_routes.task_runner, "trigger_scheduled_notifications", fake_trigger
    )

    response = await client.post("/api/scheduler/trigger", headers={"X-Admin-API-Key": "secret"})

    assert response.status_code == 200
    assert response.json()["trigger"] == "manual"
