# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.api import api_router
from app.api.dependencies import get_db
from app.core.exceptions import RealtimeError, realtime_exception_handler
from app.services.change_feed.watcher import WatcherState
from app.services.notification.dispatcher import NotificationDraft, NotificationService


@pytest.fixture
def app(session_factory):
    app = FastAPI()
    app.add_exception_handler(RealtimeError, realtime_exception_handler)
    app.include_router(api_router, prefix="/api")

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def notifications(db):
    service = NotificationService()
    first = service.create_notification(
        db, NotificationDraft(type="task", recipients=[1, 2], content="First")
    )
    second = service.create_notification(
        db, NotificationDraft(type="system", recipients=[1], content="Second")
    )
    return first, second


@pytest.mark.integration
class TestNotificationEndpoints:
    def test_list_is_newest_first(self, client, notifications):
        response = client.get("/api/notifications", params={"user_id": 1})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert [n["content"] for n in body["items"]] == ["Second", "First"]

    def test_unread_count_and_mark_read(self, client, notifications):
        first, _ = notifications

        marked = client.post(f"/api/notifications/{first['id']}/read", params={"user_id": 1})
        count = client.get("/api/notifications/unread-count", params={"user_id": 1})

        assert marked.status_code == 200
        assert marked.json()["read"] == [1]
        assert count.json() == {"count": 1}

    def test_unread_only(self, client, notifications):
        first, _ = notifications
        client.post(f"/api/notifications/{first['id']}/read", params={"user_id": 2})

        response = client.get(
            "/api/notifications", params={"user_id": 2, "unread_only": True}
        )

        assert response.json() == {"total": 0, "items": []}

    def test_mark_all_read(self, client, notifications):
        response = client.post("/api/notifications/read-all", params={"user_id": 1})

        assert response.json() == {"count": 2}

    def test_missing_notification_is_404(self, client):
        response = client.post("/api/notifications/999/read", params={"user_id": 1})

        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_user_id_is_required(self, client):
        assert client.get("/api/notifications").status_code == 422


@pytest.mark.integration
class TestServiceEndpoints:
    def test_presence_without_services_is_503(self, client):
        assert client.get("/api/presence/online").status_code == 503

    def test_presence_lists_online_users(self, app, client):
        services = MagicMock()
        services.presence.online_users.return_value = [3, 5]
        app.state.services = services

        assert client.get("/api/presence/online").json() == {"total": 2, "users": [3, 5]}

    def test_health_reports_change_feed_states(self, app, client):
        services = MagicMock()
        services.watcher.states = {"tasks": WatcherState.WATCHING}
        app.state.services = services

        body = client.get("/api/health").json()

        assert body["status"] == "ok"
        assert body["changeFeed"] == {"tasks": "watching"}
        assert body["scheduler"] == "stopped"
        assert "ai_service" in body["circuitBreakers"]
