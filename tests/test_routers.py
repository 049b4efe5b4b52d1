"""Tests for the HTTP surface: identity, status codes and error mapping."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from eduspace_realtime.main import app
from eduspace_realtime.services.conversation_registry import ConversationRegistry
from eduspace_realtime.services.message_stream import MessageService
from eduspace_realtime.services.notification_center import NotificationCenter
from eduspace_realtime.services.notification_engine import NotificationFanOut
from eduspace_realtime.utils.change_feed import BroadcastChannel
from eduspace_realtime.utils.dependencies import (
    get_conversation_registry,
    get_fan_out,
    get_message_repository,
    get_message_service,
    get_notification_center,
    get_notification_repository,
)
from eduspace_realtime.utils.realtime_bus import LocalBus


@pytest.fixture
def client(offline_repos):
    registry = ConversationRegistry(offline_repos.conversations, offline_repos.profiles)
    engine = NotificationFanOut(offline_repos.notifications, offline_repos.profiles)
    service = MessageService(offline_repos.messages, registry, BroadcastChannel(LocalBus()), engine=engine, profiles=offline_repos.profiles)
    center = NotificationCenter(offline_repos.notifications)

    app.dependency_overrides[get_conversation_registry] = lambda: registry
    app.dependency_overrides[get_fan_out] = lambda: engine
    app.dependency_overrides[get_message_service] = lambda: service
    app.dependency_overrides[get_notification_center] = lambda: center
    app.dependency_overrides[get_message_repository] = lambda: offline_repos.messages
    app.dependency_overrides[get_notification_repository] = lambda: offline_repos.notifications
    yield TestClient(app)
    app.dependency_overrides.clear()


def as_user(user_id: str) -> dict:
    return {"X-User-Id": user_id}


class TestIdentity:

    def test_missing_user_header_is_unauthorized(self, client) -> None:
        response = client.post("/messages", json={"receiver_id": "u2", "content": "Hi"})

        assert response.status_code == 401


class TestConversationRoutes:

    def test_resolve_is_stable(self, client) -> None:
        first = client.post("/conversations/resolve", json={"other_user_id": "u2"}, headers=as_user("u1"))
        second = client.post("/conversations/resolve", json={"other_user_id": "u1"}, headers=as_user("u2"))

        assert first.status_code == 200
        assert first.json()["conversation_id"] == second.json()["conversation_id"]

    def test_resolve_with_self_rejected(self, client) -> None:
        response = client.post("/conversations/resolve", json={"other_user_id": "u1"}, headers=as_user("u1"))

        assert response.status_code == 400

    def test_list_conversations(self, client) -> None:
        client.post("/messages", json={"receiver_id": "u2", "content": "Hi"}, headers=as_user("u1"))

        response = client.get("/conversations", headers=as_user("u2"))

        assert response.status_code == 200
        items = response.json()["items"]
        assert len(items) == 1
        assert items[0]["last_message"] == "Hi"

    def test_list_carries_other_user_details(self, client, offline_repos) -> None:
        offline_repos.profiles.names["u1"] = "Minh Tran"
        offline_repos.profiles.roles["u1"] = "student"
        client.post("/messages", json={"receiver_id": "u2", "content": "Hi"}, headers=as_user("u1"))

        [item] = client.get("/conversations", headers=as_user("u2")).json()["items"]

        assert item["other_user_id"] == "u1"
        assert item["other_user_name"] == "Minh Tran"
        assert item["other_user_role"] == "student"
        assert item["other_user_avatar"] is None

    def test_conversation_history(self, client) -> None:
        sent = client.post("/messages", json={"receiver_id": "u2", "content": "Hi"}, headers=as_user("u1")).json()

        history = client.get(f"/conversations/{sent['conversation_id']}/messages", headers=as_user("u2"))
        outsider = client.get(f"/conversations/{sent['conversation_id']}/messages", headers=as_user("u3"))

        assert history.status_code == 200
        assert [m["content"] for m in history.json()["items"]] == ["Hi"]
        assert outsider.status_code == 404


class TestMessageRoutes:

    def test_send_returns_created_message(self, client) -> None:
        response = client.post("/messages", json={"receiver_id": "u2", "content": " Hello "}, headers=as_user("u1"))

        assert response.status_code == 201
        body = response.json()
        assert body["content"] == "Hello"
        assert body["sender_id"] == "u1"
        assert body["is_read"] is False

    def test_blank_message_is_bad_request(self, client) -> None:
        response = client.post("/messages", json={"receiver_id": "u2", "content": "  "}, headers=as_user("u1"))

        assert response.status_code == 400

    def test_store_failure_is_bad_gateway(self, client, offline_repos) -> None:
        offline_repos.messages.fail_saves = 1

        response = client.post("/messages", json={"receiver_id": "u2", "content": "Hi"}, headers=as_user("u1"))

        assert response.status_code == 502

    def test_send_notifies_receiver(self, client, offline_repos) -> None:
        client.post("/messages", json={"receiver_id": "u2", "content": "Hi"}, headers=as_user("u1"))

        assert [r["recipient_id"] for r in offline_repos.notifications.rows] == ["u2"]

    def test_mark_read(self, client) -> None:
        sent = client.post("/messages", json={"receiver_id": "u2", "content": "Hi"}, headers=as_user("u1")).json()

        response = client.post("/messages/mark_read", json={"conversation_id": sent["conversation_id"]}, headers=as_user("u2"))
        outsider = client.post("/messages/mark_read", json={"conversation_id": sent["conversation_id"]}, headers=as_user("u3"))

        assert response.json() == {"updated": 1}
        assert outsider.status_code == 404

    def test_delete_only_by_sender(self, client, offline_repos) -> None:
        sent = client.post("/messages", json={"receiver_id": "u2", "content": "Hi"}, headers=as_user("u1")).json()

        forbidden = client.delete(f"/messages/{sent['id']}", headers=as_user("u2"))
        assert forbidden.status_code == 403
        assert len(offline_repos.messages.rows) == 1

        deleted = client.delete(f"/messages/{sent['id']}", headers=as_user("u1"))
        assert deleted.status_code == 204

        missing = client.delete(f"/messages/{sent['id']}", headers=as_user("u1"))
        assert missing.status_code == 404

    def test_typing_requires_participation(self, client) -> None:
        cid = client.post("/conversations/resolve", json={"other_user_id": "u2"}, headers=as_user("u1")).json()["conversation_id"]

        assert client.post("/messages/typing", json={"conversation_id": cid}, headers=as_user("u1")).status_code == 202
        assert client.post("/messages/typing", json={"conversation_id": cid}, headers=as_user("u3")).status_code == 404


class TestNotificationRoutes:

    def fan_out(self, client, recipients, **extra):
        body = {
            "event": {"type": "assignment", "assignment_id": "a1", "assignment_title": "Essay", "class_id": "k1"},
            "recipient_ids": recipients,
            **extra,
        }
        return client.post("/notifications/fan_out", json=body, headers=as_user("lecturer"))

    def test_fan_out_reports_counts(self, client, offline_repos) -> None:
        offline_repos.profiles.disabled = {"s3"}

        response = self.fan_out(client, ["s1", "s2", "s3"])

        assert response.status_code == 200
        body = response.json()
        assert body["delivered"] == 2
        assert body["skipped"] == 1

    def test_fan_out_with_idempotency_key(self, client) -> None:
        self.fan_out(client, ["s1"], idempotency_key="assignment:a1")

        body = self.fan_out(client, ["s1"], idempotency_key="assignment:a1").json()

        assert body["delivered"] == 0
        assert body["duplicates"] == 1

    def test_fan_out_unknown_event_type(self, client) -> None:
        response = client.post(
            "/notifications/fan_out",
            json={"event": {"type": "reminder"}, "recipient_ids": ["s1"]},
            headers=as_user("lecturer"),
        )

        assert response.status_code == 422

    def test_fan_out_preference_store_down(self, client, offline_repos) -> None:
        offline_repos.profiles.get_disabled_user_ids = AsyncMock(side_effect=PyMongoError("down"))

        response = self.fan_out(client, ["s1"])

        assert response.status_code == 502
        assert offline_repos.notifications.rows == []

    def test_list_read_open_clear(self, client) -> None:
        self.fan_out(client, ["s1"])

        items = client.get("/notifications", headers=as_user("s1")).json()["items"]
        assert len(items) == 1
        notification_id = items[0]["id"]

        opened = client.post(f"/notifications/{notification_id}/open", params={"role": "student"}, headers=as_user("s1"))
        assert opened.json() == {"type": "assignment", "related_id": "a1", "class_id": "k1", "role": "student"}

        again = client.post(f"/notifications/{notification_id}/read", headers=as_user("s1"))
        assert again.json() == {"updated": 0}

        cleared = client.delete("/notifications", headers=as_user("s1"))
        assert cleared.json() == {"deleted": 1}

    def test_someone_elses_notification_not_found(self, client) -> None:
        self.fan_out(client, ["s1"])
        notification_id = client.get("/notifications", headers=as_user("s1")).json()["items"][0]["id"]

        assert client.post(f"/notifications/{notification_id}/read", headers=as_user("s2")).status_code == 404
        assert client.post(f"/notifications/{notification_id}/open", headers=as_user("s2")).status_code == 404

    def test_read_all(self, client) -> None:
        self.fan_out(client, ["s1"])

        assert client.post("/notifications/read_all", headers=as_user("s1")).json() == {"updated": 1}

    def test_unread_counts(self, client) -> None:
        client.post("/messages", json={"receiver_id": "u2", "content": "Hi"}, headers=as_user("u1"))

        assert client.get("/messages/unread", headers=as_user("u2")).json() == {"unread": 1}
        assert client.get("/notifications/unread_count", headers=as_user("u2")).json() == {"notifications": 1, "messages": 1}
