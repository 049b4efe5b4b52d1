"""Pytest configuration and shared fixtures.

Services are exercised against in-memory repositories that keep the same
method surface as the Mongo-backed ones and emit the same change events, so
live subscribers can be tested without a database. The realtime bus is the
in-process ``LocalBus``; a publish returns only after every subscriber has
handled it, which keeps the live tests deterministic.
"""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional, Set

import pytest
import pytest_asyncio
from bson import ObjectId
from pymongo.errors import PyMongoError

from eduspace_realtime.repositories.conversation_repository import pair_key
from eduspace_realtime.utils.change_feed import BroadcastChannel, ChangeEvent, ChangeFeed
from eduspace_realtime.utils.realtime_bus import LocalBus


# =============================================================================
# In-memory repositories
# =============================================================================


class FakeConversationRepository:

    def __init__(self, feed: Optional[ChangeFeed] = None) -> None:
        self._feed = feed
        self.rows: Dict[str, Dict[str, Any]] = {}

    async def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        row = self.rows.get(conversation_id)
        return dict(row) if row else None

    async def find_by_pair(self, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
        key = pair_key(user_a, user_b)
        for row in self.rows.values():
            if row["pair_key"] == key:
                return dict(row)
        return None

    async def get_or_create_one_to_one(self, user_a: str, user_b: str) -> Dict[str, Any]:
        existing = await self.find_by_pair(user_a, user_b)
        if existing:
            return existing
        now = datetime.now(timezone.utc)
        doc = {
            "_id": str(ObjectId()),
            "participant_1": user_a,
            "participant_2": user_b,
            "pair_key": pair_key(user_a, user_b),
            "participants": sorted([user_a, user_b]),
            "last_message": None,
            "last_message_at": now,
            "created_at": now,
        }
        self.rows[doc["_id"]] = doc
        if self._feed is not None:
            await self._feed.emit(ChangeEvent("conversations", "insert", dict(doc)))
        return dict(doc)

    async def update_on_new_message(self, conversation_id: str, preview: str) -> None:
        row = self.rows.get(conversation_id)
        if row is None:
            return
        row["last_message"] = preview
        row["last_message_at"] = datetime.now(timezone.utc)
        if self._feed is not None:
            await self._feed.emit(ChangeEvent("conversations", "update", dict(row)))

    async def list_for_user(self, user_id: str, limit: int = 20, cursor: Optional[str] = None):
        rows = [dict(r) for r in self.rows.values() if user_id in r["participants"]]
        rows.sort(key=lambda r: r["last_message_at"], reverse=True)
        return rows[:limit], None


class FakeMessageRepository:

    def __init__(self, feed: Optional[ChangeFeed] = None) -> None:
        self._feed = feed
        self.rows: List[Dict[str, Any]] = []
        self.fail_saves = 0

    async def save_message(self, conversation_id, sender_id, receiver_id, content, attachment=None) -> Dict[str, Any]:
        if self.fail_saves:
            self.fail_saves -= 1
            raise PyMongoError("write failed")
        doc = {
            "_id": str(ObjectId()),
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": content,
            "attachment": attachment,
            "is_read": False,
            "created_at": datetime.now(timezone.utc),
        }
        self.rows.append(doc)
        await self._emit("insert", dict(doc))
        return dict(doc)

    async def get(self, message_id: str) -> Optional[Dict[str, Any]]:
        for row in self.rows:
            if row["_id"] == message_id:
                return dict(row)
        return None

    async def latest_window(self, conversation_id: str, limit: int = 200) -> List[Dict[str, Any]]:
        rows = [dict(r) for r in self.rows if r["conversation_id"] == conversation_id]
        rows.sort(key=lambda r: (r["created_at"], r["_id"]))
        return rows[-limit:]

    async def get_messages_by_conversation(self, conversation_id: str, limit: int = 50, cursor: Optional[str] = None):
        return await self.latest_window(conversation_id, limit), None

    async def mark_read(self, conversation_id: str, receiver_id: str) -> int:
        modified = 0
        for row in self.rows:
            if row["conversation_id"] == conversation_id and row["receiver_id"] == receiver_id and not row["is_read"]:
                row["is_read"] = True
                modified += 1
        if modified:
            await self._emit("update", {"conversation_id": conversation_id, "receiver_id": receiver_id, "is_read": True})
        return modified

    async def delete(self, message: Dict[str, Any]) -> bool:
        for row in self.rows:
            if row["_id"] == message["_id"]:
                self.rows.remove(row)
                await self._emit("delete", dict(message))
                return True
        return False

    async def count_unread(self, receiver_id: str) -> int:
        return sum(1 for r in self.rows if r["receiver_id"] == receiver_id and not r["is_read"])

    async def _emit(self, op: str, row: Dict[str, Any]) -> None:
        if self._feed is not None:
            await self._feed.emit(ChangeEvent("messages", op, row))


class FakeNotificationRepository:

    def __init__(self, feed: Optional[ChangeFeed] = None) -> None:
        self._feed = feed
        self.rows: List[Dict[str, Any]] = []
        self.fail_for: Set[str] = set()

    def _new(self, recipient_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        if recipient_id in self.fail_for:
            raise PyMongoError(f"write failed for {recipient_id}")
        return {
            "_id": str(ObjectId()),
            "recipient_id": recipient_id,
            "sender_id": fields.get("sender_id"),
            "title": fields["title"],
            "message": fields["message"],
            "type": fields["type"],
            "related_id": fields.get("related_id"),
            "class_id": fields.get("class_id"),
            "action_type": fields.get("action_type"),
            "is_read": False,
            "created_at": datetime.now(timezone.utc),
        }

    async def create(self, recipient_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        doc = self._new(recipient_id, fields)
        self.rows.append(doc)
        await self._emit("insert", dict(doc))
        return dict(doc)

    async def create_once(self, recipient_id: str, fields: Dict[str, Any], dedup_key: str) -> Optional[Dict[str, Any]]:
        if any(r.get("dedup_key") == dedup_key for r in self.rows):
            return None
        doc = self._new(recipient_id, fields)
        doc["dedup_key"] = dedup_key
        self.rows.append(doc)
        await self._emit("insert", dict(doc))
        return dict(doc)

    async def get(self, notification_id: str, recipient_id: str) -> Optional[Dict[str, Any]]:
        for row in self.rows:
            if row["_id"] == notification_id and row["recipient_id"] == recipient_id:
                return dict(row)
        return None

    async def list_for_recipient(self, recipient_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        rows = [dict(r) for r in reversed(self.rows) if r["recipient_id"] == recipient_id]
        return rows[:limit]

    async def mark_read(self, notification_id: str, recipient_id: str) -> bool:
        for row in self.rows:
            if row["_id"] == notification_id and row["recipient_id"] == recipient_id and not row["is_read"]:
                row["is_read"] = True
                await self._emit("update", {"_id": notification_id, "recipient_id": recipient_id, "is_read": True})
                return True
        return False

    async def mark_all_read(self, recipient_id: str) -> int:
        modified = 0
        for row in self.rows:
            if row["recipient_id"] == recipient_id and not row["is_read"]:
                row["is_read"] = True
                modified += 1
        if modified:
            await self._emit("update", {"recipient_id": recipient_id, "is_read": True})
        return modified

    async def delete_all(self, recipient_id: str) -> int:
        before = len(self.rows)
        self.rows = [r for r in self.rows if r["recipient_id"] != recipient_id]
        deleted = before - len(self.rows)
        if deleted:
            await self._emit("delete", {"recipient_id": recipient_id})
        return deleted

    async def delete_for_related(self, recipient_id: str, notification_type: str, related_id: str) -> int:
        keep = [
            r for r in self.rows
            if not (r["recipient_id"] == recipient_id and r["type"] == notification_type and r["related_id"] == related_id)
        ]
        deleted = len(self.rows) - len(keep)
        self.rows = keep
        if deleted:
            await self._emit("delete", {"recipient_id": recipient_id, "type": notification_type, "related_id": related_id})
        return deleted

    async def count_unread(self, recipient_id: str) -> int:
        return sum(1 for r in self.rows if r["recipient_id"] == recipient_id and not r["is_read"])

    async def count_for_recipient(self, recipient_id: str) -> int:
        return sum(1 for r in self.rows if r["recipient_id"] == recipient_id)

    async def _emit(self, op: str, row: Dict[str, Any]) -> None:
        if self._feed is not None:
            await self._feed.emit(ChangeEvent("notifications", op, row))


class FakeProfileRepository:

    def __init__(self) -> None:
        self.disabled: Set[str] = set()
        self.push: Dict[str, Dict[str, Any]] = {}
        self.names: Dict[str, str] = {}
        self.avatars: Dict[str, str] = {}
        self.roles: Dict[str, str] = {}

    async def get_global_notifications_enabled(self, user_id: str) -> bool:
        return user_id not in self.disabled

    async def get_disabled_user_ids(self, user_ids: Iterable[str]) -> Set[str]:
        return {uid for uid in user_ids if uid in self.disabled}

    async def get_push_subscription(self, user_id: str) -> Dict[str, Any]:
        return self.push.get(user_id, {"permission": "default", "enabled": False})

    async def get_user_summaries(self, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        return {
            uid: {"name": self.names.get(uid, "Unknown User"), "avatar_url": self.avatars.get(uid), "role": self.roles.get(uid)}
            for uid in user_ids
        }

    async def get_display_names(self, user_ids: Iterable[str]) -> Dict[str, str]:
        return {uid: self.names.get(uid, "Unknown User") for uid in user_ids}


class FakeDeviceRepository:

    def __init__(self) -> None:
        self.tokens: Dict[str, List[str]] = {}
        self.removed: List[str] = []

    async def register(self, user_id: str, platform: str, token: str) -> Dict[str, Any]:
        self.tokens.setdefault(user_id, []).append(token)
        return {"user_id": user_id, "platform": platform, "token": token}

    async def get_tokens(self, user_id: str, platform: Optional[str] = None) -> List[str]:
        return list(self.tokens.get(user_id, []))

    async def remove_token(self, token: str) -> int:
        self.removed.append(token)
        return 1


class FakeClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def settle(rounds: int = 5) -> None:
    """Let background tasks (channel pumps) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Realtime fixtures
# =============================================================================


@pytest.fixture
def bus() -> LocalBus:
    return LocalBus()


@pytest_asyncio.fixture
async def feed(bus):
    hub = ChangeFeed(bus)
    yield hub
    await hub.close()


@pytest_asyncio.fixture
async def broadcast(bus):
    hub = BroadcastChannel(bus)
    yield hub
    await hub.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settled():
    return settle


# =============================================================================
# Repository fixtures
# =============================================================================


@pytest.fixture
def conversation_repo(feed) -> FakeConversationRepository:
    return FakeConversationRepository(feed)


@pytest.fixture
def message_repo(feed) -> FakeMessageRepository:
    return FakeMessageRepository(feed)


@pytest.fixture
def notification_repo(feed) -> FakeNotificationRepository:
    return FakeNotificationRepository(feed)


@pytest.fixture
def profile_repo() -> FakeProfileRepository:
    return FakeProfileRepository()


@pytest.fixture
def device_repo() -> FakeDeviceRepository:
    return FakeDeviceRepository()


@pytest.fixture
def offline_repos() -> SimpleNamespace:
    """Repositories with no change feed, for request handlers run by TestClient."""
    return SimpleNamespace(
        conversations=FakeConversationRepository(),
        messages=FakeMessageRepository(),
        notifications=FakeNotificationRepository(),
        profiles=FakeProfileRepository(),
        devices=FakeDeviceRepository(),
    )


@pytest.fixture
def session_hub(bus) -> SimpleNamespace:
    """Channels and feed-wired repositories for an app served by an entered TestClient.

    Built synchronously; every bus subscription is made on the client's own loop.
    """
    feed = ChangeFeed(bus)
    return SimpleNamespace(
        bus=bus,
        feed=feed,
        broadcast=BroadcastChannel(bus),
        conversations=FakeConversationRepository(feed),
        messages=FakeMessageRepository(feed),
        notifications=FakeNotificationRepository(feed),
        profiles=FakeProfileRepository(),
    )
