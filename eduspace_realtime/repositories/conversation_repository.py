import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from eduspace_realtime.models.conversation import ConversationDocument
from eduspace_realtime.utils.change_feed import ChangeEvent, ChangeFeed


logger = logging.getLogger(__name__)


def pair_key(user_a: str, user_b: str) -> str:
    return ":".join(sorted([user_a, user_b]))


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc["_id"] = str(doc.get("_id"))
    return doc


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase, feed: Optional[ChangeFeed] = None) -> None:
        self._db = db
        self._feed = feed

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("pair_key", ASCENDING)], unique=True)
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])

    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        try:
            oid = ObjectId(conversation_id)
        except (InvalidId, TypeError):
            return None
        doc = await self.collection.find_one({"_id": oid})
        return _normalize(doc) if doc else None

    async def find_by_pair(self, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one({"pair_key": pair_key(user_a, user_b)})
        return _normalize(doc) if doc else None

    async def get_or_create_one_to_one(self, user_a: str, user_b: str) -> ConversationDocument:
        existing = await self.find_by_pair(user_a, user_b)
        if existing:
            return existing
        now = datetime.now(timezone.utc)
        doc: Dict[str, Any] = {
            "_id": ObjectId(),
            "participant_1": user_a,
            "participant_2": user_b,
            "pair_key": pair_key(user_a, user_b),
            "participants": sorted([user_a, user_b]),
            "last_message": None,
            "last_message_at": now,
            "created_at": now,
        }
        try:
            await self.collection.insert_one(doc)
        except DuplicateKeyError:
            # another client created the pair first; adopt its row
            winner = await self.find_by_pair(user_a, user_b)
            if winner is None:
                raise
            logger.info("Conversation for %s already created concurrently; using %s", doc["pair_key"], winner["_id"])
            return winner
        _normalize(doc)
        logger.info("Created conversation %s for %s", doc["_id"], doc["pair_key"])
        await self._emit("insert", doc)
        return doc

    async def update_on_new_message(self, conversation_id: str, preview: str) -> None:
        now = datetime.now(timezone.utc)
        result = await self.collection.update_one(
            {"_id": ObjectId(conversation_id)},
            {"$set": {"last_message": preview, "last_message_at": now}},
        )
        if result.matched_count:
            doc = await self.get(conversation_id)
            if doc:
                await self._emit("update", doc)

    async def list_for_user(self, user_id: str, limit: int = 20, cursor: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        query: Dict[str, Any] = {"participants": user_id}
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            # Cursor format: timestamp_ms:object_id_hex
            ts, oid = parse_cursor(cursor)
            query["$or"] = [
                {"last_message_at": {"$lt": ts}},
                {"last_message_at": ts, "_id": {"$lt": oid}},
            ]

        cursor_db = self.collection.find(query).sort(sort).limit(limit)
        items = await cursor_db.to_list(length=limit)
        for it in items:
            _normalize(it)
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            last_ts = int(as_utc(last["last_message_at"]).timestamp() * 1000)
            next_cursor = f"{last_ts}:{last['_id']}"
        return items, next_cursor

    async def _emit(self, op: str, doc: Dict[str, Any]) -> None:
        if self._feed is not None:
            await self._feed.emit(ChangeEvent(table="conversations", op=op, row=dict(doc)))


def parse_cursor(cursor: str) -> Tuple[datetime, ObjectId]:
    try:
        ts_str, oid_hex = cursor.split(":", 1)
        ts = datetime.fromtimestamp(int(ts_str) / 1000.0, tz=timezone.utc)
        return ts, ObjectId(oid_hex)
    except (ValueError, InvalidId) as exc:
        raise ValueError(f"Invalid cursor: {cursor!r}") from exc
