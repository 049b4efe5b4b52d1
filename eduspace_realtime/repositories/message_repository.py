from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from eduspace_realtime.repositories.conversation_repository import parse_cursor, as_utc
from eduspace_realtime.models.message import MessageDocument
from eduspace_realtime.utils.change_feed import ChangeEvent, ChangeFeed


def _normalize(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc["_id"] = str(doc.get("_id"))
    doc["conversation_id"] = str(doc.get("conversation_id"))
    return doc


def _oid(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase, feed: Optional[ChangeFeed] = None) -> None:
        self._db = db
        self._feed = feed

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)])
        await self.collection.create_index([("receiver_id", ASCENDING), ("is_read", ASCENDING)])

    async def save_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
        attachment: Optional[Dict[str, Any]] = None,
    ) -> MessageDocument:
        # id and timestamp are taken together so (created_at, _id) follows insertion order
        doc: Dict[str, Any] = {
            "_id": ObjectId(),
            "conversation_id": ObjectId(conversation_id),
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": content,
            "attachment": attachment,
            "is_read": False,
            "created_at": datetime.now(timezone.utc),
        }
        await self.collection.insert_one(doc)
        _normalize(doc)
        await self._emit("insert", doc)
        return doc

    async def get(self, message_id: str) -> Optional[MessageDocument]:
        oid = _oid(message_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return _normalize(doc) if doc else None

    async def latest_window(self, conversation_id: str, limit: int = 200) -> List[MessageDocument]:
        """Newest ``limit`` messages of a conversation, returned oldest first."""
        oid = _oid(conversation_id)
        if oid is None:
            return []
        cur = self.collection.find({"conversation_id": oid}).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        items = await cur.to_list(length=limit)
        return [_normalize(it) for it in reversed(items)]

    async def get_messages_by_conversation(
        self,
        conversation_id: str,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        query: Dict[str, Any] = {"conversation_id": ObjectId(conversation_id)}
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        if cursor:
            # cursor format: ts_ms:oid of the oldest message already seen
            ts, oid = parse_cursor(cursor)
            query["$or"] = [
                {"created_at": {"$lt": ts}},
                {"created_at": ts, "_id": {"$lt": oid}},
            ]
        cur = self.collection.find(query).sort(sort).limit(limit)
        items = await cur.to_list(length=limit)
        for it in items:
            _normalize(it)
        next_cursor = None
        if len(items) == limit:
            last = items[-1]
            last_ts = int(as_utc(last["created_at"]).timestamp() * 1000)
            next_cursor = f"{last_ts}:{last['_id']}"
        return list(reversed(items)), next_cursor

    async def mark_read(self, conversation_id: str, receiver_id: str) -> int:
        oid = _oid(conversation_id)
        if oid is None:
            return 0
        result = await self.collection.update_many(
            {"conversation_id": oid, "receiver_id": receiver_id, "is_read": False},
            {"$set": {"is_read": True}},
        )
        modified = result.modified_count or 0
        if modified:
            await self._emit("update", {"conversation_id": conversation_id, "receiver_id": receiver_id, "is_read": True})
        return modified

    async def delete(self, message: Dict[str, Any]) -> bool:
        result = await self.collection.delete_one({"_id": ObjectId(message["_id"])})
        if not result.deleted_count:
            return False
        await self._emit("delete", dict(message))
        return True

    async def count_unread(self, receiver_id: str) -> int:
        return await self.collection.count_documents({"receiver_id": receiver_id, "is_read": False})

    async def _emit(self, op: str, row: Dict[str, Any]) -> None:
        if self._feed is not None:
            await self._feed.emit(ChangeEvent(table="messages", op=op, row=row))
