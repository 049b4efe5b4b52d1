from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from eduspace_realtime.models.notification import NotificationDocument
from eduspace_realtime.utils.change_feed import ChangeEvent, ChangeFeed


def _normalize(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc["_id"] = str(doc.get("_id"))
    return doc


def _oid(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class NotificationRepository:
    """Notification rows. Created by the fan-out engine, mutated only by the recipient."""

    def __init__(self, db: AsyncIOMotorDatabase, feed: Optional[ChangeFeed] = None) -> None:
        self._db = db
        self._feed = feed

    @property
    def collection(self):
        return self._db["notifications"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("recipient_id", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("recipient_id", ASCENDING), ("is_read", ASCENDING)])
        await self.collection.create_index([("dedup_key", ASCENDING)], unique=True, sparse=True)

    def _new_document(self, recipient_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "_id": ObjectId(),
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
        return doc

    async def create(self, recipient_id: str, fields: Dict[str, Any]) -> NotificationDocument:
        doc = self._new_document(recipient_id, fields)
        await self.collection.insert_one(doc)
        _normalize(doc)
        await self._emit("insert", doc)
        return doc

    async def create_once(self, recipient_id: str, fields: Dict[str, Any], dedup_key: str) -> Optional[NotificationDocument]:
        """Insert unless a row with ``dedup_key`` exists; returns None for a duplicate."""
        doc = self._new_document(recipient_id, fields)
        doc["dedup_key"] = dedup_key
        try:
            result = await self.collection.update_one(
                {"dedup_key": dedup_key},
                {"$setOnInsert": doc},
                upsert=True,
            )
        except DuplicateKeyError:
            # a concurrent upsert with the same key inserted first
            return None
        if result.upserted_id is None:
            return None
        _normalize(doc)
        await self._emit("insert", doc)
        return doc

    async def get(self, notification_id: str, recipient_id: str) -> Optional[NotificationDocument]:
        oid = _oid(notification_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid, "recipient_id": recipient_id})
        return _normalize(doc) if doc else None

    async def list_for_recipient(self, recipient_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        cur = self.collection.find({"recipient_id": recipient_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        items = await cur.to_list(length=limit)
        return [_normalize(it) for it in items]

    async def mark_read(self, notification_id: str, recipient_id: str) -> bool:
        oid = _oid(notification_id)
        if oid is None:
            return False
        result = await self.collection.update_one(
            {"_id": oid, "recipient_id": recipient_id, "is_read": False},
            {"$set": {"is_read": True}},
        )
        if result.modified_count:
            await self._emit("update", {"_id": notification_id, "recipient_id": recipient_id, "is_read": True})
            return True
        return False

    async def mark_all_read(self, recipient_id: str) -> int:
        result = await self.collection.update_many(
            {"recipient_id": recipient_id, "is_read": False},
            {"$set": {"is_read": True}},
        )
        modified = result.modified_count or 0
        if modified:
            await self._emit("update", {"recipient_id": recipient_id, "is_read": True})
        return modified

    async def delete_all(self, recipient_id: str) -> int:
        result = await self.collection.delete_many({"recipient_id": recipient_id})
        deleted = result.deleted_count or 0
        if deleted:
            await self._emit("delete", {"recipient_id": recipient_id})
        return deleted

    async def delete_for_related(self, recipient_id: str, notification_type: str, related_id: str) -> int:
        result = await self.collection.delete_many(
            {"recipient_id": recipient_id, "type": notification_type, "related_id": related_id}
        )
        deleted = result.deleted_count or 0
        if deleted:
            await self._emit("delete", {"recipient_id": recipient_id, "type": notification_type, "related_id": related_id})
        return deleted

    async def count_unread(self, recipient_id: str) -> int:
        return await self.collection.count_documents({"recipient_id": recipient_id, "is_read": False})

    async def count_for_recipient(self, recipient_id: str) -> int:
        return await self.collection.count_documents({"recipient_id": recipient_id})

    async def _emit(self, op: str, row: Dict[str, Any]) -> None:
        if self._feed is not None:
            await self._feed.emit(ChangeEvent(table="notifications", op=op, row=row))
