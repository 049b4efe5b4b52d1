import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from eduspace_realtime.models.device import DeviceDocument, PushPlatform


logger = logging.getLogger(__name__)

MAX_DEVICES_PER_USER = 100


class DeviceRepository:
    """Push targets per user. A token is registered once per (user, platform)."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["devices"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("user_id", ASCENDING), ("platform", ASCENDING), ("token", ASCENDING)],
            unique=True,
        )
        await self.collection.create_index([("token", ASCENDING)])

    async def register(self, user_id: str, platform: PushPlatform, token: str) -> DeviceDocument:
        seen_at = datetime.now(timezone.utc)
        await self.collection.update_one(
            {"user_id": user_id, "platform": platform, "token": token},
            {"$set": {"last_seen_at": seen_at}},
            upsert=True,
        )
        return {"user_id": user_id, "platform": platform, "token": token, "last_seen_at": seen_at}

    async def get_tokens(self, user_id: str, platform: Optional[PushPlatform] = None) -> List[str]:
        query: Dict[str, Any] = {"user_id": user_id}
        if platform:
            query["platform"] = platform
        rows = await self.collection.find(query, {"token": 1, "_id": 0}).to_list(length=MAX_DEVICES_PER_USER)
        return [row["token"] for row in rows]

    async def remove_token(self, token: str) -> int:
        """Drop a token the push provider no longer accepts, for every user holding it."""
        result = await self.collection.delete_many({"token": token})
        if result.deleted_count:
            logger.info("Pruned %d registration(s) of an unregistered push token", result.deleted_count)
        return result.deleted_count or 0
