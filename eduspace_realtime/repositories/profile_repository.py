from typing import Dict, Iterable, Set

from motor.motor_asyncio import AsyncIOMotorDatabase

from eduspace_realtime.models.profile import PushSubscriptionState, UserSummary


UNKNOWN_USER = "Unknown User"


class ProfileRepository:
    """Read-only view of the profile fields this service needs: preferences and display details."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("profiles")

    async def get_global_notifications_enabled(self, user_id: str) -> bool:
        profile = await self._collection.find_one({"user_id": user_id}, {"notifications_enabled": 1})
        if not profile:
            return True
        return profile.get("notifications_enabled", True) is not False

    async def get_disabled_user_ids(self, user_ids: Iterable[str]) -> Set[str]:
        ids = list(user_ids)
        if not ids:
            return set()
        cursor = self._collection.find(
            {"user_id": {"$in": ids}, "notifications_enabled": False},
            {"user_id": 1},
        )
        # no length cap: duplicate profile rows must not hide an opted-out user
        docs = await cursor.to_list(length=None)
        return {doc["user_id"] for doc in docs}

    async def get_push_subscription(self, user_id: str) -> PushSubscriptionState:
        profile = await self._collection.find_one({"user_id": user_id}, {"push_subscription": 1})
        state = (profile or {}).get("push_subscription") or {}
        return {
            "permission": state.get("permission", "default"),
            "enabled": bool(state.get("enabled", False)),
        }

    async def get_user_summaries(self, user_ids: Iterable[str]) -> Dict[str, UserSummary]:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        cursor = self._collection.find(
            {"user_id": {"$in": ids}},
            {"user_id": 1, "full_name": 1, "avatar_url": 1, "role": 1},
        )
        found: Dict[str, UserSummary] = {}
        for doc in await cursor.to_list(length=None):
            found.setdefault(doc["user_id"], {
                "name": doc.get("full_name") or UNKNOWN_USER,
                "avatar_url": doc.get("avatar_url"),
                "role": doc.get("role"),
            })
        return {uid: found.get(uid, {"name": UNKNOWN_USER, "avatar_url": None, "role": None}) for uid in ids}

    async def get_display_names(self, user_ids: Iterable[str]) -> Dict[str, str]:
        summaries = await self.get_user_summaries(user_ids)
        return {uid: summary["name"] for uid, summary in summaries.items()}
