from typing import Any, Dict, List, Optional, Tuple

from eduspace_realtime.repositories.conversation_repository import ConversationRepository
from eduspace_realtime.repositories.profile_repository import ProfileRepository
from eduspace_realtime.utils.errors import InvalidParticipantsError


class ConversationRegistry:
    """Maps an unordered pair of users to their single conversation."""

    def __init__(self, conversation_repo: ConversationRepository, profiles: Optional[ProfileRepository] = None) -> None:
        self._conversation_repo = conversation_repo
        self._profiles = profiles

    async def resolve(self, user_a: str, user_b: str) -> str:
        if not user_a or not user_b or user_a == user_b:
            raise InvalidParticipantsError("A conversation needs two distinct participants")
        convo = await self._conversation_repo.get_or_create_one_to_one(user_a, user_b)
        return convo["_id"]

    async def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        return await self._conversation_repo.get(conversation_id)

    async def get_for_participant(self, conversation_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        convo = await self._conversation_repo.get(conversation_id)
        if convo is None or user_id not in (convo["participant_1"], convo["participant_2"]):
            return None
        return convo

    async def record_last_message(self, conversation_id: str, text: str) -> None:
        await self._conversation_repo.update_on_new_message(conversation_id, text)

    async def list_for_user(self, user_id: str, limit: int = 20, cursor: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        return await self._conversation_repo.list_for_user(user_id, limit=limit, cursor=cursor)

    async def list_with_other_user(self, user_id: str, limit: int = 20, cursor: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Same page as ``list_for_user``, each row carrying the other participant's name, avatar and role."""
        items, next_cursor = await self.list_for_user(user_id, limit=limit, cursor=cursor)
        others = [self.other_participant(convo, user_id) for convo in items]
        summaries = await self._profiles.get_user_summaries(others) if self._profiles is not None and others else {}
        for convo, other_id in zip(items, others):
            summary = summaries.get(other_id) or {}
            convo["other_user_id"] = other_id
            convo["other_user_name"] = summary.get("name", "Unknown User")
            convo["other_user_avatar"] = summary.get("avatar_url")
            convo["other_user_role"] = summary.get("role")
        return items, next_cursor

    @staticmethod
    def other_participant(conversation: Dict[str, Any], user_id: str) -> str:
        if conversation["participant_1"] == user_id:
            return conversation["participant_2"]
        return conversation["participant_1"]
