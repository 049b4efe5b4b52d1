"""Live conversation list of one user, newest activity first."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from eduspace_realtime.services.conversation_registry import ConversationRegistry
from eduspace_realtime.utils.change_feed import ChangeEvent, ChangeFeed, Subscription


logger = logging.getLogger(__name__)

ConversationsCallback = Callable[[List[Dict[str, Any]]], Awaitable[None]]


class ConversationList:

    def __init__(
        self,
        user_id: str,
        registry: ConversationRegistry,
        feed: ChangeFeed,
        limit: int = 50,
        on_change: Optional[ConversationsCallback] = None,
    ) -> None:
        self.user_id = user_id
        self._registry = registry
        self._feed = feed
        self._limit = limit
        self._on_change = on_change
        self.conversations: List[Dict[str, Any]] = []
        self._subs: List[Subscription] = []
        self._generation = 0

    async def open(self) -> "ConversationList":
        try:
            # the user can sit on either side of the pair
            for field in ("participant_1", "participant_2"):
                self._subs.append(await self._feed.subscribe("conversations", {field: self.user_id}, self._on_event))
            await self.refresh()
        except BaseException:
            await self.close()
            raise
        return self

    async def close(self) -> None:
        subs, self._subs = self._subs, []
        for sub in subs:
            await sub.close()

    async def __aenter__(self) -> "ConversationList":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def dropped(self) -> bool:
        return any(sub.dropped for sub in self._subs)

    async def resubscribe(self) -> None:
        for sub in self._subs:
            await sub.resubscribe()
        await self.refresh()

    async def refresh(self) -> List[Dict[str, Any]]:
        self._generation += 1
        generation = self._generation
        items, _ = await self._registry.list_with_other_user(self.user_id, limit=self._limit)
        if generation == self._generation:
            self.conversations = items
            if self._on_change is not None:
                await self._on_change(items)
        return self.conversations

    async def _on_event(self, event: ChangeEvent) -> None:
        logger.debug("Refreshing conversations of %s after %s", self.user_id, event.op)
        await self.refresh()
