import logging
from typing import Awaitable, Callable, List, Optional

from eduspace_realtime.repositories.message_repository import MessageRepository
from eduspace_realtime.repositories.notification_repository import NotificationRepository
from eduspace_realtime.schemas.notifications import UnreadCounts
from eduspace_realtime.utils.change_feed import ChangeEvent, ChangeFeed, Subscription


logger = logging.getLogger(__name__)

CountsCallback = Callable[[UnreadCounts], Awaitable[None]]


class UnreadAggregator:
    """Live unread badges for one user.

    Holds no counters of its own: every change touching the user's
    notifications or received messages triggers a recount from the store.
    Notification and message unread states are kept as two separate numbers.
    """

    def __init__(
        self,
        user_id: str,
        notification_repo: NotificationRepository,
        message_repo: MessageRepository,
        feed: ChangeFeed,
        on_change: Optional[CountsCallback] = None,
    ) -> None:
        self.user_id = user_id
        self._notification_repo = notification_repo
        self._message_repo = message_repo
        self._feed = feed
        self._on_change = on_change
        self.counts = UnreadCounts()
        self._subs: List[Subscription] = []
        self._generation = 0

    @property
    def unread_count(self) -> int:
        return self.counts.notifications

    async def open(self) -> "UnreadAggregator":
        try:
            self._subs.append(await self._feed.subscribe("notifications", {"recipient_id": self.user_id}, self._on_event))
            self._subs.append(await self._feed.subscribe("messages", {"receiver_id": self.user_id}, self._on_event))
            await self.refresh()
        except BaseException:
            await self.close()
            raise
        return self

    async def close(self) -> None:
        subs, self._subs = self._subs, []
        for sub in subs:
            await sub.close()

    async def __aenter__(self) -> "UnreadAggregator":
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

    async def refresh(self) -> UnreadCounts:
        self._generation += 1
        generation = self._generation
        counts = UnreadCounts(
            notifications=await self._notification_repo.count_unread(self.user_id),
            messages=await self._message_repo.count_unread(self.user_id),
        )
        if generation == self._generation:
            self.counts = counts
            if self._on_change is not None:
                await self._on_change(counts)
        return self.counts

    async def _on_event(self, event: ChangeEvent) -> None:
        logger.debug("Recounting unread for %s after %s %s", self.user_id, event.table, event.op)
        await self.refresh()
