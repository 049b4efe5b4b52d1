"""Live topic subscriptions over the realtime bus.

Two hubs share the same machinery:

* ``ChangeFeed`` carries row-level insert/update/delete events that the
  repositories emit after each durable write.
* ``BroadcastChannel`` carries ephemeral per-conversation payloads (typing
  signals) that are never stored.

Every ``subscribe`` returns a ``Subscription`` handle. Closing it is the only
way to stop delivery; it is an async context manager so callers can scope
it with ``async with``. Subscribers on the same channel share one bus
subscription.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from bson import json_util


logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]

# Fields that get their own channel so a subscriber only receives its slice.
ROUTING_FIELDS: Dict[str, tuple] = {
    "messages": ("conversation_id", "receiver_id"),
    "notifications": ("recipient_id",),
    "conversations": ("participant_1", "participant_2"),
}


@dataclass
class ChangeEvent:

    table: str
    op: str  # insert | update | delete
    row: Dict[str, Any]

    def to_json(self) -> str:
        return json_util.dumps({"table": self.table, "op": self.op, "row": self.row})

    @classmethod
    def from_json(cls, raw: str) -> "ChangeEvent":
        data = json_util.loads(raw)
        return cls(table=data["table"], op=data["op"], row=data.get("row") or {})


def row_matches(row: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    """Equality filter per field; a list/set/tuple value means membership."""
    for field, expected in filters.items():
        if field not in row:
            return False
        value = row[field]
        if isinstance(expected, (list, set, tuple, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class Subscription:

    def __init__(self, hub: "TopicHub", channel: str, handler: Handler, match: Optional[Callable[[Any], bool]] = None) -> None:
        self._hub = hub
        self.channel = channel
        self._handler = handler
        self._match = match
        self.closed = False
        self.dropped = False

    async def deliver(self, payload: Any) -> None:
        if self.closed or self.dropped:
            return
        if self._match is not None and not self._match(payload):
            return
        try:
            await self._handler(payload)
        except Exception:
            logger.exception("Subscriber on %s failed to handle delivery", self.channel)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._hub._detach(self)

    async def resubscribe(self) -> None:
        if self.closed:
            raise RuntimeError(f"Subscription to {self.channel} is closed")
        if not self.dropped:
            return
        self.dropped = False
        try:
            await self._hub._attach(self)
        except Exception:
            self.dropped = True
            raise
        logger.info("Resubscribed to %s", self.channel)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class _Topic:

    def __init__(self, channel: str) -> None:
        self.channel = channel
        self.subscribers: List[Subscription] = []
        self.bus_sub = None
        self.task: Optional[asyncio.Task] = None


class TopicHub:

    def __init__(self, bus) -> None:
        self._bus = bus
        self._topics: Dict[str, _Topic] = {}

    def _decode(self, raw: str) -> Any:
        raise NotImplementedError

    def open_channels(self) -> List[str]:
        return list(self._topics)

    async def _attach(self, sub: Subscription) -> None:
        topic = self._topics.get(sub.channel)
        if topic is None:
            topic = _Topic(sub.channel)
            self._topics[sub.channel] = topic

            async def on_message(raw: str, t: _Topic = topic) -> None:
                await self._dispatch(t, raw)

            try:
                topic.bus_sub = await self._bus.subscribe(sub.channel, on_message)
            except Exception:
                # forget the half-open topic so the next attach starts clean
                if self._topics.get(sub.channel) is topic:
                    del self._topics[sub.channel]
                for waiting in topic.subscribers:
                    waiting.dropped = True
                topic.subscribers.clear()
                raise
            topic.task = asyncio.create_task(self._pump(topic))
            logger.debug("Opened channel %s", sub.channel)
        topic.subscribers.append(sub)

    async def _detach(self, sub: Subscription) -> None:
        topic = self._topics.get(sub.channel)
        if topic is None or sub not in topic.subscribers:
            return
        topic.subscribers.remove(sub)
        if not topic.subscribers:
            del self._topics[sub.channel]
            await self._release(topic)
            logger.debug("Closed channel %s", sub.channel)

    async def _dispatch(self, topic: _Topic, raw: str) -> None:
        try:
            payload = self._decode(raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed payload on %s", topic.channel)
            return
        for sub in list(topic.subscribers):
            await sub.deliver(payload)

    async def _pump(self, topic: _Topic) -> None:
        try:
            await topic.bus_sub.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Channel %s dropped; waiting for resubscribe", topic.channel, exc_info=True)
            if self._topics.get(topic.channel) is topic:
                del self._topics[topic.channel]
            for sub in topic.subscribers:
                sub.dropped = True
            topic.subscribers.clear()
            topic.task = None
            await self._release(topic)

    async def _release(self, topic: _Topic) -> None:
        if topic.bus_sub is not None:
            try:
                await topic.bus_sub.cancel()
            except Exception:
                logger.warning("Failed to cancel bus subscription for %s", topic.channel, exc_info=True)
            topic.bus_sub = None
        task = topic.task
        topic.task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def close(self) -> None:
        for topic in list(self._topics.values()):
            for sub in list(topic.subscribers):
                await sub.close()


class ChangeFeed(TopicHub):
    """Row change events per table, routed by the table's key fields."""

    def _decode(self, raw: str) -> ChangeEvent:
        return ChangeEvent.from_json(raw)

    @staticmethod
    def channels_for(event: ChangeEvent) -> List[str]:
        channels = [f"changes:{event.table}"]
        for field in ROUTING_FIELDS.get(event.table, ()):
            value = event.row.get(field)
            if value is not None:
                channels.append(f"changes:{event.table}:{field}={value}")
        return channels

    @staticmethod
    def channel_for_filter(table: str, filters: Mapping[str, Any]) -> str:
        for field in ROUTING_FIELDS.get(table, ()):
            value = filters.get(field)
            if value is not None and not isinstance(value, (list, set, tuple, frozenset)):
                return f"changes:{table}:{field}={value}"
        return f"changes:{table}"

    async def emit(self, event: ChangeEvent) -> None:
        raw = event.to_json()
        for channel in self.channels_for(event):
            try:
                await self._bus.publish(channel, raw)
            except Exception:
                # the write already happened; readers catch up on their next change
                logger.warning("Failed to publish %s %s on %s", event.table, event.op, channel, exc_info=True)

    async def subscribe(self, table: str, filters: Mapping[str, Any], handler: Callable[[ChangeEvent], Awaitable[None]]) -> Subscription:
        filters = dict(filters)
        channel = self.channel_for_filter(table, filters)

        def match(event: ChangeEvent) -> bool:
            return event.table == table and row_matches(event.row, filters)

        sub = Subscription(self, channel, handler, match)
        await self._attach(sub)
        return sub


class BroadcastChannel(TopicHub):
    """Ephemeral per-conversation payloads; best effort, nothing is stored."""

    def _decode(self, raw: str) -> Dict[str, Any]:
        return json.loads(raw)

    @staticmethod
    def channel_for(conversation_id: str) -> str:
        return f"typing:{conversation_id}"

    async def publish_ephemeral(self, conversation_id: str, payload: Mapping[str, Any]) -> None:
        try:
            await self._bus.publish(self.channel_for(conversation_id), json.dumps(dict(payload)))
        except Exception:
            logger.debug("Dropped ephemeral payload for conversation %s", conversation_id, exc_info=True)

    async def subscribe_ephemeral(self, conversation_id: str, handler: Callable[[Dict[str, Any]], Awaitable[None]]) -> Subscription:
        sub = Subscription(self, self.channel_for(conversation_id), handler)
        await self._attach(sub)
        return sub
