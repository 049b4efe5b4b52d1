import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from eduspace_realtime.config import get_settings


logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], Awaitable[None]]


class LocalBus:
    """In-process pub/sub used when no Redis is configured (single worker, tests).

    ``publish`` awaits every handler of the channel concurrently; a failing
    handler is logged and does not affect the others.
    """

    enabled = True

    def __init__(self) -> None:
        self._handlers: Dict[str, List[MessageHandler]] = {}

    async def publish(self, channel: str, message: str) -> None:
        handlers = list(self._handlers.get(channel, []))
        if not handlers:
            return
        results = await asyncio.gather(*(h(message) for h in handlers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error("Handler for channel %s failed", channel, exc_info=result)

    async def subscribe(self, channel: str, on_message: MessageHandler):
        self._handlers.setdefault(channel, []).append(on_message)
        bus = self

        class _Sub:
            def __init__(self_inner) -> None:
                self_inner._stopped = asyncio.Event()

            async def run(self_inner) -> None:
                await self_inner._stopped.wait()

            async def cancel(self_inner) -> None:
                handlers = bus._handlers.get(channel, [])
                if on_message in handlers:
                    handlers.remove(on_message)
                if not handlers:
                    bus._handlers.pop(channel, None)
                self_inner._stopped.set()

        return _Sub()

    def subscriber_count(self, channel: str) -> int:
        return len(self._handlers.get(channel, []))

    async def close(self) -> None:
        self._handlers.clear()


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        import redis.asyncio as redis

        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: MessageHandler):
        from redis.exceptions import ConnectionError as RedisConnectionError

        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner) -> None:
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    except RedisConnectionError:
                        # propagate so the owner marks the feed as dropped
                        logger.warning("Redis connection lost on channel %s", channel)
                        raise
                    if not msg or msg.get("type") != "message":
                        continue
                    data = msg.get("data")
                    if isinstance(data, bytes):
                        data = data.decode("utf-8")
                    try:
                        await on_message(data)
                    except Exception:
                        logger.exception("Handler for channel %s failed", channel)

            async def cancel(self_inner) -> None:
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except RedisConnectionError:
                    logger.debug("Redis already disconnected while unsubscribing %s", channel)

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url: Optional[str] = get_settings().redis_url
    if url:
        _bus = RedisBus(url)
        logger.info("Realtime bus backed by Redis")
    else:
        _bus = LocalBus()
        logger.info("REDIS_URL not set; using in-process realtime bus")
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
    _bus = None
