import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from chatsync.config import get_settings


logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], Awaitable[None]]

_STOP = object()


class LocalBus:
    """In-process fan-out, used when no Redis is configured."""

    enabled = True

    def __init__(self) -> None:
        self._queues: Dict[str, Set[asyncio.Queue]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for queue in list(self._queues.get(channel, ())):
            queue.put_nowait(message)

    async def subscribe(self, channel: str, on_message: MessageHandler):
        # registered immediately so nothing published after this call is lost
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.setdefault(channel, set()).add(queue)
        bus = self

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    message = await queue.get()
                    if message is _STOP:
                        break
                    try:
                        await on_message(message)
                    except Exception:
                        logger.exception("Handler failed on channel %s", channel)

            async def cancel(self_inner):
                self_inner._running = False
                listeners = bus._queues.get(channel)
                if listeners is not None:
                    listeners.discard(queue)
                    if not listeners:
                        del bus._queues[channel]
                queue.put_nowait(_STOP)

        return _Sub()

    def subscriber_count(self, channel: str) -> int:
        return len(self._queues.get(channel, ()))

    async def close(self) -> None:
        self._queues.clear()


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        import redis.asyncio as redis

        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: MessageHandler):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                        if msg and msg.get("type") == "message":
                            data = msg.get("data")
                            if isinstance(data, bytes):
                                data = data.decode("utf-8")
                            await on_message(data)
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        # redis-py reconnects on the next read
                        logger.warning("Redis listener on %s failed, retrying", channel, exc_info=True)
                        await asyncio.sleep(0.5)

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except Exception:
                    logger.warning("Failed to unsubscribe from %s", channel, exc_info=True)

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = get_settings().redis_url
    if url:
        logger.info("Using Redis realtime bus")
        _bus = RedisBus(url)
    else:
        logger.info("REDIS_URL not set, using in-process realtime bus")
        _bus = LocalBus()
    return _bus


def set_bus(bus: Optional[object]) -> None:
    global _bus
    _bus = bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
    _bus = None
