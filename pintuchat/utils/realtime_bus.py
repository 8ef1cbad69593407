import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from pintuchat.config import get_settings
from pintuchat.errors import DeliveryFailure


logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Awaitable[None]]


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


class NoopBus:

    enabled = False

    async def publish(self, channel: str, message: str) -> None:
        return

    async def close(self) -> None:
        return


class RedisSubscription:
    """Relays one pub/sub channel into ``on_message`` from a background task."""

    def __init__(self, pubsub, channel: str, on_message: OnMessage) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._on_message = on_message
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._task = asyncio.create_task(self.run(), name=f"bus-relay:{self._channel}")

    async def run(self) -> None:
        while True:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except RedisError as exc:
                logger.warning("Realtime bus read on %s failed: %r", self._channel, exc)
                await asyncio.sleep(0.5)
                continue
            if msg and msg.get("type") == "message":
                data = msg.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                await self._on_message(data)

    async def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        try:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        except RedisError as exc:
            logger.debug("Unsubscribe from %s failed: %r", self._channel, exc)


class RedisBus:
    """Fans push events out across API workers through Redis pub/sub."""

    enabled = True

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str, timeout: float) -> "RedisBus":
        # a stalled server surfaces as a RedisError instead of hanging the publisher
        return cls(redis.from_url(url, socket_timeout=timeout, socket_connect_timeout=timeout))

    async def publish(self, channel: str, message: str) -> None:
        try:
            await self._redis.publish(channel, message)
        except RedisError as exc:
            raise DeliveryFailure("Realtime bus publish failed", details={"channel": channel}) from exc

    async def subscribe(self, channel: str, on_message: OnMessage) -> RedisSubscription:
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError:
            await pubsub.aclose()
            raise
        return RedisSubscription(pubsub, channel, on_message)

    async def close(self) -> None:
        await self._redis.aclose()


Bus = Union[NoopBus, RedisBus]

_bus: Optional[Bus] = None


async def get_bus() -> Bus:
    global _bus
    if _bus is not None:
        return _bus
    settings = get_settings()
    url = settings.redis_url
    if not url:
        _bus = NoopBus()
    else:
        _bus = RedisBus.from_url(url, timeout=settings.push_send_timeout)
        logger.info("Realtime bus using Redis pub/sub")
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
    _bus = None
