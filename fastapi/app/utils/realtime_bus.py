import asyncio
import logging
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis
from fastapi import WebSocketDisconnect
from redis.exceptions import ConnectionError as RedisConnectionError

from app.config import get_settings


logger = logging.getLogger(__name__)


class NoopBus:

    enabled = False

    async def publish(self, channel: str, message: str) -> None:
        return

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        class _Sub:
            async def run(self):
                await asyncio.Future()

            async def cancel(self):
                return

        return _Sub()

    async def close(self) -> None:
        return


class RedisBus:
    """Fans conversation events out to every API instance through Redis pub/sub."""

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: Callable[[str], Awaitable[None]]):
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    except RedisConnectionError as exc:
                        logger.warning("Redis subscription %s interrupted: %s", channel, exc)
                        await asyncio.sleep(0.5)
                        continue
                    if msg and msg.get("type") == "message":
                        data = msg.get("data")
                        if isinstance(data, bytes):
                            data = data.decode("utf-8")
                        try:
                            await on_message(data)
                        except (RuntimeError, WebSocketDisconnect) as exc:
                            logger.info("Subscriber on %s gone, stopping: %s", channel, exc)
                            return

            async def cancel(self_inner):
                self_inner._running = False
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url: Optional[str] = get_settings().redis_url
    if not url:
        _bus = NoopBus()
        return _bus
    _bus = RedisBus(url)
    logger.info("Realtime fanout through Redis enabled")
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
    _bus = None


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"
