"""
Redis broadcast adapter (multi-process)

Redis pub/sub carries frames between gunicorn workers so that a rating
accepted by one worker reaches sockets held by every other worker.
Redis is delivery-only.
"""
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import redis.asyncio as aioredis

from .broadcast_adapter import BroadcastAdapter

logger = logging.getLogger(__name__)


class RedisAdapter(BroadcastAdapter):

    def __init__(self, redis_url: str = "redis://localhost:6379/0"):
        self.redis_url = redis_url
        self._redis: Optional[aioredis.Redis] = None
        self._pubsubs = []

    async def connect(self) -> None:
        self._redis = aioredis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True
        )
        await self._redis.ping()
        logger.info("✓ Redis broadcast adapter connected")

    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        if not self._redis:
            await self.connect()
        self.validate_message(message)
        await self._redis.publish(channel, self._serialize_message(message))

    async def psubscribe(self, pattern: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        if not self._redis:
            await self.connect()
        pubsub = self._redis.pubsub()
        await pubsub.psubscribe(pattern)
        self._pubsubs.append(pubsub)
        return self._iterate(pubsub, pattern)

    async def _iterate(self, pubsub, pattern: str):
        try:
            async for message in pubsub.listen():
                if message["type"] != "pmessage":
                    continue
                try:
                    data = json.loads(message["data"])
                except json.JSONDecodeError:
                    logger.warning(f"Skipped undecodable frame on {message['channel']}")
                    continue
                yield message["channel"], data
        finally:
            await pubsub.punsubscribe(pattern)

    async def close(self) -> None:
        for pubsub in self._pubsubs:
            await pubsub.aclose()
        self._pubsubs.clear()
        if self._redis:
            await self._redis.aclose()
            self._redis = None


def build_broadcast_adapter(redis_url: Optional[str] = None) -> BroadcastAdapter:
    """
    RedisAdapter when a URL is configured, otherwise InMemoryAdapter.

    The Redis connection opens on first use (the relay subscription at
    startup).
    """
    if redis_url:
        logger.info("Using Redis broadcast adapter")
        return RedisAdapter(redis_url)
    from .in_memory_adapter import InMemoryAdapter
    logger.info("Using in-memory broadcast adapter (single process)")
    return InMemoryAdapter()
