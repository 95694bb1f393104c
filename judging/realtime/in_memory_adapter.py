"""
In-memory broadcast adapter (single process)

Default when no REDIS_URL is configured, and used by the tests.
"""
import asyncio
import fnmatch
import json
import logging
from typing import Any, AsyncIterator, Dict, Set, Tuple

from .broadcast_adapter import BroadcastAdapter

logger = logging.getLogger(__name__)


class InMemoryAdapter(BroadcastAdapter):

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._patterns: Dict[str, Set[asyncio.Queue]] = {}
        self._lock = asyncio.Lock()

    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        self.validate_message(message)
        serialized = self._serialize_message(message)

        async with self._lock:
            targets = [
                queue
                for pattern, queues in self._patterns.items()
                if fnmatch.fnmatchcase(channel, pattern)
                for queue in queues
            ]
        for queue in targets:
            try:
                queue.put_nowait((channel, serialized))
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full, dropped frame on {channel}")

    async def psubscribe(self, pattern: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        async with self._lock:
            self._patterns.setdefault(pattern, set()).add(queue)
        return self._iterate(pattern, queue)

    async def _iterate(self, pattern: str, queue: asyncio.Queue):
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                channel, serialized = item
                yield channel, json.loads(serialized)
        finally:
            async with self._lock:
                if pattern in self._patterns:
                    self._patterns[pattern].discard(queue)

    async def close(self) -> None:
        """Ends every open subscription."""
        async with self._lock:
            for queues in self._patterns.values():
                for queue in queues:
                    try:
                        queue.put_nowait(None)
                    except asyncio.QueueFull:
                        logger.warning("Subscriber queue full at shutdown")
            self._patterns.clear()
