"""
Broadcast adapter interface

Adapters move server frames between processes. The relational store stays
the source of truth; adapters only deliver. Every process holds one
pattern subscription and forwards what it receives to its own sockets.
"""
import abc
import json
from typing import Any, AsyncIterator, Dict, Tuple

REQUIRED_FIELDS = ("event", "topic", "data")


class BroadcastAdapter(abc.ABC):

    @abc.abstractmethod
    async def publish(self, channel: str, message: Dict[str, Any]) -> None:
        """
        Publish a frame to a channel.

        Args:
            channel: Channel name (e.g., "session:42")
            message: Frame with event, topic and data
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def psubscribe(self, pattern: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        """
        Register a glob-pattern subscription.

        The subscription is live once this coroutine returns; the returned
        iterator yields (channel, frame) pairs until the adapter closes.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def close(self) -> None:
        raise NotImplementedError

    def _serialize_message(self, message: Dict[str, Any]) -> str:
        return json.dumps(message, sort_keys=True, separators=(',', ':'))

    def validate_message(self, message: Dict[str, Any]) -> bool:
        """
        Raises:
            ValueError: If required fields missing
        """
        missing = [f for f in REQUIRED_FIELDS if f not in message]
        if missing:
            raise ValueError(f"Message missing required fields: {missing}")
        return True
