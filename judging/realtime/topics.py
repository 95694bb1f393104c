"""
Realtime topics and event names

A topic is a typed identifier rather than a bare string so that future
topic kinds cannot collide with session ids. Its wire form (the pub/sub
channel and the "topic" field of server frames) is "<kind>:<id>".
"""
from dataclasses import dataclass
from enum import Enum
from typing import Union

# Server -> client
CONSENSUS_UPDATE = "consensus-update"
SESSION_ENDED = "session-ended"
PONG = "pong"
ERROR = "error"

# Client -> server
JOIN_SESSION = "join-session"
LEAVE_SESSION = "leave-session"
SUBMIT_RATING = "submit-rating"
PING = "ping"

CLIENT_EVENTS = {JOIN_SESSION, LEAVE_SESSION, SUBMIT_RATING, PING}


class TopicKind(Enum):
    SESSION = "session"


@dataclass(frozen=True)
class Topic:
    kind: TopicKind
    id: int

    @classmethod
    def session(cls, session_id: Union[int, str]) -> "Topic":
        return cls(TopicKind.SESSION, int(session_id))

    @property
    def channel(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @staticmethod
    def pattern(kind: TopicKind) -> str:
        """Glob matching every channel of one kind."""
        return f"{kind.value}:*"

    @classmethod
    def from_channel(cls, channel: str) -> "Topic":
        """
        Raises:
            ValueError: unknown kind or non-integer id
        """
        kind, sep, raw_id = channel.partition(":")
        if not sep:
            raise ValueError(f"Malformed channel: {channel!r}")
        return cls(TopicKind(kind), int(raw_id))

    def __str__(self) -> str:
        return self.channel
