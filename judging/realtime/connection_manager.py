"""
WebSocket connection manager

Per-process state only: the sockets this worker holds and the topics each
one has joined. Frames are never delivered directly on publish; they go
through the broadcast adapter, and the relay task (one per process) hands
whatever arrives on "session:*" to the local subscribers. A single-worker
deployment and a multi-worker deployment therefore take the same path.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Set

from fastapi import WebSocket

from judging.core.timeutil import utcnow
from judging.security import Identity
from .broadcast_adapter import BroadcastAdapter
from .topics import Topic, TopicKind

logger = logging.getLogger(__name__)

RELAY_BACKOFF_SECONDS = [0.5, 1, 2, 5]


@dataclass
class ClientState:
    identity: Identity
    queue: asyncio.Queue
    sender: Optional[asyncio.Task] = None
    topics: Set[Topic] = field(default_factory=set)
    connected_at: Any = field(default_factory=utcnow)


class ConnectionManager:

    def __init__(
        self,
        broadcast_adapter: BroadcastAdapter,
        max_queue_size: int = 100,
        relay_backoff: Sequence[float] = RELAY_BACKOFF_SECONDS
    ):
        self.broadcast_adapter = broadcast_adapter
        self.max_queue_size = max_queue_size
        self.relay_backoff = list(relay_backoff)
        self.clients: Dict[WebSocket, ClientState] = {}
        self.subscribers: Dict[Topic, Set[WebSocket]] = {}
        self._relay: Optional[asyncio.Task] = None

    # ================= LIFECYCLE =================

    async def start(self) -> None:
        """Subscribe to every session channel and start relaying."""
        if self._relay is not None:
            return
        stream = await self.broadcast_adapter.psubscribe(Topic.pattern(TopicKind.SESSION))
        self._relay = asyncio.create_task(self._relay_loop(stream), name="broadcast-relay")
        logger.info("✓ Broadcast relay started")

    async def stop(self) -> None:
        if self._relay is not None:
            self._relay.cancel()
            try:
                await self._relay
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Broadcast relay exited with an error")
            self._relay = None
        for websocket in list(self.clients):
            await self.disconnect(websocket)
        logger.info("Broadcast relay stopped")

    @property
    def relay_running(self) -> bool:
        return self._relay is not None and not self._relay.done()

    async def _relay_loop(self, stream) -> None:
        """
        Hand adapter frames to local sockets until the adapter is closed.

        A subscription that fails (Redis connection dropped) is logged and
        replaced after a backoff; frames published in the gap are lost.
        """
        attempt = 0
        while True:
            if stream is None:
                try:
                    stream = await self.broadcast_adapter.psubscribe(Topic.pattern(TopicKind.SESSION))
                except Exception:
                    logger.exception("Broadcast relay could not resubscribe")
                    await self._relay_backoff(attempt)
                    attempt += 1
                    continue
                logger.info(f"✓ Broadcast relay resubscribed after {attempt} failure(s)")

            try:
                async for channel, message in stream:
                    attempt = 0
                    self._relay_frame(channel, message)
            except Exception:
                logger.exception("Broadcast relay subscription failed")
            else:
                # Adapter closed
                return

            stream = None
            await self._relay_backoff(attempt)
            attempt += 1

    async def _relay_backoff(self, attempt: int) -> None:
        delay = self.relay_backoff[min(attempt, len(self.relay_backoff) - 1)]
        logger.warning(f"Broadcast relay retry {attempt + 1} in {delay}s")
        await asyncio.sleep(delay)

    def _relay_frame(self, channel: str, message: Dict[str, Any]) -> None:
        try:
            topic = Topic.from_channel(channel)
        except ValueError:
            logger.warning(f"Ignoring frame on unknown channel {channel!r}")
            return
        self.deliver_local(topic, message)

    # ================= CONNECTIONS =================

    async def connect(self, websocket: WebSocket, identity: Identity) -> None:
        await websocket.accept()
        state = ClientState(identity=identity, queue=asyncio.Queue(maxsize=self.max_queue_size))
        state.sender = asyncio.create_task(self._message_sender(websocket, state.queue))
        self.clients[websocket] = state
        logger.info(f"Judge/Trader connected: {identity.role}:{identity.user_id}")

    async def disconnect(self, websocket: WebSocket) -> None:
        state = self.clients.pop(websocket, None)
        if state is None:
            return
        for topic in state.topics:
            self._remove_subscriber(topic, websocket)
        if state.sender is not None:
            state.sender.cancel()
        logger.info(f"Judge/Trader disconnected: {state.identity.role}:{state.identity.user_id}")

    def join(self, websocket: WebSocket, topic: Topic) -> None:
        state = self.clients.get(websocket)
        if state is None:
            return
        state.topics.add(topic)
        self.subscribers.setdefault(topic, set()).add(websocket)

    def leave(self, websocket: WebSocket, topic: Topic) -> None:
        state = self.clients.get(websocket)
        if state is not None:
            state.topics.discard(topic)
        self._remove_subscriber(topic, websocket)

    def _remove_subscriber(self, topic: Topic, websocket: WebSocket) -> None:
        members = self.subscribers.get(topic)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.subscribers[topic]

    # ================= DELIVERY =================

    async def publish(self, topic: Topic, event: str, data: Dict[str, Any]) -> None:
        """Publish a server frame to every process's subscribers of the topic."""
        message = {"event": event, "topic": topic.channel, "data": data}
        await self.broadcast_adapter.publish(topic.channel, message)

    def deliver_local(self, topic: Topic, message: Dict[str, Any]) -> int:
        """Queue a frame for this process's sockets on the topic. Returns the recipient count."""
        members = self.subscribers.get(topic)
        if not members:
            return 0
        serialized = json.dumps(message, sort_keys=True)
        for websocket in list(members):
            state = self.clients.get(websocket)
            if state is not None:
                self._enqueue(state.queue, serialized)
        return len(members)

    def send_to(self, websocket: WebSocket, message: Dict[str, Any]) -> None:
        """Queue a frame for a single socket (replies such as pong)."""
        state = self.clients.get(websocket)
        if state is not None:
            self._enqueue(state.queue, json.dumps(message, sort_keys=True))

    @staticmethod
    def _enqueue(queue: asyncio.Queue, serialized: str) -> None:
        try:
            queue.put_nowait(serialized)
        except asyncio.QueueFull:
            # Slow consumer: drop the oldest frame
            try:
                queue.get_nowait()
                queue.put_nowait(serialized)
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                logger.warning("Dropped frame for slow websocket consumer")

    async def _message_sender(self, websocket: WebSocket, queue: asyncio.Queue) -> None:
        while True:
            message = await queue.get()
            try:
                await websocket.send_text(message)
            except Exception as e:
                logger.info(f"WebSocket send failed, stopping sender: {type(e).__name__}")
                break

    def get_connection_count(self, topic: Optional[Topic] = None) -> int:
        if topic is not None:
            return len(self.subscribers.get(topic, ()))
        return len(self.clients)
