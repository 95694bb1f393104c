"""
In-app notifications

Outbound notifications are best effort. Request handlers enqueue a message
on the NotificationDispatcher and return; a single worker task drains the
queue and hands each message to the sender. Send failures are logged with
their traceback and never reach the request that enqueued them.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from judging.errors import NotFoundError
from judging.orm.notification import Notification
from judging.security import Identity

logger = logging.getLogger(__name__)

NOTIFICATION_LIST_LIMIT = 50


@dataclass(frozen=True)
class OutboundNotification:
    user_id: str
    user_role: str
    kind: str
    title: str
    body: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


NotificationSender = Callable[[OutboundNotification], Awaitable[None]]


class NotificationDispatcher:
    """Queue plus one worker task that delivers notifications in order."""

    def __init__(self, sender: NotificationSender, max_queue_size: int = 1000):
        self.sender = sender
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._worker: Optional[asyncio.Task] = None
        self.sent = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")
        logger.info("✓ Notification dispatcher started")

    async def stop(self) -> None:
        """Deliver what is already queued, then stop the worker."""
        if not self.running:
            return
        await self.queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info(f"Notification dispatcher stopped (sent={self.sent}, failed={self.failed})")

    def enqueue(self, notification: OutboundNotification) -> bool:
        """Queue a notification. Returns False (and logs) when the queue is full."""
        try:
            self.queue.put_nowait(notification)
            return True
        except asyncio.QueueFull:
            self.failed += 1
            logger.error(
                f"Notification queue full, dropped {notification.kind} "
                f"for {notification.user_role}:{notification.user_id}"
            )
            return False

    async def drain(self) -> None:
        """Wait until every queued notification has been handled."""
        await self.queue.join()

    async def _run(self) -> None:
        while True:
            notification = await self.queue.get()
            try:
                await self.sender(notification)
                self.sent += 1
            except Exception:
                self.failed += 1
                logger.exception(
                    f"Failed to deliver {notification.kind} notification "
                    f"to {notification.user_role}:{notification.user_id}"
                )
            finally:
                self.queue.task_done()


def database_sender(session_factory) -> NotificationSender:
    """Sender that persists each notification as an in-app row."""

    async def send(notification: OutboundNotification) -> None:
        async with session_factory() as db:
            db.add(Notification(
                user_id=notification.user_id,
                user_role=notification.user_role,
                kind=notification.kind,
                title=notification.title,
                body=notification.body,
                payload=notification.payload or None,
            ))
            await db.commit()

    return send


# ================= READ SIDE =================

async def list_notifications(
    db: AsyncSession,
    identity: Identity,
    unread_only: bool = False
) -> Dict[str, Any]:
    query = select(Notification).where(
        Notification.user_id == identity.user_id,
        Notification.user_role == identity.role
    )
    if unread_only:
        query = query.where(Notification.read.is_(False))
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(NOTIFICATION_LIST_LIMIT)

    result = await db.execute(query)
    notifications: List[Notification] = list(result.scalars().all())

    count_result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == identity.user_id,
            Notification.user_role == identity.role,
            Notification.read.is_(False)
        )
    )
    return {
        "notifications": [n.to_dict() for n in notifications],
        "unread_count": count_result.scalar() or 0,
    }


async def mark_read(db: AsyncSession, identity: Identity, notification_id: int) -> None:
    result = await db.execute(
        update(Notification)
        .where(
            Notification.id == notification_id,
            Notification.user_id == identity.user_id,
            Notification.user_role == identity.role
        )
        .values(read=True)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise NotFoundError("Notification")
    await db.commit()


async def mark_all_read(db: AsyncSession, identity: Identity) -> int:
    result = await db.execute(
        update(Notification)
        .where(
            Notification.user_id == identity.user_id,
            Notification.user_role == identity.role,
            Notification.read.is_(False)
        )
        .values(read=True)
    )
    await db.commit()
    return result.rowcount
