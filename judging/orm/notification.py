"""
In-app notifications written by the notification outbox.
"""
from typing import Any, Dict

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, JSON, Index

from judging.core.timeutil import utcnow, isoformat
from judging.orm.base import Base


class NotificationKind:
    TRADE_SETTLED = "trade_settled"
    SCREENING_PASSED = "screening_passed"
    SCREENING_FAILED = "screening_failed"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    user_role = Column(String(20), nullable=False)
    kind = Column(String(40), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_notification_identity_read", "user_id", "user_role", "read"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "title": self.title,
            "body": self.body,
            "payload": self.payload,
            "read": self.read,
            "created_at": isoformat(self.created_at),
        }
