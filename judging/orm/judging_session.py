"""
Judging session ORM models

State flow: scheduled → live → completed (terminal)

RatingSnapshot rows are append-only; only the newest row per judge counts
toward consensus. Snapshots go away with their session, never at settlement.
"""
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Dict, Optional

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, ForeignKey, Index
)
from sqlalchemy.orm import relationship

from judging.core.timeutil import utcnow, isoformat
from judging.orm.base import Base, as_float, enum_column


class SessionStatus(PyEnum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    COMPLETED = "completed"


class JudgingSession(Base):
    __tablename__ = "judging_sessions"

    id = Column(Integer, primary_key=True, index=True)
    song_id = Column(
        Integer,
        ForeignKey("songs.id", ondelete="CASCADE"),
        nullable=False
    )
    title = Column(String(255), nullable=False)
    status = Column(
        enum_column(SessionStatus),
        nullable=False,
        default=SessionStatus.SCHEDULED
    )
    scheduled_start = Column(DateTime, nullable=True)
    actual_start = Column(DateTime, nullable=True)
    trading_window_end = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    final_consensus = Column(Numeric(9, 4), nullable=True)
    judge_count = Column(Integer, nullable=False, default=0)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    song = relationship("Song")
    snapshots = relationship(
        "RatingSnapshot",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True
    )

    __table_args__ = (
        Index("idx_judging_session_status", "status", "scheduled_start"),
    )

    def is_live(self) -> bool:
        return self.status == SessionStatus.LIVE

    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    def is_trading_open(self, now: Optional[datetime] = None) -> bool:
        """Live, and either no trading window or the window has not ended yet."""
        if self.status != SessionStatus.LIVE:
            return False
        if self.trading_window_end is None:
            return True
        return self.trading_window_end > (now or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "song_id": self.song_id,
            "title": self.title,
            "status": self.status.value if self.status else None,
            "scheduled_start": isoformat(self.scheduled_start),
            "actual_start": isoformat(self.actual_start),
            "trading_window_end": isoformat(self.trading_window_end),
            "end_time": isoformat(self.end_time),
            "final_consensus": as_float(self.final_consensus),
            "judge_count": self.judge_count,
            "created_at": isoformat(self.created_at),
        }


class RatingSnapshot(Base):
    __tablename__ = "judge_rating_snapshots"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer,
        ForeignKey("judging_sessions.id", ondelete="CASCADE"),
        nullable=False
    )
    judge_id = Column(
        Integer,
        ForeignKey("judges.id", ondelete="CASCADE"),
        nullable=False
    )
    rating = Column(Integer, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow)

    session = relationship("JudgingSession", back_populates="snapshots")
    judge = relationship("Judge", back_populates="snapshots")

    __table_args__ = (
        Index("idx_snapshot_session_judge_ts", "session_id", "judge_id", "timestamp"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "judge_id": self.judge_id,
            "rating": self.rating,
            "timestamp": isoformat(self.timestamp),
        }
