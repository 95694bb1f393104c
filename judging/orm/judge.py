"""
Judge qualification ORM models

- JudgeApplication: one row per attempt; screening result recorded on it
- Judge: created once an application passes screening, unique per identity
- AnchorSong: reference ratings used only for screening
"""
from enum import Enum as PyEnum
from typing import Any, Dict

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, Numeric,
    ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from judging.core.timeutil import utcnow, isoformat
from judging.orm.base import Base, as_float, enum_column


class ApplicationStatus(PyEnum):
    PENDING = "pending"
    SCREENING = "screening"
    APPROVED = "approved"
    REJECTED = "rejected"


class JudgeStatus(PyEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class JudgeApplication(Base):
    __tablename__ = "judge_applications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    user_role = Column(String(20), nullable=False)
    music_background = Column(Text, nullable=True)
    genres_familiar = Column(Text, nullable=True)
    status = Column(
        enum_column(ApplicationStatus),
        nullable=False,
        default=ApplicationStatus.SCREENING
    )
    screening_score = Column(Numeric(6, 2), nullable=True)
    screening_deviation = Column(Numeric(6, 2), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    next_attempt_date = Column(DateTime, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    reviewed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_judge_app_identity_created", "user_id", "user_role", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_role": self.user_role,
            "music_background": self.music_background,
            "genres_familiar": self.genres_familiar,
            "status": self.status.value if self.status else None,
            "screening_score": as_float(self.screening_score),
            "screening_deviation": as_float(self.screening_deviation),
            "rejection_reason": self.rejection_reason,
            "next_attempt_date": isoformat(self.next_attempt_date),
            "attempt_count": self.attempt_count,
            "created_at": isoformat(self.created_at),
            "reviewed_at": isoformat(self.reviewed_at),
        }


class Judge(Base):
    __tablename__ = "judges"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    user_role = Column(String(20), nullable=False)
    status = Column(
        enum_column(JudgeStatus),
        nullable=False,
        default=JudgeStatus.ACTIVE
    )
    accuracy_score = Column(Numeric(6, 2), nullable=False, default=0)
    total_ratings = Column(Integer, nullable=False, default=0)
    sessions_judged = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    snapshots = relationship("RatingSnapshot", back_populates="judge")

    __table_args__ = (
        UniqueConstraint("user_id", "user_role", name="uq_judge_identity"),
    )

    def is_active(self) -> bool:
        return self.status == JudgeStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_role": self.user_role,
            "status": self.status.value if self.status else None,
            "accuracy_score": as_float(self.accuracy_score),
            "total_ratings": self.total_ratings,
            "sessions_judged": self.sessions_judged,
            "created_at": isoformat(self.created_at),
        }


class AnchorSong(Base):
    __tablename__ = "anchor_songs"

    id = Column(Integer, primary_key=True, index=True)
    song_id = Column(
        Integer,
        ForeignKey("songs.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )
    correct_rating = Column(Integer, nullable=False)
    tolerance = Column(Integer, nullable=False, default=10)
    genre = Column(String(50), nullable=True)
    difficulty = Column(String(20), nullable=False, default="medium")
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    song = relationship("Song")

    def to_dict(self, include_answer: bool = True) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "song_id": self.song_id,
            "genre": self.genre,
            "difficulty": self.difficulty,
            "active": self.active,
            "created_at": isoformat(self.created_at),
        }
        if include_answer:
            result["correct_rating"] = self.correct_rating
            result["tolerance"] = self.tolerance
        return result
