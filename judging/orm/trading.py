"""
Trading ORM models

Trader balances are play money (Numeric, two decimal places).
A Trade is written once at placement (pending) and once at settlement.
At most one pending trade may exist per (session, user): enforced by a
partial unique index so concurrent placements cannot both commit.
"""
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Dict

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, ForeignKey, Index,
    UniqueConstraint, text
)
from sqlalchemy.orm import relationship

from judging.core.timeutil import utcnow, isoformat
from judging.orm.base import Base, as_float, enum_column

STARTING_BALANCE = Decimal("100.00")


class TradeDirection(PyEnum):
    OVER = "over"
    UNDER = "under"


class TradeOutcome(PyEnum):
    WIN = "win"
    LOSS = "loss"
    PUSH = "push"


class TradeStatus(PyEnum):
    PENDING = "pending"
    SETTLED = "settled"


class Trader(Base):
    __tablename__ = "traders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    user_role = Column(String(20), nullable=False)
    balance = Column(Numeric(12, 2), nullable=False, default=STARTING_BALANCE)
    total_trades = Column(Integer, nullable=False, default=0)
    winning_trades = Column(Integer, nullable=False, default=0)
    losing_trades = Column(Integer, nullable=False, default=0)
    total_profit_loss = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    current_streak = Column(Integer, nullable=False, default=0)
    best_streak = Column(Integer, nullable=False, default=0)
    last_trade_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    trades = relationship("Trade", back_populates="trader")

    __table_args__ = (
        UniqueConstraint("user_id", "user_role", name="uq_trader_identity"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_role": self.user_role,
            "balance": as_float(self.balance),
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "total_profit_loss": as_float(self.total_profit_loss),
            "current_streak": self.current_streak,
            "best_streak": self.best_streak,
            "last_trade_at": isoformat(self.last_trade_at),
            "created_at": isoformat(self.created_at),
        }


class Trade(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer,
        ForeignKey("judging_sessions.id", ondelete="CASCADE"),
        nullable=False
    )
    user_id = Column(String(64), nullable=False)
    user_role = Column(String(20), nullable=False)
    trader_id = Column(
        Integer,
        ForeignKey("traders.id", ondelete="CASCADE"),
        nullable=False
    )
    direction = Column(enum_column(TradeDirection), nullable=False)
    entry_sentiment = Column(Numeric(9, 4), nullable=False)
    final_sentiment = Column(Numeric(9, 4), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    payout = Column(Numeric(10, 2), nullable=True)
    outcome = Column(enum_column(TradeOutcome), nullable=True)
    status = Column(
        enum_column(TradeStatus),
        nullable=False,
        default=TradeStatus.PENDING
    )
    created_at = Column(DateTime, nullable=False, default=utcnow)
    settled_at = Column(DateTime, nullable=True)

    trader = relationship("Trader", back_populates="trades")
    session = relationship("JudgingSession")

    __table_args__ = (
        Index(
            "uq_trade_one_pending_per_user",
            "session_id", "user_id", "user_role",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("idx_trade_session_status", "session_id", "status"),
        Index("idx_trade_trader_settled", "trader_id", "status", "settled_at"),
    )

    def is_pending(self) -> bool:
        return self.status == TradeStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "user_role": self.user_role,
            "trader_id": self.trader_id,
            "direction": self.direction.value if self.direction else None,
            "entry_sentiment": as_float(self.entry_sentiment),
            "final_sentiment": as_float(self.final_sentiment),
            "amount": as_float(self.amount),
            "payout": as_float(self.payout),
            "outcome": self.outcome.value if self.outcome else None,
            "status": self.status.value if self.status else None,
            "created_at": isoformat(self.created_at),
            "settled_at": isoformat(self.settled_at),
        }
