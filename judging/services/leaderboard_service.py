"""
Trader and judge leaderboards

Traders rank by profit over settled trades in the requested period:
a win counts payout - amount, a loss counts -amount, a push counts 0.
Traders with no settled trades in the period still appear with 0.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from judging.core.timeutil import utcnow, isoformat
from judging.errors import ValidationError
from judging.orm.base import as_float
from judging.orm.judge import Judge, JudgeStatus
from judging.orm.trading import Trade, Trader, TradeOutcome, TradeStatus
from judging.services.collaborators import SqlUserDirectory, UserDirectory

logger = logging.getLogger(__name__)

LEADERBOARD_LIMIT = 50
UNKNOWN_USERNAME = "Unknown"

PERIODS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
    "alltime": None,
}


def period_start(period: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Earliest settled_at included for the period; None means all time."""
    if not period:
        return None
    if period not in PERIODS:
        raise ValidationError(
            f"Invalid period '{period}'. Expected one of: {', '.join(PERIODS)}"
        )
    window = PERIODS[period]
    if window is None:
        return None
    return (now or utcnow()) - window


async def trader_leaderboard(
    db: AsyncSession,
    period: Optional[str] = None,
    users: Optional[UserDirectory] = None,
    now: Optional[datetime] = None
) -> List[Dict[str, Any]]:
    since = period_start(period, now)

    join_on = and_(Trade.trader_id == Trader.id, Trade.status == TradeStatus.SETTLED)
    if since is not None:
        join_on = and_(join_on, Trade.settled_at >= since)

    trade_profit = case(
        (Trade.outcome == TradeOutcome.WIN, Trade.payout - Trade.amount),
        (Trade.outcome == TradeOutcome.LOSS, -Trade.amount),
        else_=0
    )
    period_profit = func.coalesce(func.sum(trade_profit), 0).label("period_profit")

    result = await db.execute(
        select(Trader, period_profit)
        .outerjoin(Trade, join_on)
        .group_by(Trader.id)
        .order_by(period_profit.desc(), Trader.id.asc())
        .limit(LEADERBOARD_LIMIT)
    )
    rows = result.all()

    users = users or SqlUserDirectory(db)
    names = await users.get_usernames((t.user_id, t.user_role) for t, _ in rows)

    leaderboard = []
    for trader, profit in rows:
        leaderboard.append({
            "id": trader.id,
            "user_id": trader.user_id,
            "user_role": trader.user_role,
            "username": names.get((trader.user_id, trader.user_role), UNKNOWN_USERNAME),
            "balance": as_float(trader.balance),
            "total_trades": trader.total_trades,
            "winning_trades": trader.winning_trades,
            "best_streak": trader.best_streak,
            "period_profit": float(
                Decimal(str(profit or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            ),
        })
    return leaderboard


async def judge_leaderboard(
    db: AsyncSession,
    users: Optional[UserDirectory] = None
) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(Judge)
        .where(Judge.status == JudgeStatus.ACTIVE)
        .order_by(Judge.accuracy_score.desc(), Judge.sessions_judged.desc(), Judge.id.asc())
        .limit(LEADERBOARD_LIMIT)
    )
    judges = list(result.scalars().all())

    users = users or SqlUserDirectory(db)
    names = await users.get_usernames((j.user_id, j.user_role) for j in judges)

    return [
        {
            "id": judge.id,
            "user_id": judge.user_id,
            "user_role": judge.user_role,
            "username": names.get((judge.user_id, judge.user_role), UNKNOWN_USERNAME),
            "accuracy_score": as_float(judge.accuracy_score),
            "total_ratings": judge.total_ratings,
            "sessions_judged": judge.sessions_judged,
            "created_at": isoformat(judge.created_at),
        }
        for judge in judges
    ]
