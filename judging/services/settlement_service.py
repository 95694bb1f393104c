"""
Settlement Engine

Closes a live session against its final consensus:

1. lock the session row and check it has not been settled
2. final consensus over the full ledger (0 when nobody rated)
3. session → completed
4. resolve every pending trade: push, then win, then loss
5. apply trader balance/stat deltas as SQL expressions
6. credit judges with the session and their snapshot count

Steps 3-6 commit as one transaction. If anything fails before the commit
the whole settlement rolls back and the session stays live, so the admin
can simply run it again. The session-ended broadcast and trade
notifications go out only after the commit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update, case, func
from sqlalchemy.ext.asyncio import AsyncSession

from judging.core.timeutil import utcnow
from judging.errors import InvalidStateError, NotFoundError
from judging.orm.judge import Judge
from judging.orm.judging_session import JudgingSession, RatingSnapshot, SessionStatus
from judging.orm.notification import NotificationKind
from judging.orm.trading import Trade, TradeDirection, TradeOutcome, Trader, TradeStatus
from judging.realtime.connection_manager import ConnectionManager
from judging.realtime.topics import Topic, SESSION_ENDED
from judging.services.consensus_service import SENTIMENT_PLACES, compute_consensus
from judging.services.notification_service import NotificationDispatcher, OutboundNotification

logger = logging.getLogger(__name__)

PUSH_THRESHOLD = Decimal("0.5")
WIN_MULTIPLIER = Decimal("1.8")
MONEY_PLACES = Decimal("0.01")
REPORT_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class SettlementResult:
    session_id: int
    final_consensus: Decimal
    judge_count: int
    trades_settled: int

    @property
    def rounded_consensus(self) -> float:
        return float(self.final_consensus.quantize(REPORT_PLACES, rounding=ROUND_HALF_UP))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "finalConsensus": self.rounded_consensus,
            "judgeCount": self.judge_count,
            "tradesSettled": self.trades_settled,
        }

    def event_data(self) -> Dict[str, Any]:
        data = self.to_dict()
        data["sessionId"] = self.session_id
        return data


def resolve_trade(
    direction: TradeDirection,
    entry: Decimal,
    final: Decimal,
    amount: Decimal
) -> Tuple[TradeOutcome, Decimal]:
    """
    Outcome and payout for one trade.

    A push (|final - entry| < 0.5) refunds the stake and is checked first,
    so a near-exact match never counts as a directional win. A win pays
    1.8x the stake; a loss pays nothing.
    """
    if abs(final - entry) < PUSH_THRESHOLD:
        return TradeOutcome.PUSH, amount
    if (direction == TradeDirection.OVER and final > entry) or \
            (direction == TradeDirection.UNDER and final < entry):
        return TradeOutcome.WIN, (amount * WIN_MULTIPLIER).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
    return TradeOutcome.LOSS, Decimal("0.00")


def _trader_update(trader_id: int, outcome: TradeOutcome, amount: Decimal, payout: Decimal):
    stmt = update(Trader).where(Trader.id == trader_id)
    if outcome == TradeOutcome.WIN:
        return stmt.values(
            balance=Trader.balance + payout,
            winning_trades=Trader.winning_trades + 1,
            current_streak=Trader.current_streak + 1,
            best_streak=case(
                (Trader.best_streak > Trader.current_streak, Trader.best_streak),
                else_=Trader.current_streak + 1
            ),
            total_profit_loss=Trader.total_profit_loss + (payout - amount),
        )
    if outcome == TradeOutcome.LOSS:
        return stmt.values(
            losing_trades=Trader.losing_trades + 1,
            current_streak=0,
            total_profit_loss=Trader.total_profit_loss - amount,
        )
    return stmt.values(balance=Trader.balance + payout)


async def settle_session(
    db: AsyncSession,
    session_id: int,
    manager: Optional[ConnectionManager] = None,
    notifier: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None
) -> SettlementResult:
    """
    Settle a session and resolve its pending trades.

    Raises:
        NotFoundError: session does not exist
        InvalidStateError: session already completed
    """
    now = now or utcnow()

    try:
        result = await db.execute(
            select(JudgingSession)
            .where(JudgingSession.id == session_id)
            .with_for_update()
        )
        session = result.scalar_one_or_none()
        if not session:
            raise NotFoundError("Session")
        if session.status == SessionStatus.COMPLETED:
            raise InvalidStateError("Session already settled")

        consensus = await compute_consensus(db, session_id)
        final = consensus.consensus if consensus.consensus is not None else Decimal("0")
        final = final.quantize(SENTIMENT_PLACES)

        session.status = SessionStatus.COMPLETED
        session.final_consensus = final
        session.judge_count = consensus.judge_count
        session.end_time = now

        trades_result = await db.execute(
            select(Trade).where(
                Trade.session_id == session_id,
                Trade.status == TradeStatus.PENDING
            ).order_by(Trade.id)
        )
        trades: List[Trade] = list(trades_result.scalars().all())

        outcomes = []
        for trade in trades:
            outcome, payout = resolve_trade(trade.direction, trade.entry_sentiment, final, trade.amount)
            trade.status = TradeStatus.SETTLED
            trade.outcome = outcome
            trade.final_sentiment = final
            trade.payout = payout
            trade.settled_at = now
            await db.execute(
                _trader_update(trade.trader_id, outcome, trade.amount, payout)
                .execution_options(synchronize_session=False)
            )
            outcomes.append((trade, outcome, payout))

        judge_counts = await db.execute(
            select(RatingSnapshot.judge_id, func.count(RatingSnapshot.id))
            .where(RatingSnapshot.session_id == session_id)
            .group_by(RatingSnapshot.judge_id)
        )
        for judge_id, snapshot_count in judge_counts.all():
            await db.execute(
                update(Judge)
                .where(Judge.id == judge_id)
                .values(
                    sessions_judged=Judge.sessions_judged + 1,
                    total_ratings=Judge.total_ratings + snapshot_count,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    settlement = SettlementResult(
        session_id=session_id,
        final_consensus=final,
        judge_count=consensus.judge_count,
        trades_settled=len(trades),
    )
    logger.info(
        f"✓ Session {session_id} settled: final={settlement.rounded_consensus} "
        f"judges={settlement.judge_count} trades={settlement.trades_settled}"
    )

    if manager is not None:
        try:
            await manager.publish(Topic.session(session_id), SESSION_ENDED, settlement.event_data())
        except Exception:
            logger.exception(f"Failed to broadcast session-ended for session {session_id}")

    if notifier is not None:
        for trade, outcome, payout in outcomes:
            notifier.enqueue(_trade_notification(session, trade, outcome, payout, settlement))

    return settlement


def _trade_notification(
    session: JudgingSession,
    trade: Trade,
    outcome: TradeOutcome,
    payout: Decimal,
    settlement: SettlementResult
) -> OutboundNotification:
    if outcome == TradeOutcome.WIN:
        body = f"Your {trade.direction.value} trade won {payout - trade.amount:.2f} on \"{session.title}\"."
    elif outcome == TradeOutcome.LOSS:
        body = f"Your {trade.direction.value} trade lost {trade.amount:.2f} on \"{session.title}\"."
    else:
        body = f"Your {trade.direction.value} trade on \"{session.title}\" was a push; {payout:.2f} refunded."
    return OutboundNotification(
        user_id=trade.user_id,
        user_role=trade.user_role,
        kind=NotificationKind.TRADE_SETTLED,
        title=f"Trade settled: {outcome.value}",
        body=body,
        payload={
            "sessionId": session.id,
            "tradeId": trade.id,
            "outcome": outcome.value,
            "payout": float(payout),
            "finalConsensus": settlement.rounded_consensus,
        },
    )
