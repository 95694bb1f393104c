"""
Trading Engine

A trade is an over/under position on a live session's consensus, priced
at the consensus at placement time (50 when no judge has rated yet).

Placement is one unit of work: the balance debit and the pending Trade row
commit together or not at all. The debit is a conditional UPDATE so two
concurrent placements can never overdraw a balance, and the partial unique
index on pending trades rejects a second open position on the same session.
"""
import logging
import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from judging.core.timeutil import utcnow
from judging.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from judging.orm.catalog import Song
from judging.orm.judging_session import JudgingSession, SessionStatus
from judging.orm.trading import Trade, TradeDirection, Trader, TradeStatus, STARTING_BALANCE
from judging.security import Identity
from judging.services.consensus_service import SENTIMENT_PLACES, compute_consensus

logger = logging.getLogger(__name__)

MAX_TRADE_AMOUNT = Decimal("50")
DEFAULT_ENTRY_SENTIMENT = Decimal("50")
MONEY_PLACES = Decimal("0.01")
HISTORY_DEFAULT_LIMIT = 20
HISTORY_MAX_LIMIT = 50

DUPLICATE_TRADE_MESSAGE = "You already have an active trade on this session"


def parse_direction(value: Any) -> TradeDirection:
    if isinstance(value, TradeDirection):
        return value
    try:
        return TradeDirection(str(value).lower())
    except ValueError:
        raise ValidationError('Direction must be "over" or "under"')


def parse_amount(value: Any) -> Decimal:
    """Validate 0 < amount <= 50 and quantize to cents."""
    if isinstance(value, bool):
        raise ValidationError("Amount must be between 0.01 and 50")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError("Amount must be between 0.01 and 50")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be between 0.01 and 50")
    if not amount.is_finite() or amount <= 0 or amount > MAX_TRADE_AMOUNT:
        raise ValidationError("Amount must be between 0.01 and 50")

    amount = amount.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise ValidationError("Amount must be between 0.01 and 50")
    return amount


async def _find_trader(db: AsyncSession, identity: Identity) -> Optional[Trader]:
    result = await db.execute(
        select(Trader).where(
            Trader.user_id == identity.user_id,
            Trader.user_role == identity.role
        )
    )
    return result.scalar_one_or_none()


async def get_or_create_trader(db: AsyncSession, identity: Identity) -> Trader:
    """Trader profile for the identity, created with the starting balance on first use."""
    trader = await _find_trader(db, identity)
    if trader:
        return trader

    trader = Trader(
        user_id=identity.user_id,
        user_role=identity.role,
        balance=STARTING_BALANCE,
    )
    db.add(trader)
    try:
        await db.commit()
    except IntegrityError:
        # Created concurrently by another request
        await db.rollback()
        trader = await _find_trader(db, identity)
        if trader is None:
            raise
        return trader

    await db.refresh(trader)
    logger.info(f"Trader {trader.id} created for {identity.role}:{identity.user_id}")
    return trader


async def place_trade(
    db: AsyncSession,
    identity: Identity,
    session_id: int,
    direction: Any,
    amount: Any,
    now: Optional[datetime] = None
) -> Trade:
    """
    Open an over/under position on a live session.

    Raises:
        ValidationError: bad direction or amount, insufficient balance
        NotFoundError: session does not exist
        InvalidStateError: session not live, or trading window closed
        ConflictError: a pending trade already exists for this session
    """
    now = now or utcnow()
    direction = parse_direction(direction)
    amount = parse_amount(amount)

    session_result = await db.execute(select(JudgingSession).where(JudgingSession.id == session_id))
    session = session_result.scalar_one_or_none()
    if not session:
        raise NotFoundError("Session")
    if session.status != SessionStatus.LIVE:
        raise InvalidStateError("Session is not live")
    if not session.is_trading_open(now):
        raise InvalidStateError("Trading window has closed")

    trader = await get_or_create_trader(db, identity)
    if trader.balance < amount:
        raise ValidationError("Insufficient balance")

    existing = await db.execute(
        select(Trade.id).where(
            Trade.session_id == session_id,
            Trade.user_id == identity.user_id,
            Trade.user_role == identity.role,
            Trade.status == TradeStatus.PENDING
        )
    )
    if existing.first() is not None:
        raise ConflictError(DUPLICATE_TRADE_MESSAGE)

    consensus = await compute_consensus(db, session_id)
    entry_sentiment = (
        consensus.consensus if consensus.consensus is not None else DEFAULT_ENTRY_SENTIMENT
    ).quantize(SENTIMENT_PLACES)

    try:
        debit = await db.execute(
            update(Trader)
            .where(Trader.id == trader.id, Trader.balance >= amount)
            .values(
                balance=Trader.balance - amount,
                total_trades=Trader.total_trades + 1,
                last_trade_at=now
            )
        )
        if debit.rowcount == 0:
            await db.rollback()
            raise ValidationError("Insufficient balance")

        trade = Trade(
            session_id=session_id,
            user_id=identity.user_id,
            user_role=identity.role,
            trader_id=trader.id,
            direction=direction,
            entry_sentiment=entry_sentiment,
            amount=amount,
            status=TradeStatus.PENDING,
            created_at=now,
        )
        db.add(trade)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(f"Duplicate pending trade rejected: session={session_id} user={identity.role}:{identity.user_id}")
        raise ConflictError(DUPLICATE_TRADE_MESSAGE)

    await db.refresh(trade)
    logger.info(
        f"Trade {trade.id} placed: session={session_id} {direction.value} "
        f"amount={amount} entry={entry_sentiment}"
    )
    return trade


async def list_active_trades(db: AsyncSession, identity: Identity):
    result = await db.execute(
        select(Trade, JudgingSession, Song)
        .join(JudgingSession, Trade.session_id == JudgingSession.id)
        .join(Song, JudgingSession.song_id == Song.id)
        .where(
            Trade.user_id == identity.user_id,
            Trade.user_role == identity.role,
            Trade.status == TradeStatus.PENDING
        )
        .order_by(Trade.created_at.desc(), Trade.id.desc())
    )
    trades = []
    for trade, session, song in result.all():
        data = trade.to_dict()
        data["session_title"] = session.title
        data["session_status"] = session.status.value
        data["song_title"] = song.title
        data["song_artist"] = song.artist
        trades.append(data)
    return trades


def clamp_history_limit(limit: Optional[int]) -> int:
    if not limit or limit < 1:
        return HISTORY_DEFAULT_LIMIT
    return min(limit, HISTORY_MAX_LIMIT)


async def list_trade_history(
    db: AsyncSession,
    identity: Identity,
    page: Optional[int] = 1,
    limit: Optional[int] = HISTORY_DEFAULT_LIMIT
) -> Dict[str, Any]:
    """Settled trades, newest settlement first, paginated."""
    page = page if page and page > 0 else 1
    limit = clamp_history_limit(limit)
    offset = (page - 1) * limit

    result = await db.execute(
        select(Trade, JudgingSession, Song)
        .join(JudgingSession, Trade.session_id == JudgingSession.id)
        .join(Song, JudgingSession.song_id == Song.id)
        .where(
            Trade.user_id == identity.user_id,
            Trade.user_role == identity.role,
            Trade.status == TradeStatus.SETTLED
        )
        .order_by(Trade.settled_at.desc(), Trade.id.desc())
        .limit(limit)
        .offset(offset)
    )
    trades = []
    for trade, session, song in result.all():
        data = trade.to_dict()
        data["session_title"] = session.title
        data["song_title"] = song.title
        data["song_artist"] = song.artist
        trades.append(data)

    count_result = await db.execute(
        select(func.count(Trade.id)).where(
            Trade.user_id == identity.user_id,
            Trade.user_role == identity.role,
            Trade.status == TradeStatus.SETTLED
        )
    )
    total = count_result.scalar() or 0

    return {
        "trades": trades,
        "total": total,
        "page": page,
        "pages": math.ceil(total / limit),
    }
