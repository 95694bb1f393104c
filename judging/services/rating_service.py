"""
Rating Ledger

Appends judge rating snapshots during a live session. Submissions that do
not qualify are dropped without an error reaching the sender: the caller
only learns that nothing was recorded.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from judging.core.timeutil import utcnow
from judging.orm.judge import Judge, JudgeStatus
from judging.orm.judging_session import JudgingSession, RatingSnapshot, SessionStatus
from judging.security import Identity
from judging.services.consensus_service import ConsensusResult, compute_consensus

logger = logging.getLogger(__name__)

MIN_RATING = 0
MAX_RATING = 100


@dataclass(frozen=True)
class RecordedRating:
    snapshot: RatingSnapshot
    consensus: ConsensusResult


def normalize_rating(raw: Any) -> Optional[int]:
    """
    Clamp to [0, 100] and round half away from zero.

    Returns None for anything that is not a finite number (booleans included).
    """
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.strip()
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None

    value = min(max(value, MIN_RATING), MAX_RATING)
    try:
        return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return None


async def record_rating(
    db: AsyncSession,
    session_id: Any,
    identity: Identity,
    raw_rating: Any,
    now: Optional[datetime] = None
) -> Optional[RecordedRating]:
    """
    Store one rating and return the recomputed consensus.

    Returns None (nothing stored) when the rating is not numeric, the sender
    is not an active judge, or the session is not live. The trading window
    does not affect rating.
    """
    rating = normalize_rating(raw_rating)
    if rating is None:
        logger.debug(f"Dropped non-numeric rating from {identity.role}:{identity.user_id}")
        return None

    try:
        session_id = int(session_id)
    except (TypeError, ValueError):
        return None

    judge_result = await db.execute(
        select(Judge).where(
            Judge.user_id == identity.user_id,
            Judge.user_role == identity.role,
            Judge.status == JudgeStatus.ACTIVE
        )
    )
    judge = judge_result.scalar_one_or_none()
    if not judge:
        logger.debug(f"Dropped rating: {identity.role}:{identity.user_id} is not an active judge")
        return None

    session_result = await db.execute(
        select(JudgingSession.status).where(JudgingSession.id == session_id)
    )
    status = session_result.scalar_one_or_none()
    if status != SessionStatus.LIVE:
        logger.debug(f"Dropped rating for session {session_id}: not live")
        return None

    snapshot = RatingSnapshot(
        session_id=session_id,
        judge_id=judge.id,
        rating=rating,
        timestamp=now or utcnow()
    )
    db.add(snapshot)
    await db.commit()

    consensus = await compute_consensus(db, session_id)
    return RecordedRating(snapshot=snapshot, consensus=consensus)
