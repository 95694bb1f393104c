"""
Consensus Calculator

Consensus for a session is the arithmetic mean of each judge's most recent
rating snapshot. Older snapshots never count, so a late-arriving
out-of-order snapshot cannot move the value.

Judges with two snapshots at the identical timestamp resolve to whichever
row the datastore numbers first.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from judging.core.timeutil import isoformat
from judging.orm.judging_session import RatingSnapshot

logger = logging.getLogger(__name__)

SENTIMENT_PLACES = Decimal("0.0001")
HISTORY_BUCKET_SECONDS = 5


@dataclass(frozen=True)
class ConsensusResult:
    """Consensus value (None until at least one judge has rated) and contributing judges."""
    consensus: Optional[Decimal]
    judge_count: int

    @property
    def has_consensus(self) -> bool:
        return self.consensus is not None

    def as_float(self, places: int = 4) -> Optional[float]:
        if self.consensus is None:
            return None
        return float(round(self.consensus, places))


def mean_rating(ratings: List[int]) -> Optional[Decimal]:
    """Mean of integer ratings as a Decimal with 4 places; None for no ratings."""
    if not ratings:
        return None
    total = Decimal(sum(ratings))
    return (total / Decimal(len(ratings))).quantize(SENTIMENT_PLACES, rounding=ROUND_HALF_UP)


async def latest_ratings(db: AsyncSession, session_id: int) -> Dict[int, int]:
    """Map judge_id -> rating of that judge's newest snapshot for the session."""
    ranked = (
        select(
            RatingSnapshot.judge_id.label("judge_id"),
            RatingSnapshot.rating.label("rating"),
            func.row_number().over(
                partition_by=RatingSnapshot.judge_id,
                order_by=RatingSnapshot.timestamp.desc()
            ).label("rn")
        )
        .where(RatingSnapshot.session_id == session_id)
        .subquery()
    )
    result = await db.execute(
        select(ranked.c.judge_id, ranked.c.rating).where(ranked.c.rn == 1)
    )
    return {row.judge_id: row.rating for row in result}


async def compute_consensus(db: AsyncSession, session_id: int) -> ConsensusResult:
    latest = await latest_ratings(db, session_id)
    return ConsensusResult(
        consensus=mean_rating(list(latest.values())),
        judge_count=len(latest)
    )


def history_bucket(timestamp):
    """Truncate to the second, then back to the start of its 5-second bucket."""
    truncated = timestamp.replace(microsecond=0)
    return truncated - timedelta(seconds=truncated.second % HISTORY_BUCKET_SECONDS)


async def get_rating_history(db: AsyncSession, session_id: int) -> List[Dict[str, Any]]:
    """
    Ledger of a session grouped into 5-second buckets, ascending.

    Each bucket averages every snapshot that landed in it, not only the
    latest per judge.
    """
    result = await db.execute(
        select(RatingSnapshot.timestamp, RatingSnapshot.rating)
        .where(RatingSnapshot.session_id == session_id)
        .order_by(RatingSnapshot.timestamp.asc())
    )

    buckets: Dict[Any, List[int]] = {}
    for timestamp, rating in result:
        buckets.setdefault(history_bucket(timestamp), []).append(rating)

    history = []
    for bucket in sorted(buckets):
        ratings = buckets[bucket]
        history.append({
            "bucket": isoformat(bucket),
            "avgRating": float(mean_rating(ratings)),
            "snapshotCount": len(ratings),
        })
    return history
