"""
Judge Qualification Gate

Candidates rate five anchor songs whose correct rating is known. The mean
absolute deviation decides the outcome:

    score  = max(0, 100 - 2 * avg_deviation)
    passed = score >= 60 and avg_deviation <= 15

Passing upserts an active Judge for the identity. Failing rejects the
application and starts a 7-day cooldown before the next attempt.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from judging.core.timeutil import utcnow, isoformat
from judging.errors import (
    ConflictError, CooldownActiveError, InvalidStateError, NotFoundError,
    ResourceExhaustedError, ValidationError
)
from judging.orm.catalog import Song
from judging.orm.judge import AnchorSong, ApplicationStatus, Judge, JudgeApplication, JudgeStatus
from judging.orm.notification import NotificationKind
from judging.security import Identity
from judging.services.collaborators import ContentStore, SqlContentStore
from judging.services.notification_service import NotificationDispatcher, OutboundNotification

logger = logging.getLogger(__name__)

SCREENING_SET_SIZE = 5
PASS_SCORE = 60
MAX_AVG_DEVIATION = 15
COOLDOWN = timedelta(days=7)
REJECTION_REASON = "Screening score below threshold"


@dataclass(frozen=True)
class ScreeningResult:
    passed: bool
    score: float
    avg_deviation: float
    next_attempt_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "passed": self.passed,
            "score": self.score,
            "avgDeviation": self.avg_deviation,
        }
        if self.next_attempt_date is not None:
            result["nextAttemptDate"] = isoformat(self.next_attempt_date)
        return result


def score_deviations(deviations: List[float]) -> Tuple[float, float, bool]:
    """Return (score, avg_deviation, passed) for the matched deviations."""
    avg_deviation = sum(deviations) / len(deviations)
    score = max(0.0, 100 - 2 * avg_deviation)
    passed = score >= PASS_SCORE and avg_deviation <= MAX_AVG_DEVIATION
    return score, avg_deviation, passed


# ================= APPLICATIONS =================

async def _latest_application(db: AsyncSession, identity: Identity) -> Optional[JudgeApplication]:
    result = await db.execute(
        select(JudgeApplication)
        .where(
            JudgeApplication.user_id == identity.user_id,
            JudgeApplication.user_role == identity.role
        )
        .order_by(JudgeApplication.created_at.desc(), JudgeApplication.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _get_judge(db: AsyncSession, identity: Identity) -> Optional[Judge]:
    result = await db.execute(
        select(Judge).where(
            Judge.user_id == identity.user_id,
            Judge.user_role == identity.role
        )
    )
    return result.scalar_one_or_none()


async def apply_for_judge(
    db: AsyncSession,
    identity: Identity,
    music_background: Optional[str] = None,
    genres_familiar: Optional[str] = None,
    now: Optional[datetime] = None
) -> JudgeApplication:
    """
    Open a screening application.

    Raises:
        ConflictError: already an active judge, or an application is still open
        CooldownActiveError: last rejection's cooldown has not elapsed
    """
    now = now or utcnow()

    judge = await _get_judge(db, identity)
    if judge and judge.status == JudgeStatus.ACTIVE:
        raise ConflictError("You are already a judge")

    latest = await _latest_application(db, identity)
    if latest:
        if latest.status in (ApplicationStatus.PENDING, ApplicationStatus.SCREENING):
            raise ConflictError("You already have a pending application")
        if (
            latest.status == ApplicationStatus.REJECTED
            and latest.next_attempt_date is not None
            and latest.next_attempt_date > now
        ):
            raise CooldownActiveError(latest.next_attempt_date)

    count_result = await db.execute(
        select(func.count(JudgeApplication.id)).where(
            JudgeApplication.user_id == identity.user_id,
            JudgeApplication.user_role == identity.role
        )
    )
    prior_attempts = count_result.scalar() or 0

    application = JudgeApplication(
        user_id=identity.user_id,
        user_role=identity.role,
        music_background=music_background,
        genres_familiar=genres_familiar,
        status=ApplicationStatus.SCREENING,
        attempt_count=prior_attempts + 1,
        created_at=now,
    )
    db.add(application)
    await db.commit()
    await db.refresh(application)

    logger.info(
        f"Judge application {application.id} opened for {identity.role}:{identity.user_id} "
        f"(attempt {application.attempt_count})"
    )
    return application


async def _get_own_application(
    db: AsyncSession,
    application_id: int,
    identity: Identity
) -> JudgeApplication:
    result = await db.execute(
        select(JudgeApplication).where(
            JudgeApplication.id == application_id,
            JudgeApplication.user_id == identity.user_id,
            JudgeApplication.user_role == identity.role
        )
    )
    application = result.scalar_one_or_none()
    if not application:
        raise NotFoundError("Application")
    if application.status != ApplicationStatus.SCREENING:
        raise InvalidStateError("Application is not in screening phase")
    return application


async def get_screening_set(
    db: AsyncSession,
    application_id: int,
    identity: Identity
) -> List[Dict[str, Any]]:
    """
    Five random active anchors with song metadata. The correct rating is
    never included.

    Raises:
        NotFoundError: application missing or owned by someone else
        InvalidStateError: application is not in screening
        ResourceExhaustedError: fewer than five active anchors configured
    """
    await _get_own_application(db, application_id, identity)

    result = await db.execute(
        select(AnchorSong, Song)
        .join(Song, AnchorSong.song_id == Song.id)
        .where(AnchorSong.active.is_(True))
        .order_by(func.random())
        .limit(SCREENING_SET_SIZE)
    )
    rows = result.all()
    if len(rows) < SCREENING_SET_SIZE:
        logger.warning(f"Screening set unavailable: only {len(rows)} active anchors")
        raise ResourceExhaustedError("Not enough anchor songs configured. Please try again later.")

    return [
        {
            "id": anchor.id,
            "genre": anchor.genre,
            "difficulty": anchor.difficulty,
            "title": song.title,
            "artist": song.artist,
            "audio_url": song.audio_url,
            "artwork_url": song.artwork_url,
        }
        for anchor, song in rows
    ]


async def submit_screening(
    db: AsyncSession,
    application_id: int,
    identity: Identity,
    ratings: Iterable[Tuple[int, float]],
    notifier: Optional[NotificationDispatcher] = None,
    now: Optional[datetime] = None
) -> ScreeningResult:
    """
    Score a screening attempt.

    ratings: (anchor_id, rating) pairs. Unknown anchor ids are skipped.

    Raises:
        ValidationError: empty ratings, a rating outside 0-100, or none
            matched an anchor
    """
    now = now or utcnow()
    application = await _get_own_application(db, application_id, identity)

    pairs = list(ratings)
    if not pairs:
        raise ValidationError("Ratings array is required")
    for _, rating in pairs:
        if not math.isfinite(rating) or not 0 <= rating <= 100:
            raise ValidationError("Rating must be between 0 and 100")

    anchor_ids = {anchor_id for anchor_id, _ in pairs}
    anchor_result = await db.execute(
        select(AnchorSong.id, AnchorSong.correct_rating).where(AnchorSong.id.in_(sorted(anchor_ids)))
    )
    correct = {row.id: row.correct_rating for row in anchor_result}

    deviations = [
        abs(float(rating) - correct[anchor_id])
        for anchor_id, rating in pairs
        if anchor_id in correct
    ]
    if not deviations:
        raise ValidationError("No valid anchor songs scored")

    score, avg_deviation, passed = score_deviations(deviations)

    application.screening_score = Decimal(str(round(score, 2)))
    application.screening_deviation = Decimal(str(round(avg_deviation, 2)))
    application.reviewed_at = now

    if passed:
        application.status = ApplicationStatus.APPROVED
        judge = await _get_judge(db, identity)
        if judge:
            judge.status = JudgeStatus.ACTIVE
            judge.updated_at = now
        else:
            db.add(Judge(
                user_id=identity.user_id,
                user_role=identity.role,
                status=JudgeStatus.ACTIVE,
                accuracy_score=application.screening_score,
            ))
        next_attempt = None
    else:
        next_attempt = now + COOLDOWN
        application.status = ApplicationStatus.REJECTED
        application.rejection_reason = REJECTION_REASON
        application.next_attempt_date = next_attempt

    try:
        await db.commit()
    except IntegrityError:
        # A concurrent pass for the same identity created the judge first
        await db.rollback()
        if not passed:
            raise
        application = await _get_own_application(db, application_id, identity)
        application.status = ApplicationStatus.APPROVED
        application.screening_score = Decimal(str(round(score, 2)))
        application.screening_deviation = Decimal(str(round(avg_deviation, 2)))
        application.reviewed_at = now
        judge = await _get_judge(db, identity)
        judge.status = JudgeStatus.ACTIVE
        await db.commit()

    if passed:
        logger.info(f"✓ Application {application_id} approved: score={score:.2f}, deviation={avg_deviation:.2f}")
    else:
        logger.info(f"Application {application_id} rejected: score={score:.2f}, deviation={avg_deviation:.2f}")

    if notifier is not None:
        notifier.enqueue(_screening_notification(identity, passed, score, next_attempt))

    return ScreeningResult(
        passed=passed,
        score=score,
        avg_deviation=avg_deviation,
        next_attempt_date=next_attempt
    )


def _screening_notification(
    identity: Identity,
    passed: bool,
    score: float,
    next_attempt: Optional[datetime]
) -> OutboundNotification:
    if passed:
        return OutboundNotification(
            user_id=identity.user_id,
            user_role=identity.role,
            kind=NotificationKind.SCREENING_PASSED,
            title="You're a judge!",
            body=f"You passed the screening test with a score of {score:.0f}.",
            payload={"score": score},
        )
    return OutboundNotification(
        user_id=identity.user_id,
        user_role=identity.role,
        kind=NotificationKind.SCREENING_FAILED,
        title="Screening not passed",
        body=f"Your score was {score:.0f}. You can try again after the cooldown.",
        payload={"score": score, "nextAttemptDate": isoformat(next_attempt)},
    )


async def get_judge_profile(db: AsyncSession, identity: Identity) -> Dict[str, Any]:
    judge = await _get_judge(db, identity)
    if judge:
        return {"isJudge": True, "judge": judge.to_dict()}

    application = await _latest_application(db, identity)
    return {
        "isJudge": False,
        "application": application.to_dict() if application else None,
    }


# ================= ANCHOR ADMINISTRATION =================

async def list_anchors(db: AsyncSession) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(AnchorSong, Song)
        .join(Song, AnchorSong.song_id == Song.id)
        .order_by(AnchorSong.created_at.desc(), AnchorSong.id.desc())
    )
    anchors = []
    for anchor, song in result.all():
        data = anchor.to_dict()
        data.update({
            "title": song.title,
            "artist": song.artist,
            "audio_url": song.audio_url,
            "artwork_url": song.artwork_url,
        })
        anchors.append(data)
    return anchors


async def create_anchor(
    db: AsyncSession,
    song_id: int,
    correct_rating: int,
    tolerance: Optional[int] = None,
    genre: Optional[str] = None,
    difficulty: Optional[str] = None,
    content_store: Optional[ContentStore] = None
) -> AnchorSong:
    """
    Designate a song as an anchor.

    Raises:
        ValidationError: correct_rating outside [0, 100]
        NotFoundError: song does not exist
        ConflictError: song is already an anchor
    """
    if correct_rating is None or not 0 <= correct_rating <= 100:
        raise ValidationError("correct_rating must be between 0 and 100")

    content_store = content_store or SqlContentStore(db)
    song = await content_store.get_song(song_id)
    if not song:
        raise NotFoundError("Song")

    existing = await db.execute(select(AnchorSong.id).where(AnchorSong.song_id == song_id))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("This song is already an anchor")

    anchor = AnchorSong(
        song_id=song_id,
        correct_rating=correct_rating,
        tolerance=tolerance or 10,
        genre=genre or None,
        difficulty=difficulty or "medium",
        active=True,
    )
    db.add(anchor)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("This song is already an anchor")
    await db.refresh(anchor)

    logger.info(f"Anchor {anchor.id} created for song {song_id} (correct_rating={correct_rating})")
    return anchor


async def delete_anchor(db: AsyncSession, anchor_id: int) -> None:
    result = await db.execute(select(AnchorSong).where(AnchorSong.id == anchor_id))
    anchor = result.scalar_one_or_none()
    if not anchor:
        raise NotFoundError("Anchor")
    await db.delete(anchor)
    await db.commit()
    logger.info(f"Anchor {anchor_id} deleted")
