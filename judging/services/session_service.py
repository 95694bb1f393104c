"""
Session State Store

Judging sessions move scheduled → live → completed. Starting is allowed
only from scheduled; completing happens through settlement
(services/settlement_service.py) and is terminal.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from judging.core.timeutil import utcnow
from judging.errors import InvalidStateError, NotFoundError, ValidationError
from judging.orm.catalog import Song
from judging.orm.judging_session import JudgingSession, SessionStatus
from judging.orm.trading import Trade
from judging.services.collaborators import ContentStore, SqlContentStore
from judging.services.consensus_service import compute_consensus, get_rating_history

logger = logging.getLogger(__name__)

SESSION_LIST_LIMIT = 50
ADMIN_SESSION_LIST_LIMIT = 100


def parse_status(value: Optional[str]) -> Optional[SessionStatus]:
    if value is None or value == "":
        return None
    try:
        return SessionStatus(value)
    except ValueError:
        raise ValidationError(
            f"Invalid status '{value}'. Expected one of: "
            + ", ".join(s.value for s in SessionStatus)
        )


async def create_session(
    db: AsyncSession,
    song_id: int,
    title: Optional[str] = None,
    scheduled_start: Optional[datetime] = None,
    created_by: Optional[str] = None,
    content_store: Optional[ContentStore] = None
) -> JudgingSession:
    """
    Schedule a judging session for a song.

    Raises:
        NotFoundError: song does not exist
    """
    content_store = content_store or SqlContentStore(db)
    song = await content_store.get_song(song_id)
    if not song:
        raise NotFoundError("Song")

    session = JudgingSession(
        song_id=song_id,
        title=title or f"Judging: {song.title}",
        status=SessionStatus.SCHEDULED,
        scheduled_start=scheduled_start or utcnow(),
        created_by=created_by,
    )
    db.add(session)
    await db.commit()
    await db.refresh(session)

    logger.info(f"Session {session.id} scheduled for song {song_id}: {session.title}")
    return session


async def _load_session(db: AsyncSession, session_id: int) -> JudgingSession:
    result = await db.execute(select(JudgingSession).where(JudgingSession.id == session_id))
    session = result.scalar_one_or_none()
    if not session:
        raise NotFoundError("Session")
    return session


async def start_session(
    db: AsyncSession,
    session_id: int,
    trading_window_minutes: Optional[float] = None,
    now: Optional[datetime] = None
) -> JudgingSession:
    """
    scheduled → live.

    A trading window, when given, closes trade placement that many minutes
    after start; without one trading stays open until settlement.

    Raises:
        NotFoundError: session does not exist
        InvalidStateError: session is not scheduled
    """
    now = now or utcnow()
    session = await _load_session(db, session_id)
    if session.status != SessionStatus.SCHEDULED:
        raise InvalidStateError("Session is not in scheduled state")

    session.status = SessionStatus.LIVE
    session.actual_start = now
    session.trading_window_end = (
        now + timedelta(minutes=trading_window_minutes) if trading_window_minutes else None
    )
    await db.commit()

    logger.info(
        f"Session {session_id} is live"
        + (f" (trading closes {session.trading_window_end.isoformat()})" if session.trading_window_end else "")
    )
    return session


def _session_payload(session: JudgingSession, song: Song, include_audio: bool = False) -> Dict[str, Any]:
    data = session.to_dict()
    data["song_title"] = song.title
    data["song_artist"] = song.artist
    data["artwork_url"] = song.artwork_url
    if include_audio:
        data["audio_url"] = song.audio_url
    return data


async def _attach_consensus(db: AsyncSession, session: JudgingSession, data: Dict[str, Any]) -> None:
    if session.status == SessionStatus.LIVE:
        consensus = await compute_consensus(db, session.id)
        data["currentConsensus"] = consensus.as_float()
        data["activeJudges"] = consensus.judge_count


async def list_sessions(db: AsyncSession, status: Optional[SessionStatus] = None) -> List[Dict[str, Any]]:
    query = select(JudgingSession, Song).join(Song, JudgingSession.song_id == Song.id)
    if status is not None:
        query = query.where(JudgingSession.status == status)
    query = query.order_by(JudgingSession.scheduled_start.desc(), JudgingSession.id.desc()).limit(SESSION_LIST_LIMIT)

    result = await db.execute(query)
    sessions = []
    for session, song in result.all():
        data = _session_payload(session, song)
        await _attach_consensus(db, session, data)
        sessions.append(data)
    return sessions


async def get_session_detail(
    db: AsyncSession,
    session_id: int,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    result = await db.execute(
        select(JudgingSession, Song)
        .join(Song, JudgingSession.song_id == Song.id)
        .where(JudgingSession.id == session_id)
    )
    row = result.first()
    if not row:
        raise NotFoundError("Session")

    session, song = row
    data = _session_payload(session, song, include_audio=True)
    await _attach_consensus(db, session, data)
    data["tradingOpen"] = session.is_trading_open(now)
    return data


async def get_history(db: AsyncSession, session_id: int) -> List[Dict[str, Any]]:
    return await get_rating_history(db, session_id)


async def list_admin_sessions(db: AsyncSession) -> List[Dict[str, Any]]:
    trade_count = (
        select(func.count(Trade.id))
        .where(Trade.session_id == JudgingSession.id)
        .correlate(JudgingSession)
        .scalar_subquery()
    )
    result = await db.execute(
        select(JudgingSession, Song, trade_count.label("trade_count"))
        .join(Song, JudgingSession.song_id == Song.id)
        .order_by(JudgingSession.created_at.desc(), JudgingSession.id.desc())
        .limit(ADMIN_SESSION_LIST_LIMIT)
    )
    sessions = []
    for session, song, count in result.all():
        data = _session_payload(session, song)
        data["trade_count"] = count or 0
        sessions.append(data)
    return sessions
