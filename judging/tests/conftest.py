"""
Shared fixtures: a fresh SQLite database per test plus small row factories.
"""
from datetime import datetime
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from judging.config import Settings
from judging.core.timeutil import utcnow
from judging.database import Database
from judging.orm.catalog import Song, UserProfile
from judging.orm.judge import AnchorSong, Judge, JudgeStatus
from judging.orm.judging_session import JudgingSession, RatingSnapshot, SessionStatus
from judging.orm.trading import STARTING_BALANCE, Trade, TradeDirection, Trader, TradeStatus
from judging.security import Identity, TokenVerifier

TEST_SECRET = "test-secret-key"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'judging_test.db'}",
        jwt_secret_key=TEST_SECRET,
        master_password="let-me-in",
        rate_limit_enabled=False,
        log_level="WARNING",
    )


@pytest.fixture
def verifier(settings) -> TokenVerifier:
    return TokenVerifier.from_settings(settings)


@pytest_asyncio.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    db = Database(settings.database_url)
    await db.init()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session() as session:
        yield session


@pytest.fixture
def judge_identity() -> Identity:
    return Identity(user_id="11", role="listener")


@pytest.fixture
def second_judge_identity() -> Identity:
    return Identity(user_id="12", role="creator")


@pytest.fixture
def trader_identity() -> Identity:
    return Identity(user_id="21", role="listener")


class Factory:
    """Inserts rows directly, bypassing the services under test."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        await self.db.refresh(obj)
        return obj

    async def song(self, title: str = "Midnight Drive", artist: str = "The Exits") -> Song:
        return await self._save(Song(
            title=title,
            artist=artist,
            audio_url=f"https://cdn.example.com/{title.lower().replace(' ', '-')}.mp3",
        ))

    async def profile(self, identity: Identity, username: str) -> UserProfile:
        return await self._save(UserProfile(
            user_id=identity.user_id,
            user_role=identity.role,
            username=username,
        ))

    async def judge(
        self,
        identity: Identity,
        status: JudgeStatus = JudgeStatus.ACTIVE,
        accuracy_score: Decimal = Decimal("80.00"),
        sessions_judged: int = 0
    ) -> Judge:
        return await self._save(Judge(
            user_id=identity.user_id,
            user_role=identity.role,
            status=status,
            accuracy_score=accuracy_score,
            sessions_judged=sessions_judged,
        ))

    async def session(
        self,
        song: Optional[Song] = None,
        status: SessionStatus = SessionStatus.SCHEDULED,
        trading_window_end: Optional[datetime] = None,
        title: str = "Test Session"
    ) -> JudgingSession:
        song = song or await self.song()
        return await self._save(JudgingSession(
            song_id=song.id,
            title=title,
            status=status,
            scheduled_start=utcnow(),
            actual_start=utcnow() if status != SessionStatus.SCHEDULED else None,
            trading_window_end=trading_window_end,
        ))

    async def live_session(self, **kwargs) -> JudgingSession:
        return await self.session(status=SessionStatus.LIVE, **kwargs)

    async def snapshot(
        self,
        session: JudgingSession,
        judge: Judge,
        rating: int,
        timestamp: Optional[datetime] = None
    ) -> RatingSnapshot:
        return await self._save(RatingSnapshot(
            session_id=session.id,
            judge_id=judge.id,
            rating=rating,
            timestamp=timestamp or utcnow(),
        ))

    async def trader(self, identity: Identity, balance: Decimal = STARTING_BALANCE) -> Trader:
        return await self._save(Trader(
            user_id=identity.user_id,
            user_role=identity.role,
            balance=balance,
        ))

    async def trade(
        self,
        session: JudgingSession,
        trader: Trader,
        direction: TradeDirection = TradeDirection.OVER,
        entry_sentiment: Decimal = Decimal("50"),
        amount: Decimal = Decimal("10.00")
    ) -> Trade:
        """A pending trade inserted as-is; the trader's balance is not debited."""
        return await self._save(Trade(
            session_id=session.id,
            user_id=trader.user_id,
            user_role=trader.user_role,
            trader_id=trader.id,
            direction=direction,
            entry_sentiment=entry_sentiment,
            amount=amount,
            status=TradeStatus.PENDING,
        ))

    async def anchors(self, correct_ratings, active: bool = True):
        anchors = []
        for index, correct in enumerate(correct_ratings):
            song = await self.song(title=f"Anchor {index}", artist="Reference")
            anchors.append(await self._save(AnchorSong(
                song_id=song.id,
                correct_rating=correct,
                genre="pop",
                active=active,
            )))
        return anchors


@pytest.fixture
def factory(db_session) -> Factory:
    return Factory(db_session)
