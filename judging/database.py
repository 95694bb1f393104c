"""
judging/database.py
Async engine and session factory
"""
import logging
from typing import AsyncIterator

from fastapi.requests import HTTPConnection
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from judging.orm.base import Base
import judging.orm  # noqa: F401  registers all models on Base.metadata

logger = logging.getLogger(__name__)


class Database:
    """Owns the engine and session factory for one process."""

    def __init__(self, database_url: str, echo: bool = False):
        self.url = database_url
        # SQLite has different pool needs than PostgreSQL
        if "sqlite" in database_url.lower():
            self.engine = create_async_engine(
                database_url,
                echo=echo,
                pool_pre_ping=True,
                connect_args={
                    "timeout": 30.0,   # SQLite busy timeout in seconds
                }
            )
        else:
            self.engine = create_async_engine(
                database_url,
                echo=echo,
                pool_pre_ping=True,
                pool_size=20,
                max_overflow=30,
                pool_timeout=30,
                pool_recycle=3600,
            )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    def session(self) -> AsyncSession:
        return self.session_factory()

    async def init(self) -> None:
        """Create missing tables."""
        logger.info("Initializing database...")
        logger.info(f"Database dialect: {self.engine.url.get_backend_name()}")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✓ Database initialization complete")

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database connection closed")


async def get_db(conn: HTTPConnection) -> AsyncIterator[AsyncSession]:
    """Dependency for getting async database session"""
    database: Database = conn.app.state.db
    async with database.session() as session:
        try:
            yield session
        finally:
            await session.close()
