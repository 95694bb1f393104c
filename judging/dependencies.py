"""
Shared FastAPI dependencies for process-wide components kept on app.state.
"""
from fastapi import Depends
from fastapi.requests import HTTPConnection
from sqlalchemy.ext.asyncio import AsyncSession

from judging.database import get_db
from judging.realtime.connection_manager import ConnectionManager
from judging.services.collaborators import (
    ContentStore, SqlContentStore, SqlUserDirectory, UserDirectory
)
from judging.services.notification_service import NotificationDispatcher


def get_connection_manager(conn: HTTPConnection) -> ConnectionManager:
    return conn.app.state.connection_manager


def get_notifier(conn: HTTPConnection) -> NotificationDispatcher:
    return conn.app.state.notifier


def get_content_store(db: AsyncSession = Depends(get_db)) -> ContentStore:
    return SqlContentStore(db)


def get_user_directory(db: AsyncSession = Depends(get_db)) -> UserDirectory:
    return SqlUserDirectory(db)
