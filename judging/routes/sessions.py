"""
Judging session routes

Public reads plus admin lifecycle transitions (create, start, settle).
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from judging.database import get_db
from judging.dependencies import get_connection_manager, get_content_store, get_notifier
from judging.errors import NotFoundError
from judging.orm.judging_session import JudgingSession
from judging.realtime.connection_manager import ConnectionManager
from judging.schemas.requests import SessionCreateRequest, SessionStartRequest
from judging.security import Identity, require_admin
from judging.services import session_service, settlement_service
from judging.services.collaborators import ContentStore
from judging.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.get("")
async def list_sessions(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    status_value = session_service.parse_status(status_filter)
    return {"sessions": await session_service.list_sessions(db, status_value)}


@router.get("/{session_id}")
async def get_session(
    session_id: int,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    return {"session": await session_service.get_session_detail(db, session_id)}


@router.get("/{session_id}/history")
async def get_history(
    session_id: int,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    if await db.get(JudgingSession, session_id) is None:
        raise NotFoundError("Session")
    return {"history": await session_service.get_history(db, session_id)}


# ================= ADMIN =================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(
    body: SessionCreateRequest,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    content_store: ContentStore = Depends(get_content_store)
) -> Dict[str, Any]:
    session = await session_service.create_session(
        db,
        song_id=body.song_id,
        title=body.title,
        scheduled_start=body.scheduled_start,
        created_by=admin.user_id,
        content_store=content_store,
    )
    return {"session": session.to_dict()}


@router.patch("/{session_id}/start")
async def start_session(
    session_id: int,
    body: Optional[SessionStartRequest] = None,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    minutes = body.trading_window_minutes if body else None
    session = await session_service.start_session(db, session_id, trading_window_minutes=minutes)
    return {"session": session.to_dict()}


@router.post("/{session_id}/settle")
async def settle_session(
    session_id: int,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    manager: ConnectionManager = Depends(get_connection_manager),
    notifier: NotificationDispatcher = Depends(get_notifier)
) -> Dict[str, Any]:
    result = await settlement_service.settle_session(
        db, session_id, manager=manager, notifier=notifier
    )
    return {"success": True, **result.to_dict()}
