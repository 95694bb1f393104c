"""In-app notification routes."""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from judging.database import get_db
from judging.security import Identity, get_current_identity
from judging.services import notification_service

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("")
async def list_notifications(
    unread: bool = Query(default=False),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    return await notification_service.list_notifications(db, identity, unread_only=unread)


@router.patch("/read-all")
async def mark_all_read(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    await notification_service.mark_all_read(db, identity)
    return {"success": True}


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    await notification_service.mark_read(db, identity, notification_id)
    return {"success": True}
