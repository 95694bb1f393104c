"""
Admin routes: anchor songs and session overview.

Access requires the X-Master-Password header or a master-role token.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from judging.database import get_db
from judging.dependencies import get_content_store
from judging.errors import ValidationError
from judging.schemas.requests import AnchorCreateRequest
from judging.security import require_admin
from judging.services import screening_service, session_service
from judging.services.collaborators import ContentStore

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.get("/anchors")
async def list_anchors(db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    return {"anchors": await screening_service.list_anchors(db)}


@router.post("/anchors", status_code=status.HTTP_201_CREATED)
async def create_anchor(
    body: AnchorCreateRequest,
    db: AsyncSession = Depends(get_db),
    content_store: ContentStore = Depends(get_content_store)
) -> Dict[str, Any]:
    if body.song_id is None or body.correct_rating is None:
        raise ValidationError("song_id and correct_rating are required")
    anchor = await screening_service.create_anchor(
        db,
        song_id=body.song_id,
        correct_rating=body.correct_rating,
        tolerance=body.tolerance,
        genre=body.genre,
        difficulty=body.difficulty,
        content_store=content_store,
    )
    return {"anchor": anchor.to_dict()}


@router.delete("/anchors/{anchor_id}")
async def delete_anchor(anchor_id: int, db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    await screening_service.delete_anchor(db, anchor_id)
    return {"success": True}


@router.get("/sessions")
async def list_sessions(db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    return {"sessions": await session_service.list_admin_sessions(db)}
