"""
Judge qualification routes

POST /api/judges/apply
GET  /api/judges/screening/{application_id}
POST /api/judges/screening/{application_id}/submit
GET  /api/judges/profile
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from judging.core.rate_limit import APPLY_LIMIT, limiter
from judging.database import get_db
from judging.dependencies import get_notifier
from judging.schemas.requests import JudgeApplyRequest, ScreeningSubmitRequest
from judging.security import Identity, get_current_identity
from judging.services import screening_service
from judging.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/judges", tags=["Judges"])


@router.post("/apply", status_code=status.HTTP_201_CREATED)
@limiter.limit(APPLY_LIMIT)
async def apply(
    request: Request,
    body: Optional[JudgeApplyRequest] = None,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    body = body or JudgeApplyRequest()
    application = await screening_service.apply_for_judge(
        db,
        identity,
        music_background=body.music_background,
        genres_familiar=body.genres_familiar,
    )
    return {"application": application.to_dict()}


@router.get("/screening/{application_id}")
async def get_screening(
    application_id: int,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    songs = await screening_service.get_screening_set(db, application_id, identity)
    return {"songs": songs}


@router.post("/screening/{application_id}/submit")
async def submit_screening(
    application_id: int,
    body: ScreeningSubmitRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier)
) -> Dict[str, Any]:
    ratings = [(r.anchor_id, r.rating) for r in (body.ratings or [])]
    result = await screening_service.submit_screening(
        db, application_id, identity, ratings, notifier=notifier
    )
    return result.to_dict()


@router.get("/profile")
async def judge_profile(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    return await screening_service.get_judge_profile(db, identity)
