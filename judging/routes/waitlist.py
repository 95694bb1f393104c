"""
Public waitlist routes (no identity token)

POST /api/waitlist
GET  /api/waitlist/stats
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from judging.core.rate_limit import WAITLIST_LIMIT, limiter
from judging.database import get_db
from judging.schemas.requests import WaitlistJoinRequest
from judging.services import waitlist_service

router = APIRouter(prefix="/waitlist", tags=["Waitlist"])


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit(WAITLIST_LIMIT)
async def join_waitlist(
    request: Request,
    body: Optional[WaitlistJoinRequest] = None,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    body = body or WaitlistJoinRequest()
    entry = await waitlist_service.join_waitlist(
        db,
        body.email,
        name=body.name,
        wants_to_judge=body.wants_to_judge,
        wants_to_trade=body.wants_to_trade,
        wants_to_upload=body.wants_to_upload,
        referral_source=body.referral_source,
        referral_code=body.referral_code,
    )
    return {"entry": entry.to_dict()}


@router.get("/stats")
async def stats(db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    return {"stats": await waitlist_service.waitlist_stats(db)}
