"""Public leaderboards."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from judging.database import get_db
from judging.dependencies import get_user_directory
from judging.services import leaderboard_service
from judging.services.collaborators import UserDirectory

router = APIRouter(prefix="/leaderboards", tags=["Leaderboards"])


@router.get("/traders")
async def traders(
    period: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    users: UserDirectory = Depends(get_user_directory)
) -> Dict[str, Any]:
    return {"leaderboard": await leaderboard_service.trader_leaderboard(db, period, users=users)}


@router.get("/judges")
async def judges(
    db: AsyncSession = Depends(get_db),
    users: UserDirectory = Depends(get_user_directory)
) -> Dict[str, Any]:
    return {"leaderboard": await leaderboard_service.judge_leaderboard(db, users=users)}
