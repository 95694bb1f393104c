"""
Trading routes

GET  /api/traders/profile
POST /api/trades
GET  /api/trades/active
GET  /api/trades/history?page&limit
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from judging.core.rate_limit import TRADE_LIMIT, limiter
from judging.database import get_db
from judging.dependencies import get_user_directory
from judging.errors import ValidationError
from judging.schemas.requests import TradeRequest
from judging.security import Identity, get_current_identity
from judging.services import trading_service
from judging.services.collaborators import UserDirectory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Trading"])


@router.get("/traders/profile")
async def trader_profile(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    users: UserDirectory = Depends(get_user_directory)
) -> Dict[str, Any]:
    trader = await trading_service.get_or_create_trader(db, identity)
    info = await users.get_display_name(identity.user_id, identity.role)
    data = trader.to_dict()
    data["username"] = info["username"] if info else None
    return {"trader": data}


@router.post("/trades", status_code=status.HTTP_201_CREATED)
@limiter.limit(TRADE_LIMIT)
async def place_trade(
    request: Request,
    body: TradeRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    if body.session_id is None or not body.direction or body.amount is None:
        raise ValidationError("sessionId, direction, and amount are required")
    trade = await trading_service.place_trade(
        db, identity, body.session_id, body.direction, body.amount
    )
    return {"trade": trade.to_dict()}


@router.get("/trades/active")
async def active_trades(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    return {"trades": await trading_service.list_active_trades(db, identity)}


@router.get("/trades/history")
async def trade_history(
    page: Optional[int] = Query(default=1),
    limit: Optional[int] = Query(default=trading_service.HISTORY_DEFAULT_LIMIT),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    return await trading_service.list_trade_history(db, identity, page=page, limit=limit)
