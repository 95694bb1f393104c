from fastapi import APIRouter

from . import admin, judges, leaderboards, notifications, sessions, trading, waitlist

api_router = APIRouter(prefix="/api")
api_router.include_router(judges.router)
api_router.include_router(sessions.router)
api_router.include_router(trading.router)
api_router.include_router(leaderboards.router)
api_router.include_router(admin.router)
api_router.include_router(notifications.router)
api_router.include_router(waitlist.router)
