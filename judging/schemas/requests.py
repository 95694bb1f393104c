"""
Request body schemas (Pydantic)

Clients send camelCase; the snake_case field names are accepted too.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ================= JUDGES =================

class JudgeApplyRequest(_Request):
    music_background: Optional[str] = Field(default=None, alias="musicBackground", max_length=5000)
    genres_familiar: Optional[str] = Field(default=None, alias="genresFamiliar", max_length=1000)


class ScreeningRating(_Request):
    anchor_id: int = Field(..., alias="anchorId")
    rating: float = Field(..., ge=0, le=100, allow_inf_nan=False)


class ScreeningSubmitRequest(_Request):
    ratings: Optional[List[ScreeningRating]] = None


# ================= SESSIONS =================

class SessionCreateRequest(_Request):
    song_id: int = Field(..., alias="songId")
    title: Optional[str] = Field(default=None, max_length=255)
    scheduled_start: Optional[datetime] = Field(default=None, alias="scheduledStart")

    @field_validator("scheduled_start")
    @classmethod
    def to_naive_utc(cls, v):
        return _naive_utc(v)

    @field_validator("title")
    @classmethod
    def blank_title_is_default(cls, v):
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v


class SessionStartRequest(_Request):
    trading_window_minutes: Optional[float] = Field(default=None, alias="tradingWindowMinutes", gt=0)


# ================= TRADING =================

class TradeRequest(_Request):
    session_id: Optional[int] = Field(default=None, alias="sessionId")
    direction: Optional[str] = None
    amount: Optional[Decimal] = None


# ================= ANCHORS =================

class AnchorCreateRequest(_Request):
    song_id: Optional[int] = Field(default=None, alias="songId")
    correct_rating: Optional[int] = Field(default=None, alias="correctRating")
    tolerance: Optional[int] = Field(default=None, ge=0, le=100)
    genre: Optional[str] = Field(default=None, max_length=50)
    difficulty: Optional[str] = Field(default=None, max_length=20)


# ================= WAITLIST =================

class WaitlistJoinRequest(_Request):
    email: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=100)
    wants_to_judge: bool = Field(default=False, alias="wantsToJudge")
    wants_to_trade: bool = Field(default=False, alias="wantsToTrade")
    wants_to_upload: bool = Field(default=False, alias="wantsToUpload")
    referral_source: Optional[str] = Field(default=None, alias="referralSource", max_length=100)
    referral_code: Optional[str] = Field(default=None, alias="referralCode", max_length=20)
