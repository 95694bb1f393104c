from .base import Base

from .catalog import Song, UserProfile
from .judge import JudgeApplication, Judge, AnchorSong, ApplicationStatus, JudgeStatus
from .judging_session import JudgingSession, RatingSnapshot, SessionStatus
from .trading import Trader, Trade, TradeDirection, TradeOutcome, TradeStatus
from .notification import Notification, NotificationKind
from .waitlist import WaitlistEntry

__all__ = [
    "Base",
    "Song", "UserProfile",
    "JudgeApplication", "Judge", "AnchorSong", "ApplicationStatus", "JudgeStatus",
    "JudgingSession", "RatingSnapshot", "SessionStatus",
    "Trader", "Trade", "TradeDirection", "TradeOutcome", "TradeStatus",
    "Notification", "NotificationKind",
    "WaitlistEntry",
]
