"""
Pre-launch waitlist.

One row per email. Each entry gets its own referral code; an entry that
arrived through someone else's code points back at that entry.
"""
from typing import Any, Dict

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey

from judging.core.timeutil import utcnow, isoformat
from judging.orm.base import Base


class WaitlistEntry(Base):
    __tablename__ = "waitlist"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(100), nullable=True)
    wants_to_judge = Column(Boolean, nullable=False, default=False)
    wants_to_trade = Column(Boolean, nullable=False, default=False)
    wants_to_upload = Column(Boolean, nullable=False, default=False)
    referral_source = Column(String(100), nullable=True)
    referral_code = Column(String(20), nullable=False, unique=True)
    referred_by = Column(Integer, ForeignKey("waitlist.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(20), nullable=False, default="waiting")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "referral_code": self.referral_code,
            "created_at": isoformat(self.created_at),
        }
