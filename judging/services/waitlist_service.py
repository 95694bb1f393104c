"""
Waitlist sign-ups

Anyone may join once per email. Every entry is handed a referral code
built from the email's local part plus a random suffix; joining with a
known code records who referred the new entry. Unknown codes are ignored.
"""
import logging
import re
import secrets
import string
from typing import Any, Dict, Optional

from sqlalchemy import select, func, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from judging.errors import ConflictError, ValidationError
from judging.orm.waitlist import WaitlistEntry

logger = logging.getLogger(__name__)

REFERRAL_PREFIX_LENGTH = 8
REFERRAL_SUFFIX_LENGTH = 4
REFERRAL_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
MAX_CODE_ATTEMPTS = 5


def normalize_email(email: Optional[str]) -> str:
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("Email is required")
    local, _, domain = email.partition("@")
    if not local or not domain:
        raise ValidationError("Email is invalid")
    return email


def generate_referral_code(email: str) -> str:
    prefix = re.sub(r"[^a-zA-Z0-9]", "", email.split("@")[0])[:REFERRAL_PREFIX_LENGTH]
    suffix = "".join(secrets.choice(REFERRAL_SUFFIX_ALPHABET) for _ in range(REFERRAL_SUFFIX_LENGTH))
    return prefix + suffix


async def _find_by_email(db: AsyncSession, email: str) -> Optional[WaitlistEntry]:
    result = await db.execute(select(WaitlistEntry).where(WaitlistEntry.email == email))
    return result.scalar_one_or_none()


def _already_joined(entry: WaitlistEntry) -> ConflictError:
    return ConflictError("Email already on waitlist", details={"status": entry.status})


async def join_waitlist(
    db: AsyncSession,
    email: Optional[str],
    name: Optional[str] = None,
    wants_to_judge: bool = False,
    wants_to_trade: bool = False,
    wants_to_upload: bool = False,
    referral_source: Optional[str] = None,
    referral_code: Optional[str] = None
) -> WaitlistEntry:
    """
    Add an email to the waitlist.

    Raises:
        ValidationError: email missing or malformed
        ConflictError: email already on the waitlist
    """
    email = normalize_email(email)

    existing = await _find_by_email(db, email)
    if existing:
        raise _already_joined(existing)

    referred_by = None
    if referral_code:
        referrer = await db.execute(
            select(WaitlistEntry.id).where(WaitlistEntry.referral_code == referral_code.strip())
        )
        referred_by = referrer.scalar_one_or_none()

    for attempt in range(MAX_CODE_ATTEMPTS):
        entry = WaitlistEntry(
            email=email,
            name=name,
            wants_to_judge=wants_to_judge,
            wants_to_trade=wants_to_trade,
            wants_to_upload=wants_to_upload,
            referral_source=referral_source,
            referral_code=generate_referral_code(email),
            referred_by=referred_by,
        )
        db.add(entry)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            # Same email joined concurrently, or the referral code collided
            existing = await _find_by_email(db, email)
            if existing:
                raise _already_joined(existing)
            if attempt == MAX_CODE_ATTEMPTS - 1:
                raise
            logger.warning(f"Referral code collision, regenerating (attempt {attempt + 1})")
            continue

        await db.refresh(entry)
        logger.info(f"Waitlist entry {entry.id} created (referred_by={referred_by})")
        return entry


async def waitlist_stats(db: AsyncSession) -> Dict[str, Any]:
    result = await db.execute(
        select(
            func.count(WaitlistEntry.id).label("total"),
            func.sum(case((WaitlistEntry.wants_to_judge.is_(True), 1), else_=0)).label("judges"),
            func.sum(case((WaitlistEntry.wants_to_trade.is_(True), 1), else_=0)).label("traders"),
            func.sum(case((WaitlistEntry.wants_to_upload.is_(True), 1), else_=0)).label("uploaders"),
        )
    )
    row = result.one()
    return {
        "total": row.total or 0,
        "judges": row.judges or 0,
        "traders": row.traders or 0,
        "uploaders": row.uploaders or 0,
    }
