"""
Collaborator lookups

The content store (songs) and the user directory (display names) belong to
the surrounding platform. The judging core reads them only through these
two narrow interfaces; the SQL-backed defaults read the platform tables
from the same database.
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from judging.orm.catalog import Song, UserProfile


class ContentStore(ABC):
    @abstractmethod
    async def get_song(self, song_id: int) -> Optional[Song]:
        """Return the song or None when it does not exist."""


class UserDirectory(ABC):
    @abstractmethod
    async def get_display_name(self, user_id: str, role: str) -> Optional[Dict[str, Optional[str]]]:
        """Return {username, firstName, lastName} or None."""

    async def get_usernames(self, identities: Iterable[Tuple[str, str]]) -> Dict[Tuple[str, str], str]:
        """Bulk username lookup; identities with no profile are omitted."""
        names = {}
        for user_id, role in set(identities):
            profile = await self.get_display_name(user_id, role)
            if profile:
                names[(user_id, role)] = profile["username"]
        return names


class SqlContentStore(ContentStore):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_song(self, song_id: int) -> Optional[Song]:
        result = await self.db.execute(select(Song).where(Song.id == song_id))
        return result.scalar_one_or_none()


class SqlUserDirectory(UserDirectory):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_display_name(self, user_id: str, role: str) -> Optional[Dict[str, Optional[str]]]:
        result = await self.db.execute(
            select(UserProfile).where(
                UserProfile.user_id == str(user_id),
                UserProfile.user_role == role
            )
        )
        profile = result.scalar_one_or_none()
        if not profile:
            return None
        return {
            "username": profile.username,
            "firstName": profile.first_name,
            "lastName": profile.last_name,
        }

    async def get_usernames(self, identities: Iterable[Tuple[str, str]]) -> Dict[Tuple[str, str], str]:
        keys = set(identities)
        if not keys:
            return {}
        result = await self.db.execute(
            select(UserProfile.user_id, UserProfile.user_role, UserProfile.username).where(
                UserProfile.user_id.in_(sorted({user_id for user_id, _ in keys}))
            )
        )
        return {
            (row.user_id, row.user_role): row.username
            for row in result
            if (row.user_id, row.user_role) in keys
        }
