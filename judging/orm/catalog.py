"""
Content-store and user-directory tables.

These rows are owned by the surrounding platform (uploads, accounts); the
judging service only reads them through services/collaborators.py.
"""
from sqlalchemy import Column, Integer, String, Text, UniqueConstraint

from judging.orm.base import Base


class Song(Base):
    __tablename__ = "songs"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    artist = Column(String(255), nullable=False)
    audio_url = Column(Text, nullable=True)
    artwork_url = Column(Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist,
            "audio_url": self.audio_url,
            "artwork_url": self.artwork_url,
        }


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False)
    user_role = Column(String(20), nullable=False)
    username = Column(String(50), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "user_role", name="uq_user_profile_identity"),
    )
