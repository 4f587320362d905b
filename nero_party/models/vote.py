"""Vote model."""
from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    Integer,
    Boolean,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
import uuid

from nero_party.database import Base
from nero_party.models.base import get_uuid_column


class Vote(Base):
    """A single rating of a song. Write-once: there is no update path."""
    __tablename__ = "votes"

    # Primary key
    vote_id = get_uuid_column(primary_key=True, default=uuid.uuid4)

    # Foreign keys
    song_id = get_uuid_column(
        ForeignKey("songs.song_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    voter_id = get_uuid_column(
        ForeignKey("players.player_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    rating = Column(Integer, nullable=False)
    is_locked = Column(Boolean, nullable=False, default=True)
    super_vote = Column(Boolean, nullable=False, default=False)
    comment = Column(String(200), nullable=True)

    # Timestamps
    voted_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    locked_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    __table_args__ = (
        UniqueConstraint("song_id", "voter_id", name="uq_votes_song_voter"),
        CheckConstraint("rating >= 1 AND rating <= 10", name="ck_votes_rating_range"),
    )

    # Relationships
    song = relationship("Song", back_populates="votes")

    def __repr__(self):
        return f"<Vote(id={self.vote_id}, song_id={self.song_id}, voter_id={self.voter_id}, rating={self.rating})>"
