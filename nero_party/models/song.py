"""Song model."""
from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    Integer,
    Float,
    JSON,
)
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
import uuid

from nero_party.database import Base
from nero_party.models.base import get_uuid_column


class Song(Base):
    """A submitted song.

    Display metadata arrives already validated from the music search
    integration. The score columns are filled in by the scoring service and
    can be recomputed from votes at any time.
    """
    __tablename__ = "songs"

    # Primary key
    song_id = get_uuid_column(primary_key=True, default=uuid.uuid4)

    # Foreign keys
    party_id = get_uuid_column(
        ForeignKey("parties.party_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    submitter_id = get_uuid_column(
        ForeignKey("players.player_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Display metadata
    external_track_ref = Column(String(100), nullable=False)
    title = Column(String(300), nullable=False)
    artist = Column(String(300), nullable=False)
    artwork_url = Column(String(500), nullable=True)
    duration = Column(Integer, nullable=False, default=0)
    permalink_url = Column(String(500), nullable=True)

    confidence = Column(Integer, nullable=False)
    round_number = Column(Integer, nullable=False)
    queue_position = Column(Integer, nullable=False, default=0)

    # Scores
    raw_average = Column(Float, nullable=True)
    weighted_score = Column(Float, nullable=True)
    confidence_modifier = Column(Float, nullable=True)
    final_score = Column(Float, nullable=True)
    vote_distribution = Column(JSON, nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    # Relationships
    party = relationship("Party", back_populates="songs")
    submitter = relationship("Player", back_populates="submitted_songs")
    votes = relationship(
        "Vote",
        back_populates="song",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Song(id={self.song_id}, title={self.title}, round={self.round_number}, final_score={self.final_score})>"
