"""Party model."""
from sqlalchemy import (
    Column,
    String,
    DateTime,
    JSON,
    Index,
    text,
)
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
import uuid

from nero_party.database import Base
from nero_party.models.base import get_uuid_column, PartyStatus


class Party(Base):
    """A single game session with a join code and lifecycle status.

    The join code is only unique among parties that have not completed; a
    partial unique index enforces that. ``settings`` holds a serialized
    ``PartySettings`` record.
    """
    __tablename__ = "parties"

    # Primary key
    party_id = get_uuid_column(primary_key=True, default=uuid.uuid4)

    # Join code, 4 uppercase alphanumerics
    code = Column(String(4), nullable=False)

    status = Column(String(20), nullable=False, default=PartyStatus.LOBBY.value)
    # Possible values: 'LOBBY', 'SUBMITTING', 'PLAYING', 'FINALE', 'COMPLETE'

    # Host reference (players.party_id already points back here)
    host_player_id = get_uuid_column(nullable=False)

    settings = Column(JSON, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # Codes of completed parties may be reused
        Index(
            "uq_parties_active_code",
            "code",
            unique=True,
            postgresql_where=text("status != 'COMPLETE'"),
            sqlite_where=text("status != 'COMPLETE'"),
        ),
    )

    # Relationships
    players = relationship(
        "Player",
        back_populates="party",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    songs = relationship(
        "Song",
        back_populates="party",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Party(id={self.party_id}, code={self.code}, status={self.status})>"
