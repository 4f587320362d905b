"""Player model."""
from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    Integer,
    Boolean,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
import uuid

from nero_party.database import Base
from nero_party.models.base import get_uuid_column, PlayerStatus


class Player(Base):
    """A participant in one party.

    Players are never physically deleted except when their party is removed.
    """
    __tablename__ = "players"

    # Primary key
    player_id = get_uuid_column(primary_key=True, default=uuid.uuid4)

    # Foreign keys
    party_id = get_uuid_column(
        ForeignKey("parties.party_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name = Column(String(50), nullable=False)
    is_host = Column(Boolean, nullable=False, default=False)

    status = Column(String(20), nullable=False, default=PlayerStatus.CONNECTED.value)
    # Possible values: 'CONNECTED', 'DISCONNECTED', 'KICKED'

    # Opaque realtime connection token
    connection_handle = Column(String(100), nullable=True)

    power_up_points = Column(Integer, nullable=False, default=0)

    joined_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    __table_args__ = (
        CheckConstraint("power_up_points >= 0", name="ck_players_power_up_points_non_negative"),
    )

    # Relationships
    party = relationship("Party", back_populates="players")
    submitted_songs = relationship("Song", back_populates="submitter", passive_deletes=True)

    def __repr__(self):
        return f"<Player(id={self.player_id}, name={self.name}, party_id={self.party_id}, status={self.status})>"
