"""Bonus category result model."""
from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    Integer,
    UniqueConstraint,
)
from datetime import datetime, UTC
import uuid

from nero_party.database import Base
from nero_party.models.base import get_uuid_column


class BonusResult(Base):
    """Winner of one bonus category in a party."""
    __tablename__ = "bonus_results"

    # Primary key
    bonus_result_id = get_uuid_column(primary_key=True, default=uuid.uuid4)

    # Foreign keys
    party_id = get_uuid_column(
        ForeignKey("parties.party_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    winning_song_id = get_uuid_column(
        ForeignKey("songs.song_id", ondelete="CASCADE"),
        nullable=False,
    )
    winner_player_id = get_uuid_column(
        ForeignKey("players.player_id", ondelete="CASCADE"),
        nullable=False,
    )

    category_id = Column(String(50), nullable=False)
    category_name = Column(String(100), nullable=False)
    points = Column(Integer, nullable=False, default=10)
    reveal_order = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    __table_args__ = (
        UniqueConstraint("party_id", "category_id", name="uq_bonus_results_party_category"),
    )

    def __repr__(self):
        return f"<BonusResult(party_id={self.party_id}, category={self.category_id}, winner={self.winner_player_id})>"
