"""Round prediction model."""
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    UniqueConstraint,
)
from datetime import datetime, UTC
import uuid

from nero_party.database import Base
from nero_party.models.base import get_uuid_column


class RoundPrediction(Base):
    """A player's predictions for one round.

    ``predictions`` is a list of ``{"type": ..., "value": ...}`` entries.
    ``evaluated_at`` is set once the round has been scored.
    """
    __tablename__ = "round_predictions"

    # Primary key
    prediction_id = get_uuid_column(primary_key=True, default=uuid.uuid4)

    # Foreign keys
    player_id = get_uuid_column(
        ForeignKey("players.player_id", ondelete="CASCADE"),
        nullable=False,
    )
    party_id = get_uuid_column(
        ForeignKey("parties.party_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    round_number = Column(Integer, nullable=False)
    predictions = Column(JSON, nullable=False)
    points_earned = Column(Integer, nullable=False, default=0)

    submitted_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    evaluated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "player_id", "party_id", "round_number",
            name="uq_round_predictions_player_party_round",
        ),
    )

    def __repr__(self):
        return f"<RoundPrediction(player_id={self.player_id}, round={self.round_number}, points={self.points_earned})>"
