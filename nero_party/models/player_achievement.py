"""Player achievement model."""
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


class PlayerAchievement(Base):
    """An achievement unlocked by a player in a specific party."""
    __tablename__ = "player_achievements"

    # Primary key
    player_achievement_id = get_uuid_column(primary_key=True, default=uuid.uuid4)

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

    achievement_id = Column(String(50), nullable=False)
    bonus_points = Column(Integer, nullable=False, default=0)
    unlocked_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    __table_args__ = (
        UniqueConstraint(
            "player_id", "achievement_id", "party_id",
            name="uq_player_achievements_player_achievement_party",
        ),
    )

    def __repr__(self):
        return f"<PlayerAchievement(player_id={self.player_id}, achievement_id={self.achievement_id})>"
