"""Anonymous party identity model."""
from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    Integer,
    Boolean,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
import uuid

from nero_party.database import Base
from nero_party.models.base import get_uuid_column


class PartyIdentity(Base):
    """Alias, silhouette and color shown in place of a player's real name."""
    __tablename__ = "party_identities"

    # Primary key
    identity_id = get_uuid_column(primary_key=True, default=uuid.uuid4)

    # Foreign keys
    party_id = get_uuid_column(
        ForeignKey("parties.party_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    player_id = get_uuid_column(
        ForeignKey("players.player_id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    alias = Column(String(50), nullable=False)
    silhouette = Column(String(50), nullable=False)
    color = Column(String(7), nullable=False)

    # Finale reveal tracking
    is_revealed = Column(Boolean, nullable=False, default=False)
    revealed_at = Column(DateTime(timezone=True), nullable=True)
    reveal_order = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("party_id", "alias", name="uq_party_identities_party_alias"),
    )

    # Relationships
    player = relationship("Player")

    def __repr__(self):
        return f"<PartyIdentity(player_id={self.player_id}, alias={self.alias}, revealed={self.is_revealed})>"
