"""Base utilities for SQLAlchemy models."""
from enum import Enum
import uuid
from sqlalchemy import Column, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.sql import sqltypes


class PartyStatus(str, Enum):
    """Party lifecycle status. Only ever moves forward through this order."""
    LOBBY = "LOBBY"
    SUBMITTING = "SUBMITTING"
    PLAYING = "PLAYING"
    FINALE = "FINALE"
    COMPLETE = "COMPLETE"


class PlayerStatus(str, Enum):
    """Player connection status."""
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    KICKED = "KICKED"


class PredictionType(str, Enum):
    """Kinds of round prediction a player can make."""
    WINNER = "winner"
    LOSER = "loser"
    AVERAGE = "average"


PARTY_STATUS_ORDER = [
    PartyStatus.LOBBY,
    PartyStatus.SUBMITTING,
    PartyStatus.PLAYING,
    PartyStatus.FINALE,
    PartyStatus.COMPLETE,
]


class AdaptiveUUID(sqltypes.TypeDecorator):
    """UUID type stored natively on PostgreSQL and as hex text elsewhere."""

    impl = sqltypes.String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    @staticmethod
    def _coerce_uuid(value):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))

    def process_bind_param(self, value, dialect):
        value = self._coerce_uuid(value)
        if value is None:
            return None
        if dialect.name == "postgresql":
            return value
        return value.hex

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return self._coerce_uuid(value)


def get_uuid_column(*args, **kwargs):
    """Get a UUID column that adapts to the database dialect.

    Args:
        *args: Positional arguments to pass to Column (e.g., ForeignKey)
        **kwargs: Keyword arguments to pass to Column (e.g., primary_key=True)

    Returns:
        Column: Configured SQLAlchemy Column for UUID storage

    Example:
        party_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
        song_id = get_uuid_column(ForeignKey("songs.song_id"), nullable=False)
    """
    return Column(AdaptiveUUID(), *args, **kwargs)
