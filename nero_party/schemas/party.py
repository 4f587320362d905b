"""Party Pydantic schemas and the party settings record."""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, Mapping, Optional, List
from uuid import UUID

from nero_party.schemas.base import BaseSchema
from nero_party.utils.exceptions import InvalidSettingsError

SETTINGS_SCHEMA_VERSION = 1

# Enumerated domains for the numeric settings
SONGS_PER_PLAYER_CHOICES = (1, 2, 3)
PLAY_DURATION_CHOICES = (30, 45, 60, 90)
BONUS_CATEGORY_COUNT_CHOICES = (0, 1, 2, 3)

_CHOICE_FIELDS = {
    "songs_per_player": SONGS_PER_PLAYER_CHOICES,
    "play_duration": PLAY_DURATION_CHOICES,
    "bonus_category_count": BONUS_CATEGORY_COUNT_CHOICES,
}

_TOGGLE_FIELDS = (
    "enable_confidence_betting",
    "enable_progressive_weighting",
    "enable_mini_events",
    "enable_power_ups",
    "enable_achievements",
    "enable_predictions",
    "enable_themes",
    "enable_vote_comments",
)


class PartySettings(BaseModel):
    """Configuration of one party.

    Stored as a versioned JSON record on the party row; see ``to_storage`` and
    ``from_storage``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    songs_per_player: int = 2
    play_duration: int = 45
    bonus_category_count: int = 2
    enable_confidence_betting: bool = True
    enable_progressive_weighting: bool = True

    # Competitive feature toggles
    enable_mini_events: bool = True
    enable_power_ups: bool = True
    enable_achievements: bool = True
    enable_predictions: bool = True
    enable_themes: bool = True
    enable_vote_comments: bool = True
    starting_power_up_points: int = 10

    def merged(self, updates: Mapping[str, Any]) -> "PartySettings":
        """Return a copy with validated ``updates`` applied; other fields keep their values."""
        normalized = normalize_settings_update(updates)
        return self.model_copy(update=normalized)

    def to_storage(self) -> dict:
        data = self.model_dump()
        data["schema_version"] = SETTINGS_SCHEMA_VERSION
        return data

    @classmethod
    def from_storage(cls, data: Optional[Mapping[str, Any]]) -> "PartySettings":
        """Load a stored record, filling fields added after it was written with defaults."""
        if not data:
            return cls()
        known = {
            key: value for key, value in data.items()
            if key in cls.model_fields
        }
        return cls(**known)


def _field_name(key: str) -> Optional[str]:
    if key in PartySettings.model_fields:
        return key
    for name, field in PartySettings.model_fields.items():
        if field.alias == key:
            return name
    return None


def normalize_settings_update(updates: Mapping[str, Any]) -> dict:
    """Validate a partial settings update.

    Accepts snake_case or camelCase keys and returns a snake_case dict.

    Raises:
        InvalidSettingsError: naming the first field outside its domain
    """
    normalized = {}
    for key, value in updates.items():
        if value is None:
            continue

        name = _field_name(key)
        if name is None:
            raise InvalidSettingsError(f"Unknown setting {key}", field=key)

        alias = PartySettings.model_fields[name].alias or name

        if name in _CHOICE_FIELDS:
            choices = _CHOICE_FIELDS[name]
            if isinstance(value, bool) or not isinstance(value, int) or value not in choices:
                allowed = ", ".join(str(choice) for choice in choices)
                raise InvalidSettingsError(f"{alias} must be one of {allowed}", field=alias)
        elif name in _TOGGLE_FIELDS:
            if not isinstance(value, bool):
                raise InvalidSettingsError(f"{alias} must be a boolean", field=alias)
        elif name == "starting_power_up_points":
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidSettingsError(f"{alias} must be a non-negative integer", field=alias)

        normalized[name] = value

    return normalized


# Request schemas
class CreatePartyRequest(BaseModel):
    """Request to create a new party."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    host_name: str = Field(..., min_length=1, max_length=50)
    settings: Optional[dict] = None


class JoinPartyRequest(BaseModel):
    """Request to join a party by code."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    code: str = Field(..., min_length=4, max_length=4, description="4-character party code")
    name: str = Field(..., min_length=1, max_length=50)


class UpdateSettingsRequest(BaseModel):
    """Host request to change lobby settings."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    player_id: UUID
    settings: dict


class HostActionRequest(BaseModel):
    """Request carrying the acting host."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    host_id: UUID


class KickPlayerRequest(HostActionRequest):
    target_id: UUID


# Response schemas
class PlayerResponse(BaseSchema):
    """Player information."""
    player_id: UUID
    party_id: UUID
    name: str
    is_host: bool
    status: str
    power_up_points: int
    joined_at: Optional[datetime]


class PartyResponse(BaseSchema):
    """Party information."""
    party_id: UUID
    code: str
    status: str
    host_player_id: UUID
    settings: PartySettings
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]


class PartyWithPlayerResponse(BaseSchema):
    """Party plus the player created by the request."""
    party: PartyResponse
    player: PlayerResponse


class PartyStateResponse(BaseSchema):
    """Party with its full roster."""
    party: PartyResponse
    players: List[PlayerResponse]


class RevealIdentityRequest(HostActionRequest):
    """Host request to reveal one player during the finale."""
    player_id: UUID
    order: int = Field(..., ge=1)
