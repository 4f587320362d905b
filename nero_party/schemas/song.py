"""Song Pydantic schemas."""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional, List
from uuid import UUID

from nero_party.schemas.base import BaseSchema


class SongSubmission(BaseModel):
    """Track metadata already validated by the music search integration."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    external_track_ref: str = Field(..., min_length=1, max_length=100)
    title: str = Field(..., min_length=1, max_length=300)
    artist: str = Field(..., min_length=1, max_length=300)
    artwork_url: Optional[str] = None
    duration: int = Field(default=0, ge=0)
    permalink_url: Optional[str] = None
    # Range is checked by the song service so the error carries its own code
    confidence: int


class SubmitSongRequest(SongSubmission):
    player_id: UUID


class SongResponse(BaseSchema):
    """Song information, including any computed scores."""
    song_id: UUID
    party_id: UUID
    submitter_id: UUID
    external_track_ref: str
    title: str
    artist: str
    artwork_url: Optional[str]
    duration: int
    permalink_url: Optional[str]
    confidence: int
    round_number: int
    queue_position: int
    raw_average: Optional[float]
    weighted_score: Optional[float]
    confidence_modifier: Optional[float]
    final_score: Optional[float]
    vote_distribution: Optional[List[int]]
    submitted_at: datetime


class RoundSummary(BaseSchema):
    """Songs of one round in queue order."""
    round_number: int
    weight_multiplier: float
    songs: List[SongResponse]
