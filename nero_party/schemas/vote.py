"""Vote Pydantic schemas."""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional
from uuid import UUID

from nero_party.schemas.base import BaseSchema


class CastVoteRequest(BaseModel):
    """Request to rate a song."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    voter_id: UUID
    # Range is checked by the vote service so the error carries its own code
    rating: int
    super_vote: bool = False
    comment: Optional[str] = Field(default=None, max_length=200)


class VoteResponse(BaseSchema):
    """A locked vote."""
    vote_id: UUID
    song_id: UUID
    voter_id: UUID
    rating: int
    is_locked: bool
    super_vote: bool
    comment: Optional[str]
    voted_at: datetime
    locked_at: datetime
