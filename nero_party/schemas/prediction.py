"""Round prediction Pydantic schemas."""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional, List
from uuid import UUID

from nero_party.schemas.base import BaseSchema


class PredictionInput(BaseModel):
    """A single prediction: the winner, the loser, or the round average."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Checked against PredictionType by the service
    type: str
    value: str


class SubmitPredictionRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    player_id: UUID
    predictions: List[PredictionInput]


class PredictionResult(BaseSchema):
    """Outcome of one evaluated prediction."""
    player_id: UUID
    prediction_type: str
    predicted: str
    actual: str
    correct: bool
    points_awarded: int


class RoundPredictionResponse(BaseSchema):
    prediction_id: UUID
    player_id: UUID
    party_id: UUID
    round_number: int
    predictions: List[PredictionInput]
    points_earned: int
    submitted_at: datetime
    evaluated_at: Optional[datetime]
