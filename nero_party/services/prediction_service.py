"""Service for round predictions."""
import logging
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nero_party.models import Party, Player, Song, Vote, RoundPrediction
from nero_party.models.base import PredictionType
from nero_party.schemas.party import PartySettings
from nero_party.schemas.prediction import PredictionInput, PredictionResult
from nero_party.utils import utc_now
from nero_party.utils.exceptions import (
    PartyNotFoundError,
    PlayerNotFoundError,
    PlayerNotInPartyError,
    InvalidStateError,
    InvalidPredictionError,
)

logger = logging.getLogger(__name__)

PREDICTION_POINTS = {
    PredictionType.WINNER: 2,
    PredictionType.LOSER: 2,
    PredictionType.AVERAGE: 3,
}

# A round-average prediction counts when it is this close
AVERAGE_TOLERANCE = 0.5


def evaluate_prediction(
    prediction: dict,
    winner_id: UUID,
    loser_id: UUID,
    round_average: float,
) -> tuple:
    """
    Judge one stored prediction against a round's results.

    Returns:
        (prediction_type, actual, correct, points)
    """
    prediction_type = PredictionType(prediction["type"])
    value = prediction["value"]

    if prediction_type == PredictionType.WINNER:
        actual = str(winner_id)
        correct = value == actual
    elif prediction_type == PredictionType.LOSER:
        actual = str(loser_id)
        correct = value == actual
    else:
        actual = f"{round_average:.2f}"
        try:
            correct = abs(float(value) - round_average) <= AVERAGE_TOLERANCE
        except (TypeError, ValueError):
            correct = False

    points = PREDICTION_POINTS[prediction_type] if correct else 0
    return prediction_type, actual, correct, points


class PredictionService:
    """Records predictions and scores them once a round is over."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def submit_prediction(
        self,
        player_id: UUID,
        party_id: UUID,
        round_number: int,
        predictions: Sequence[PredictionInput],
    ) -> RoundPrediction:
        """
        Store a player's predictions for a round.

        Predictions close once the player has voted on any song of the round,
        and each player predicts a round at most once.

        Raises:
            PlayerNotFoundError, PartyNotFoundError, PlayerNotInPartyError,
            InvalidStateError, InvalidPredictionError
        """
        player = await self.db.get(Player, player_id)
        if not player:
            raise PlayerNotFoundError(f"Player {player_id} does not exist")

        party = await self.db.get(Party, party_id)
        if not party:
            raise PartyNotFoundError(f"Party {party_id} does not exist")

        if player.party_id != party_id:
            raise PlayerNotInPartyError("Player does not belong to this party")

        party_settings = PartySettings.from_storage(party.settings)
        if not party_settings.enable_predictions:
            raise InvalidStateError("Predictions are disabled for this party")

        if not 1 <= round_number <= party_settings.songs_per_player:
            raise InvalidPredictionError(f"Round {round_number} does not exist", field="roundNumber")

        votes_in_round = await self.db.execute(
            select(func.count(Vote.vote_id))
            .join(Song, Song.song_id == Vote.song_id)
            .where(Song.party_id == party_id)
            .where(Song.round_number == round_number)
            .where(Vote.voter_id == player_id)
        )
        if votes_in_round.scalar_one() > 0:
            raise InvalidStateError("Predictions close once you have voted in the round")

        existing = await self._get_prediction(player_id, party_id, round_number)
        if existing:
            raise InvalidStateError("You already made predictions for this round")

        if not predictions:
            raise InvalidPredictionError("At least one prediction is required", field="predictions")

        valid_types = {prediction_type.value for prediction_type in PredictionType}
        for prediction in predictions:
            if prediction.type not in valid_types:
                raise InvalidPredictionError(f"Unknown prediction type {prediction.type}", field="type")

        record = RoundPrediction(
            player_id=player_id,
            party_id=party_id,
            round_number=round_number,
            predictions=[{"type": p.type, "value": p.value} for p in predictions],
            points_earned=0,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise InvalidStateError("You already made predictions for this round")

        await self.db.refresh(record)
        logger.info(f"Player {player_id} made {len(predictions)} prediction(s) for round {round_number}")
        return record

    async def _get_prediction(self, player_id: UUID, party_id: UUID, round_number: int) -> Optional[RoundPrediction]:
        result = await self.db.execute(
            select(RoundPrediction)
            .where(RoundPrediction.player_id == player_id)
            .where(RoundPrediction.party_id == party_id)
            .where(RoundPrediction.round_number == round_number)
        )
        return result.scalar_one_or_none()

    async def evaluate_predictions(self, party_id: UUID, round_number: int) -> List[PredictionResult]:
        """
        Score every unevaluated prediction of a round.

        Correct predictions are credited to the player's power-up points.
        Each row is claimed by a conditional UPDATE that stamps it, so a
        repeated or concurrent evaluation credits every row once.
        """
        party = await self.db.get(Party, party_id)
        if not party:
            raise PartyNotFoundError(f"Party {party_id} does not exist")

        result = await self.db.execute(
            select(RoundPrediction)
            .where(RoundPrediction.party_id == party_id)
            .where(RoundPrediction.round_number == round_number)
            .where(RoundPrediction.evaluated_at.is_(None))
        )
        records = list(result.scalars().all())
        if not records:
            return []

        result = await self.db.execute(
            select(Song)
            .where(Song.party_id == party_id)
            .where(Song.round_number == round_number)
            .where(Song.final_score.isnot(None))
            .order_by(Song.final_score.desc())
        )
        songs = list(result.scalars().all())
        if not songs:
            return []

        winner_id = songs[0].submitter_id
        loser_id = songs[-1].submitter_id
        round_average = sum(song.final_score for song in songs) / len(songs)

        results = []
        evaluated = 0
        now = utc_now()
        for record in records:
            points_earned = 0
            record_results = []
            for prediction in record.predictions:
                prediction_type, actual, correct, points = evaluate_prediction(
                    prediction, winner_id, loser_id, round_average
                )
                points_earned += points
                record_results.append(PredictionResult(
                    player_id=record.player_id,
                    prediction_type=prediction_type.value,
                    predicted=str(prediction["value"]),
                    actual=actual,
                    correct=correct,
                    points_awarded=points,
                ))

            # Claim the row; only the evaluation that stamps it may credit points
            claim = await self.db.execute(
                update(RoundPrediction)
                .where(RoundPrediction.prediction_id == record.prediction_id)
                .where(RoundPrediction.evaluated_at.is_(None))
                .values(evaluated_at=now, points_earned=points_earned)
            )
            if claim.rowcount != 1:
                logger.info(f"Prediction {record.prediction_id} was already evaluated, skipping")
                continue

            evaluated += 1
            results.extend(record_results)
            if points_earned > 0:
                await self.db.execute(
                    update(Player)
                    .where(Player.player_id == record.player_id)
                    .values(power_up_points=Player.power_up_points + points_earned)
                    .execution_options(synchronize_session=False)
                )

        await self.db.commit()
        logger.info(f"Evaluated {evaluated} prediction set(s) for party {party_id} round {round_number}")
        return results

    async def get_player_prediction_bonus(self, player_id: UUID, party_id: UUID) -> int:
        """Total points earned from evaluated predictions."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(RoundPrediction.points_earned), 0))
            .where(RoundPrediction.player_id == player_id)
            .where(RoundPrediction.party_id == party_id)
        )
        return int(result.scalar_one())

    async def get_round_predictions(self, party_id: UUID, round_number: int) -> List[RoundPrediction]:
        result = await self.db.execute(
            select(RoundPrediction)
            .where(RoundPrediction.party_id == party_id)
            .where(RoundPrediction.round_number == round_number)
            .order_by(RoundPrediction.submitted_at)
        )
        return list(result.scalars().all())

    async def get_player_predictions(self, player_id: UUID, party_id: UUID) -> List[RoundPrediction]:
        result = await self.db.execute(
            select(RoundPrediction)
            .where(RoundPrediction.player_id == player_id)
            .where(RoundPrediction.party_id == party_id)
            .order_by(RoundPrediction.round_number)
        )
        return list(result.scalars().all())
