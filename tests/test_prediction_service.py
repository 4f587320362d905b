"""Tests for round predictions."""
import asyncio
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nero_party.models import Song
from nero_party.models.base import PredictionType
from nero_party.schemas.prediction import PredictionInput
from nero_party.services.prediction_service import PredictionService, evaluate_prediction
from nero_party.services.scoring_service import ScoringService
from nero_party.services.vote_service import VoteService
from nero_party.utils.exceptions import (
    InvalidPredictionError,
    InvalidStateError,
    PartyNotFoundError,
    PlayerNotFoundError,
    PlayerNotInPartyError,
)


def test_evaluate_prediction_outcomes():
    winner, loser = uuid4(), uuid4()

    assert evaluate_prediction({"type": "winner", "value": str(winner)}, winner, loser, 6.0)[2:] == (True, 2)
    assert evaluate_prediction({"type": "loser", "value": str(winner)}, winner, loser, 6.0)[2:] == (False, 0)
    assert evaluate_prediction({"type": "average", "value": "6.4"}, winner, loser, 6.0)[2:] == (True, 3)
    assert evaluate_prediction({"type": "average", "value": "6.6"}, winner, loser, 6.0)[2:] == (False, 0)
    assert evaluate_prediction({"type": "average", "value": "lots"}, winner, loser, 6.0)[2:] == (False, 0)

    prediction_type, actual, _, _ = evaluate_prediction({"type": "average", "value": "6"}, winner, loser, 6.125)
    assert prediction_type == PredictionType.AVERAGE
    assert actual == "6.12"


@pytest.fixture
def prediction_service(db_session):
    return PredictionService(db_session)


async def _songs_by_submitter(db_session, party_id):
    result = await db_session.execute(select(Song).where(Song.party_id == party_id))
    return {song.submitter_id: song for song in result.scalars().all()}


@pytest.mark.asyncio
async def test_predictions_are_scored_and_credited(db_session, party_factory, party_service, prediction_service):
    party, players = await party_factory(guests=2, status="PLAYING", settings={"songsPerPlayer": 1})
    host, first, second = players

    await prediction_service.submit_prediction(second.player_id, party.party_id, 1, [
        PredictionInput(type="winner", value=str(host.player_id)),
        PredictionInput(type="loser", value=str(second.player_id)),
        PredictionInput(type="average", value="8.3"),
    ])
    await prediction_service.submit_prediction(first.player_id, party.party_id, 1, [
        PredictionInput(type="winner", value=str(first.player_id)),
    ])

    songs = await _songs_by_submitter(db_session, party.party_id)
    votes = VoteService(db_session)
    await votes.cast_vote(songs[host.player_id].song_id, first.player_id, 9)
    await votes.cast_vote(songs[host.player_id].song_id, second.player_id, 9)
    await votes.cast_vote(songs[first.player_id].song_id, host.player_id, 5)
    await votes.cast_vote(songs[first.player_id].song_id, second.player_id, 5)
    await votes.cast_vote(songs[second.player_id].song_id, host.player_id, 3)
    await votes.cast_vote(songs[second.player_id].song_id, first.player_id, 3)
    await ScoringService(db_session).calculate_party_song_scores(party.party_id)

    results = await prediction_service.evaluate_predictions(party.party_id, 1)

    assert len(results) == 4
    assert sum(result.points_awarded for result in results if result.player_id == second.player_id) == 7
    assert sum(result.points_awarded for result in results if result.player_id == first.player_id) == 0

    assert await prediction_service.get_player_prediction_bonus(second.player_id, party.party_id) == 7
    refreshed = await party_service.get_player(second.player_id)
    assert refreshed.power_up_points == 17


@pytest.mark.asyncio
async def test_concurrent_evaluations_credit_points_once(db_session, test_engine, party_factory, party_service, prediction_service):
    party, players = await party_factory(guests=1, status="PLAYING", settings={"songsPerPlayer": 1})
    host, guest = players
    await PredictionService(db_session).submit_prediction(host.player_id, party.party_id, 1, [
        PredictionInput(type="winner", value=str(guest.player_id)),
    ])

    songs = await _songs_by_submitter(db_session, party.party_id)
    votes = VoteService(db_session)
    await votes.cast_vote(songs[guest.player_id].song_id, host.player_id, 9)
    await votes.cast_vote(songs[host.player_id].song_id, guest.player_id, 2)
    await ScoringService(db_session).calculate_party_song_scores(party.party_id)

    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as first, session_factory() as second:
        outcomes = await asyncio.gather(
            PredictionService(first).evaluate_predictions(party.party_id, 1),
            PredictionService(second).evaluate_predictions(party.party_id, 1),
        )

    assert sum(len(results) for results in outcomes) == 1
    refreshed = await party_service.get_player(host.player_id)
    assert refreshed.power_up_points == 12
    assert await PredictionService(db_session).get_player_prediction_bonus(host.player_id, party.party_id) == 2

    # Already evaluated rows are not scored twice
    assert await prediction_service.evaluate_predictions(party.party_id, 1) == []
    refreshed = await party_service.get_player(second.player_id)
    assert refreshed.power_up_points == 17


@pytest.mark.asyncio
async def test_one_prediction_set_per_round(party_factory, prediction_service):
    party, players = await party_factory(guests=1, status="PLAYING", settings={"songsPerPlayer": 2})
    guess = [PredictionInput(type="average", value="5")]

    await prediction_service.submit_prediction(players[1].player_id, party.party_id, 1, guess)
    with pytest.raises(InvalidStateError):
        await prediction_service.submit_prediction(players[1].player_id, party.party_id, 1, guess)

    await prediction_service.submit_prediction(players[1].player_id, party.party_id, 2, guess)
    stored = await prediction_service.get_player_predictions(players[1].player_id, party.party_id)
    assert [record.round_number for record in stored] == [1, 2]
    assert len(await prediction_service.get_round_predictions(party.party_id, 1)) == 1


@pytest.mark.asyncio
async def test_predictions_close_after_voting_in_round(db_session, party_factory, prediction_service):
    party, players = await party_factory(guests=1, status="PLAYING", settings={"songsPerPlayer": 1})
    songs = await _songs_by_submitter(db_session, party.party_id)
    await VoteService(db_session).cast_vote(songs[players[0].player_id].song_id, players[1].player_id, 7)

    with pytest.raises(InvalidStateError):
        await prediction_service.submit_prediction(
            players[1].player_id, party.party_id, 1, [PredictionInput(type="average", value="7")]
        )


@pytest.mark.asyncio
async def test_prediction_validation(party_factory, prediction_service):
    party, players = await party_factory(guests=1, status="PLAYING", settings={"songsPerPlayer": 1})
    other_party, outsiders = await party_factory(guests=0)
    guess = [PredictionInput(type="average", value="5")]

    with pytest.raises(PlayerNotFoundError):
        await prediction_service.submit_prediction(uuid4(), party.party_id, 1, guess)
    with pytest.raises(PartyNotFoundError):
        await prediction_service.submit_prediction(players[1].player_id, uuid4(), 1, guess)
    with pytest.raises(PlayerNotInPartyError):
        await prediction_service.submit_prediction(outsiders[0].player_id, party.party_id, 1, guess)

    with pytest.raises(InvalidPredictionError) as exc_info:
        await prediction_service.submit_prediction(players[1].player_id, party.party_id, 2, guess)
    assert exc_info.value.field == "roundNumber"

    with pytest.raises(InvalidPredictionError):
        await prediction_service.submit_prediction(players[1].player_id, party.party_id, 1, [])

    with pytest.raises(InvalidPredictionError) as exc_info:
        await prediction_service.submit_prediction(
            players[1].player_id, party.party_id, 1, [PredictionInput(type="mvp", value="x")]
        )
    assert exc_info.value.field == "type"


@pytest.mark.asyncio
async def test_predictions_disabled(party_factory, prediction_service):
    party, players = await party_factory(
        guests=1,
        status="PLAYING",
        settings={"songsPerPlayer": 1, "enablePredictions": False},
    )

    with pytest.raises(InvalidStateError):
        await prediction_service.submit_prediction(
            players[1].player_id, party.party_id, 1, [PredictionInput(type="average", value="5")]
        )
