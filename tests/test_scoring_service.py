"""Tests for the scoring engine."""
import pytest
from sqlalchemy import select

from nero_party.models import Song, Vote
from nero_party.services.scoring_service import (
    ScoringService,
    get_weight_multiplier,
    apply_confidence_modifier,
    weighted_average,
    vote_distribution,
    competition_ranks,
)
from nero_party.services.vote_service import VoteService
from tests.conftest import make_submission


def _vote(rating, super_vote=False):
    return Vote(rating=rating, super_vote=super_vote)


# ---- Pure functions --------------------------------------------------------

@pytest.mark.parametrize("round_number, total_rounds, expected", [
    (1, 1, 1.5),
    (1, 2, 1.0),
    (2, 2, 2.0),
    (1, 3, 1.0),
    (2, 3, 1.5),
    (3, 3, 2.0),
    (4, 3, 1.0),
    (1, 5, 1.0),
])
def test_weight_multiplier(round_number, total_rounds, expected):
    assert get_weight_multiplier(round_number, total_rounds) == expected


def test_weight_multiplier_disabled():
    assert get_weight_multiplier(3, 3, enabled=False) == 1.0


@pytest.mark.parametrize("raw_average, confidence, expected", [
    (8.5, 5, 2.0),
    (7.0, 4, 2.0),
    (6.9, 5, 0.0),
    (4.0, 4, -2.0),
    (2.0, 5, -2.0),
    (9.0, 3, 0.0),
    (1.0, 1, 0.0),
])
def test_confidence_modifier(raw_average, confidence, expected):
    assert apply_confidence_modifier(raw_average, confidence, True) == expected


def test_confidence_modifier_disabled():
    assert apply_confidence_modifier(9.5, 5, False) == 0.0


def test_weighted_average_counts_super_votes_more():
    assert weighted_average([_vote(8), _vote(6)], 1.5) == pytest.approx(7.0)
    assert weighted_average([_vote(10, super_vote=True), _vote(4)], 1.5) == pytest.approx(7.6)
    assert weighted_average([], 1.5) == 0.0


def test_vote_distribution_buckets():
    distribution = vote_distribution([_vote(1), _vote(10), _vote(10), _vote(5)])

    assert distribution == [1, 0, 0, 0, 1, 0, 0, 0, 0, 2]


def test_competition_ranks():
    assert competition_ranks([9.0, 9.0, 7.0]) == [1, 1, 3]
    assert competition_ranks([5.0, 4.0, 4.0, 4.0, 1.0]) == [1, 2, 2, 2, 5]
    assert competition_ranks([]) == []


def test_service_exposes_pure_helpers():
    assert ScoringService.get_weight_multiplier(2, 2) == 2.0
    assert ScoringService.apply_confidence_modifier(8.0, 5, True) == 2.0


# ---- Database-backed scoring -----------------------------------------------

async def _songs_by_submitter(db_session, party_id):
    result = await db_session.execute(select(Song).where(Song.party_id == party_id))
    return {song.submitter_id: song for song in result.scalars().all()}


@pytest.mark.asyncio
async def test_song_without_votes_scores_zero(db_session, party_factory):
    party, players = await party_factory(guests=1, status="PLAYING", settings={"songsPerPlayer": 1})
    song = (await _songs_by_submitter(db_session, party.party_id))[players[0].player_id]

    score = await ScoringService(db_session).calculate_song_score(song.song_id)

    assert score.raw_average == 0.0
    assert score.vote_count == 0
    assert score.vote_distribution == [0] * 10
    assert score.final_score == 0.0


@pytest.mark.asyncio
async def test_confident_song_without_votes_is_penalized(db_session, party_service, song_service):
    party, host = await party_service.create_party("Alice", {"songsPerPlayer": 1})
    _, guest = await party_service.join_party(party.code, "Bob")
    await party_service.start_party(party.party_id, host.player_id)
    song = await song_service.submit_song(party.party_id, host.player_id, make_submission(1, confidence=5))
    await song_service.submit_song(party.party_id, guest.player_id, make_submission(2))
    await party_service.transition_to_playing(party.party_id)

    score = await ScoringService(db_session).calculate_song_score(song.song_id)

    assert score.confidence_modifier == -2.0
    assert score.final_score == -2.0


@pytest.mark.asyncio
async def test_song_score_applies_round_weight_and_confidence(db_session, party_service, song_service):
    party, host = await party_service.create_party("Alice", {"songsPerPlayer": 1})
    _, guest = await party_service.join_party(party.code, "Bob")
    await party_service.start_party(party.party_id, host.player_id)
    song = await song_service.submit_song(party.party_id, host.player_id, make_submission(1, confidence=5))
    await song_service.submit_song(party.party_id, guest.player_id, make_submission(2))
    await party_service.transition_to_playing(party.party_id)
    await VoteService(db_session).cast_vote(song.song_id, guest.player_id, 8)

    score = await ScoringService(db_session).calculate_song_score(song.song_id)

    assert score.raw_average == 8.0
    assert score.weight_multiplier == 1.5
    assert score.weighted_score == pytest.approx(12.0)
    assert score.confidence_modifier == 2.0
    assert score.final_score == pytest.approx(14.0)

    refreshed = await db_session.get(Song, song.song_id, populate_existing=True)
    assert refreshed.final_score == pytest.approx(14.0)


@pytest.mark.asyncio
async def test_final_standings_share_ranks_on_ties(db_session, party_factory):
    party, players = await party_factory(
        guests=2,
        status="PLAYING",
        settings={"songsPerPlayer": 1, "bonusCategoryCount": 0},
    )
    host, first, second = players
    songs = await _songs_by_submitter(db_session, party.party_id)
    votes = VoteService(db_session)

    await votes.cast_vote(songs[host.player_id].song_id, first.player_id, 8)
    await votes.cast_vote(songs[host.player_id].song_id, second.player_id, 8)
    await votes.cast_vote(songs[first.player_id].song_id, host.player_id, 8)
    await votes.cast_vote(songs[first.player_id].song_id, second.player_id, 8)
    await votes.cast_vote(songs[second.player_id].song_id, host.player_id, 6)
    await votes.cast_vote(songs[second.player_id].song_id, first.player_id, 6)

    standings = await ScoringService(db_session).calculate_final_standings(party.party_id)

    assert [standing.rank for standing in standings] == [1, 1, 3]
    assert standings[-1].player_id == second.player_id
    assert standings[0].final_score == pytest.approx(12.0)
    assert standings[-1].final_score == pytest.approx(9.0)
    assert standings[-1].score_breakdown.round_multiplier == 1.5
    assert all(standing.alias != "Unknown" for standing in standings)
    assert standings[0].highest_song is not None


@pytest.mark.asyncio
async def test_standings_exclude_kicked_players(db_session, party_service, song_service):
    party, host = await party_service.create_party("Alice", {"songsPerPlayer": 1})
    _, guest = await party_service.join_party(party.code, "Bob")
    _, kicked = await party_service.join_party(party.code, "Mallory")
    await party_service.kick_player(party.party_id, host.player_id, kicked.player_id)
    await party_service.start_party(party.party_id, host.player_id)
    await song_service.submit_song(party.party_id, host.player_id, make_submission(1))
    await song_service.submit_song(party.party_id, guest.player_id, make_submission(2))
    await party_service.transition_to_playing(party.party_id)

    standings = await ScoringService(db_session).calculate_final_standings(party.party_id)

    assert {standing.player_id for standing in standings} == {host.player_id, guest.player_id}


@pytest.mark.asyncio
async def test_score_breakdown_includes_pluggable_terms(db_session, party_factory):
    party, players = await party_factory(guests=1, status="PLAYING", settings={"songsPerPlayer": 1})

    async def theme_bonus(song):
        return 1.5

    async def power_up(player_id, party_id):
        return 2.0

    async def event(player_id, party_id):
        return -1.0

    service = ScoringService(
        db_session,
        theme_bonus_calculator=theme_bonus,
        power_up_calculator=power_up,
        event_calculator=event,
    )
    breakdown = await service.calculate_score_breakdown(players[0].player_id, party.party_id)

    assert breakdown.theme_bonus == 1.5
    assert breakdown.power_up_modifier == 2.0
    assert breakdown.event_modifier == -1.0
    assert breakdown.final_score == pytest.approx(2.5)


@pytest.mark.asyncio
async def test_failing_theme_bonus_is_skipped(db_session, party_factory):
    party, players = await party_factory(guests=1, status="PLAYING", settings={"songsPerPlayer": 1})

    async def broken_theme(song):
        raise RuntimeError("theme lookup failed")

    service = ScoringService(db_session, theme_bonus_calculator=broken_theme)
    breakdown = await service.calculate_score_breakdown(players[0].player_id, party.party_id)

    assert breakdown.theme_bonus == 0.0


@pytest.mark.asyncio
async def test_bonus_winners_are_recorded_once(db_session, party_factory, rng):
    party, players = await party_factory(
        guests=2,
        status="PLAYING",
        settings={"songsPerPlayer": 1, "bonusCategoryCount": 3},
    )
    songs = await _songs_by_submitter(db_session, party.party_id)
    await VoteService(db_session).cast_vote(songs[players[1].player_id].song_id, players[0].player_id, 9)

    service = ScoringService(db_session, rng=rng)
    first = await service.calculate_bonus_winners(party.party_id)
    second = await service.calculate_bonus_winners(party.party_id)

    # Any three categories include crowd-favorite or cult-classic, and the voted song qualifies for both
    assert len(first) >= 1
    assert [result.reveal_order for result in first] == list(range(1, len(first) + 1))
    assert all(result.points == 10 for result in first)
    assert [result.bonus_result_id for result in second] == [result.bonus_result_id for result in first]
    assert await service.calculate_player_bonus_points(first[0].winner_player_id, party.party_id) >= 10
