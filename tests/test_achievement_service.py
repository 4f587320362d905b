"""Tests for achievement conditions and unlocking."""
from uuid import uuid4

import pytest
from sqlalchemy import select

from nero_party.models import Song
from nero_party.services.achievement_service import (
    ACHIEVEMENTS_BY_ID,
    AchievementContext,
    AchievementService,
    SongFacts,
    evaluate_condition,
    round_positions,
)
from nero_party.services.scoring_service import ScoringService
from nero_party.services.vote_service import VoteService
from nero_party.utils.exceptions import InvalidAchievementError, PlayerNotFoundError


def _facts(submitter_id, round_number, average, ratings=(), final_score=None):
    return SongFacts(
        submitter_id=submitter_id,
        round_number=round_number,
        raw_average=average,
        final_score=final_score if final_score is not None else average,
        ratings=tuple(ratings),
    )


def _context(player_id, all_songs, categories_won=0):
    return AchievementContext(
        player_id=player_id,
        player_songs=[song for song in all_songs if song.submitter_id == player_id],
        all_songs=all_songs,
        categories_won=categories_won,
    )


def _condition(achievement_id):
    return ACHIEVEMENTS_BY_ID[achievement_id].condition


def test_crowd_pleaser_needs_any_song_at_nine():
    me = uuid4()

    assert evaluate_condition(_condition("crowd-pleaser"), _context(me, [_facts(me, 1, 9.0)]))
    assert not evaluate_condition(_condition("crowd-pleaser"), _context(me, [_facts(me, 1, 8.9)]))
    assert not evaluate_condition(_condition("crowd-pleaser"), _context(me, []))


def test_perfect_ten():
    me = uuid4()

    assert evaluate_condition(_condition("perfect-10"), _context(me, [_facts(me, 1, 10.0)]))
    assert not evaluate_condition(_condition("perfect-10"), _context(me, [_facts(me, 1, 9.99)]))


def test_consistent_king_needs_two_close_songs():
    me = uuid4()
    condition = _condition("consistent-king")

    assert evaluate_condition(condition, _context(me, [_facts(me, 1, 7.0), _facts(me, 2, 8.0)]))
    assert not evaluate_condition(condition, _context(me, [_facts(me, 1, 6.0), _facts(me, 2, 8.0)]))
    assert not evaluate_condition(condition, _context(me, [_facts(me, 1, 7.0)]))


def test_love_hate_needs_one_and_ten_on_same_song():
    me = uuid4()
    condition = _condition("love-hate")

    assert evaluate_condition(condition, _context(me, [_facts(me, 1, 5.5, ratings=(1, 10))]))
    split = [_facts(me, 1, 1.0, ratings=(1,)), _facts(me, 2, 10.0, ratings=(10,))]
    assert not evaluate_condition(condition, _context(me, split))


def test_category_sweep():
    me = uuid4()
    condition = _condition("category-sweep")

    assert evaluate_condition(condition, _context(me, [], categories_won=2))
    assert not evaluate_condition(condition, _context(me, [], categories_won=1))


def test_round_positions_and_comeback():
    me, a, b, c = uuid4(), uuid4(), uuid4(), uuid4()
    songs = [
        _facts(a, 1, 9.0),
        _facts(b, 1, 8.0),
        _facts(c, 1, 7.0),
        _facts(me, 1, 1.0),
        _facts(me, 2, 20.0),
        _facts(a, 2, 1.0),
        _facts(b, 2, 1.0),
        _facts(c, 2, 1.0),
    ]
    context = _context(me, songs)

    assert round_positions(context) == [(1, 4, 4), (2, 1, 4)]
    assert evaluate_condition(_condition("comeback-kid"), context)
    assert evaluate_condition(_condition("underdog-victory"), context)


def test_underdog_needs_last_place_start():
    me, other = uuid4(), uuid4()
    songs = [
        _facts(me, 1, 9.0),
        _facts(other, 1, 1.0),
        _facts(me, 2, 9.0),
        _facts(other, 2, 1.0),
    ]

    assert not evaluate_condition(_condition("underdog-victory"), _context(me, songs))


def test_single_round_cannot_be_a_comeback():
    me, other = uuid4(), uuid4()
    context = _context(me, [_facts(me, 1, 9.0), _facts(other, 1, 1.0)])

    assert not evaluate_condition(_condition("comeback-kid"), context)
    assert not evaluate_condition(_condition("underdog-victory"), context)


@pytest.mark.asyncio
async def test_unlock_is_idempotent(db_session, party_factory):
    party, players = await party_factory(guests=1)
    service = AchievementService(db_session)

    first = await service.unlock_achievement(players[0].player_id, "perfect-10", party.party_id)
    second = await service.unlock_achievement(players[0].player_id, "perfect-10", party.party_id)

    assert first.player_achievement_id == second.player_achievement_id
    assert first.bonus_points == 15
    assert len(await service.get_player_achievements(players[0].player_id, party.party_id)) == 1


@pytest.mark.asyncio
async def test_unlock_rejects_unknown_achievement_or_player(db_session, party_factory):
    party, players = await party_factory(guests=1)
    service = AchievementService(db_session)

    with pytest.raises(InvalidAchievementError):
        await service.unlock_achievement(players[0].player_id, "moonwalk", party.party_id)
    with pytest.raises(PlayerNotFoundError):
        await service.unlock_achievement(uuid4(), "perfect-10", party.party_id)


@pytest.mark.asyncio
async def test_award_achievements_from_votes(db_session, party_factory):
    party, players = await party_factory(guests=2, status="PLAYING", settings={"songsPerPlayer": 1})
    host, first, second = players
    result = await db_session.execute(
        select(Song).where(Song.party_id == party.party_id).where(Song.submitter_id == host.player_id)
    )
    song = result.scalar_one()
    votes = VoteService(db_session)
    await votes.cast_vote(song.song_id, first.player_id, 10)
    await votes.cast_vote(song.song_id, second.player_id, 10)
    await ScoringService(db_session).calculate_party_song_scores(party.party_id)

    service = AchievementService(db_session)
    unlocked = await service.award_achievements(party.party_id)

    host_ids = {record.achievement_id for record in unlocked if record.player_id == host.player_id}
    assert {"crowd-pleaser", "perfect-10"} <= host_ids

    # Nothing new on a second pass
    assert await service.award_achievements(party.party_id) == []

    ordered = await service.get_achievement_reveal_order(party.party_id)
    rarities = [ACHIEVEMENTS_BY_ID[record.achievement_id].rarity for record in ordered]
    assert rarities.index(ACHIEVEMENTS_BY_ID["crowd-pleaser"].rarity) < rarities.index(
        ACHIEVEMENTS_BY_ID["perfect-10"].rarity
    )


@pytest.mark.asyncio
async def test_award_achievements_disabled(db_session, party_factory):
    party, _ = await party_factory(
        guests=1,
        status="PLAYING",
        settings={"songsPerPlayer": 1, "enableAchievements": False},
    )

    assert await AchievementService(db_session).award_achievements(party.party_id) == []
