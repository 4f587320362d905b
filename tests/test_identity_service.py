"""Tests for anonymous identities and the leaderboard."""
import random
from uuid import uuid4

import pytest
from sqlalchemy import select, update

from nero_party.models import Party, Song
from nero_party.models.base import PartyStatus
from nero_party.services.identity_pools import ALIAS_POOL, COLOR_POOL, SILHOUETTE_POOL
from nero_party.services.identity_service import IdentityService
from nero_party.services.scoring_service import ScoringService
from nero_party.services.vote_service import VoteService
from nero_party.utils.exceptions import (
    IdentityPoolExhaustedError,
    InvalidStateError,
    PlayerNotFoundError,
)


async def _enter_finale(db_session, party_id):
    await db_session.execute(
        update(Party).where(Party.party_id == party_id).values(status=PartyStatus.FINALE.value)
    )
    await db_session.commit()


def test_pools_have_no_duplicates():
    for pool in (ALIAS_POOL, SILHOUETTE_POOL, COLOR_POOL):
        assert len(pool) == len(set(pool))
    assert len(COLOR_POOL) == 16


@pytest.mark.asyncio
async def test_identities_are_distinct_and_stable(db_session, party_factory):
    party, players = await party_factory(guests=4, status="SUBMITTING")
    service = IdentityService(db_session, rng=random.Random(5))

    identities = await service.get_identities(party.party_id)
    assert len(identities) == 5
    assert len({identity.alias for identity in identities}) == 5
    assert len({identity.silhouette for identity in identities}) == 5
    assert len({identity.color for identity in identities}) == 5
    assert all(identity.alias in ALIAS_POOL for identity in identities)
    assert not any(identity.is_revealed for identity in identities)

    # Assigning again keeps the existing identities
    again = await service.assign_identities(party.party_id)
    assert {identity.identity_id for identity in again} == {identity.identity_id for identity in identities}


@pytest.mark.asyncio
async def test_pool_exhaustion(db_session, party_factory):
    party, players = await party_factory(guests=0)
    service = IdentityService(db_session)
    crowd = players * (len(COLOR_POOL) + 1)

    with pytest.raises(IdentityPoolExhaustedError):
        await service.assign_identities(party.party_id, crowd)


@pytest.mark.asyncio
async def test_reveal_identity(db_session, party_factory):
    party, players = await party_factory(guests=1, status="SUBMITTING")
    service = IdentityService(db_session)

    with pytest.raises(InvalidStateError):
        await service.reveal_identity(party.party_id, players[1].player_id, 1)

    await _enter_finale(db_session, party.party_id)
    revealed = await service.reveal_identity(party.party_id, players[1].player_id, 1)

    assert revealed.is_revealed is True
    assert revealed.reveal_order == 1
    assert revealed.revealed_at is not None

    with pytest.raises(PlayerNotFoundError):
        await service.reveal_identity(party.party_id, uuid4(), 2)


@pytest.mark.asyncio
async def test_anonymous_leaderboard_hides_names_until_revealed(db_session, party_factory):
    party, players = await party_factory(guests=1, status="PLAYING", settings={"songsPerPlayer": 1})
    host, guest = players
    result = await db_session.execute(
        select(Song).where(Song.party_id == party.party_id).where(Song.submitter_id == host.player_id)
    )
    await VoteService(db_session).cast_vote(result.scalar_one().song_id, guest.player_id, 8)
    await ScoringService(db_session).calculate_party_song_scores(party.party_id)
    service = IdentityService(db_session)

    board = await service.get_anonymous_leaderboard(party.party_id)

    assert [entry.rank for entry in board] == [1, 2]
    assert board[0].score == pytest.approx(12.0)
    assert all(entry.revealed_name is None for entry in board)
    assert all(entry.movement == "new" for entry in board)
    assert all(entry.song_count == 1 for entry in board)

    host_alias = (await service.get_identity(host.player_id)).alias
    assert board[0].alias == host_alias

    await _enter_finale(db_session, party.party_id)
    await service.reveal_identity(party.party_id, host.player_id, 1)
    board = await service.get_anonymous_leaderboard(
        party.party_id,
        previous_scores={host.player_id: 10.0, guest.player_id: 0.0},
    )

    assert board[0].revealed_name == host.name
    assert board[0].movement == "up"
    assert board[1].revealed_name is None
    assert board[1].movement == "same"

    order = await service.get_reveal_order(party.party_id)
    assert [player.player_id for player in order] == [guest.player_id, host.player_id]


@pytest.mark.asyncio
async def test_leaderboard_tied_players_share_rank(db_session, party_factory):
    party, players = await party_factory(guests=2, status="PLAYING", settings={"songsPerPlayer": 1})
    await ScoringService(db_session).calculate_party_song_scores(party.party_id)

    board = await IdentityService(db_session).get_anonymous_leaderboard(party.party_id)

    assert [entry.score for entry in board] == [0.0, 0.0, 0.0]
    assert [entry.rank for entry in board] == [1, 1, 1]
