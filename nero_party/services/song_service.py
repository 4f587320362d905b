"""Service for song submissions and round organization."""
import logging
import random
from collections import defaultdict
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from nero_party.models import Party, Player, Song
from nero_party.models.base import PartyStatus, PlayerStatus
from nero_party.schemas.party import PartySettings
from nero_party.schemas.song import SongSubmission, SongResponse, RoundSummary
from nero_party.services.party_websocket_manager import BroadcastChannel, NullBroadcaster
from nero_party.services.scoring_service import get_weight_multiplier
from nero_party.utils.exceptions import (
    PartyNotFoundError,
    PlayerNotFoundError,
    PlayerNotInPartyError,
    InvalidStateError,
    InvalidConfidenceError,
    SongLimitReachedError,
    DuplicateSongError,
    SongNotFoundError,
    NotSubmitterError,
)

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 1
MAX_CONFIDENCE = 5


class SongService:
    """Persists songs handed over by the music search integration."""

    def __init__(
        self,
        db: AsyncSession,
        broadcaster: Optional[BroadcastChannel] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.broadcaster = broadcaster or NullBroadcaster()
        self.rng = rng or random.Random()

    async def submit_song(self, party_id: UUID, player_id: UUID, submission: SongSubmission) -> Song:
        """
        Record a song for a player during the SUBMITTING phase.

        The song's round is the player's submission count so far plus one.
        Queue position stays 0 until the party starts playing.

        Raises:
            PartyNotFoundError, PlayerNotFoundError, PlayerNotInPartyError,
            InvalidStateError, InvalidConfidenceError, SongLimitReachedError,
            DuplicateSongError
        """
        party = await self.db.get(Party, party_id)
        if not party:
            raise PartyNotFoundError(f"Party {party_id} does not exist")

        player = await self.db.get(Player, player_id)
        if not player:
            raise PlayerNotFoundError(f"Player {player_id} does not exist")

        if player.party_id != party_id:
            raise PlayerNotInPartyError("Player does not belong to this party")
        if player.status == PlayerStatus.KICKED.value:
            raise PlayerNotInPartyError("Player was removed from this party")

        if party.status != PartyStatus.SUBMITTING.value:
            raise InvalidStateError("Songs can only be submitted during the SUBMITTING phase")

        confidence = submission.confidence
        if isinstance(confidence, bool) or not MIN_CONFIDENCE <= confidence <= MAX_CONFIDENCE:
            raise InvalidConfidenceError(
                f"Confidence must be between {MIN_CONFIDENCE} and {MAX_CONFIDENCE}",
                field="confidence",
            )

        settings = PartySettings.from_storage(party.settings)
        existing = await self.get_player_songs(party_id, player_id)
        if len(existing) >= settings.songs_per_player:
            raise SongLimitReachedError(
                f"Player already submitted {settings.songs_per_player} song(s)"
            )

        if any(song.external_track_ref == submission.external_track_ref for song in existing):
            raise DuplicateSongError("This track was already submitted")

        song = Song(
            party_id=party_id,
            submitter_id=player_id,
            external_track_ref=submission.external_track_ref,
            title=submission.title,
            artist=submission.artist,
            artwork_url=submission.artwork_url,
            duration=submission.duration,
            permalink_url=submission.permalink_url,
            confidence=confidence,
            round_number=len(existing) + 1,
            queue_position=0,
        )
        self.db.add(song)
        await self.db.commit()
        await self.db.refresh(song)

        logger.info(f"Player {player_id} submitted song {song.song_id} for round {song.round_number}")
        # Only the count is shared so submissions stay anonymous
        self.broadcaster.publish(party_id, "song_submitted", {
            "player_id": player_id,
            "song_count": len(existing) + 1,
        })
        return song

    async def remove_song(self, song_id: UUID, player_id: UUID) -> None:
        """Withdraw a song while submissions are still open."""
        song = await self.db.get(Song, song_id)
        if not song:
            raise SongNotFoundError(f"Song {song_id} does not exist")

        if song.submitter_id != player_id:
            raise NotSubmitterError("Only the submitter can remove this song")

        party = await self.db.get(Party, song.party_id)
        if party.status != PartyStatus.SUBMITTING.value:
            raise InvalidStateError("Songs can only be removed during the SUBMITTING phase")

        party_id = song.party_id
        await self.db.delete(song)
        await self.db.flush()

        # Keep round numbers contiguous for the remaining songs
        remaining = await self.get_player_songs(party_id, player_id)
        for index, remaining_song in enumerate(remaining, start=1):
            remaining_song.round_number = index

        await self.db.commit()
        logger.info(f"Player {player_id} removed song {song_id}")

    async def get_song(self, song_id: UUID) -> Optional[Song]:
        return await self.db.get(Song, song_id)

    async def get_songs(self, party_id: UUID) -> List[Song]:
        """All songs of a party in queue order."""
        result = await self.db.execute(
            select(Song)
            .where(Song.party_id == party_id)
            .order_by(Song.queue_position, Song.round_number, Song.submitted_at)
        )
        return list(result.scalars().all())

    async def get_player_songs(self, party_id: UUID, player_id: UUID) -> List[Song]:
        result = await self.db.execute(
            select(Song)
            .where(Song.party_id == party_id)
            .where(Song.submitter_id == player_id)
            .order_by(Song.round_number, Song.submitted_at)
        )
        return list(result.scalars().all())

    async def count_songs_by_player(self, party_id: UUID) -> dict:
        """Map submitter_id to number of songs submitted."""
        result = await self.db.execute(
            select(Song.submitter_id, func.count(Song.song_id))
            .where(Song.party_id == party_id)
            .group_by(Song.submitter_id)
        )
        return {submitter_id: count for submitter_id, count in result.all()}

    async def organize_into_rounds(self, party_id: UUID) -> List[RoundSummary]:
        """
        Shuffle the songs of each round and number the whole queue.

        Queue positions run from 1 across rounds in round order. Changes are
        flushed but not committed; the caller owns the transaction.
        """
        party = await self.db.get(Party, party_id)
        if not party:
            raise PartyNotFoundError(f"Party {party_id} does not exist")

        settings = PartySettings.from_storage(party.settings)

        songs_by_round = defaultdict(list)
        for song in await self.get_songs(party_id):
            songs_by_round[song.round_number].append(song)

        rounds = []
        queue_position = 1
        for round_number in sorted(songs_by_round):
            round_songs = list(songs_by_round[round_number])
            self.rng.shuffle(round_songs)

            for song in round_songs:
                song.queue_position = queue_position
                queue_position += 1

            rounds.append(RoundSummary(
                round_number=round_number,
                weight_multiplier=get_weight_multiplier(
                    round_number,
                    settings.songs_per_player,
                    enabled=settings.enable_progressive_weighting,
                ),
                songs=[SongResponse.model_validate(song) for song in round_songs],
            ))

        await self.db.flush()
        logger.info(f"Organized {queue_position - 1} songs into {len(rounds)} round(s) for party {party_id}")
        return rounds
