"""Service for casting and reading votes."""
import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nero_party.config import get_settings
from nero_party.models import Party, Player, Song, Vote
from nero_party.models.base import PartyStatus, PlayerStatus
from nero_party.schemas.party import PartySettings
from nero_party.services.party_websocket_manager import BroadcastChannel, NullBroadcaster
from nero_party.utils import utc_now
from nero_party.utils.exceptions import (
    SongNotFoundError,
    PlayerNotFoundError,
    PlayerNotInPartyError,
    VoteNotFoundError,
    InvalidVoteRatingError,
    CannotVoteOwnSongError,
    VoteLockedError,
    InvalidStateError,
    InsufficientPointsError,
)

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 10


class VoteService:
    """
    Records votes. A vote is locked the moment it is cast and is never
    updated afterwards.
    """

    def __init__(self, db: AsyncSession, broadcaster: Optional[BroadcastChannel] = None):
        self.db = db
        self.broadcaster = broadcaster or NullBroadcaster()
        self.settings = get_settings()

    async def cast_vote(
        self,
        song_id: UUID,
        voter_id: UUID,
        rating: int,
        super_vote: bool = False,
        comment: Optional[str] = None,
    ) -> Vote:
        """
        Cast a vote on a song.

        Checks run in order and the first failure is raised. A super vote
        deducts the cost from the voter's power-up points in the same
        transaction that inserts the vote.

        Raises:
            SongNotFoundError, PlayerNotFoundError, PlayerNotInPartyError,
            InvalidVoteRatingError, CannotVoteOwnSongError, VoteLockedError,
            InvalidStateError, InsufficientPointsError
        """
        song = await self.db.get(Song, song_id)
        if not song:
            raise SongNotFoundError(f"Song {song_id} does not exist")

        voter = await self.db.get(Player, voter_id)
        if not voter:
            raise PlayerNotFoundError(f"Player {voter_id} does not exist")

        if voter.party_id != song.party_id or voter.status == PlayerStatus.KICKED.value:
            raise PlayerNotInPartyError("Player does not belong to this party")

        if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
            raise InvalidVoteRatingError(
                f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}",
                field="rating",
            )

        if song.submitter_id == voter_id:
            raise CannotVoteOwnSongError("You cannot vote on your own song")

        if await self.get_vote(song_id, voter_id):
            raise VoteLockedError("You already voted on this song")

        party = await self.db.get(Party, song.party_id)
        if party.status != PartyStatus.PLAYING.value:
            raise InvalidStateError("Votes are only accepted while the party is playing")

        party_settings = PartySettings.from_storage(party.settings)
        if not party_settings.enable_vote_comments:
            comment = None

        cost = self.settings.super_vote_cost
        if super_vote:
            if voter.power_up_points < cost:
                raise InsufficientPointsError(
                    f"Super vote needs {cost} points, you have {voter.power_up_points}"
                )

            # Conditional deduction so two concurrent super votes cannot overdraw
            result = await self.db.execute(
                update(Player)
                .where(Player.player_id == voter_id)
                .where(Player.power_up_points >= cost)
                .values(power_up_points=Player.power_up_points - cost)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                raise InsufficientPointsError(f"Super vote needs {cost} points")

        now = utc_now()
        vote = Vote(
            song_id=song_id,
            voter_id=voter_id,
            rating=rating,
            is_locked=True,
            super_vote=super_vote,
            comment=comment,
            voted_at=now,
            locked_at=now,
        )
        self.db.add(vote)

        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race against the same voter; the deduction is rolled back too
            await self.db.rollback()
            logger.warning(f"Duplicate vote rejected for song {song_id} by {voter_id}")
            raise VoteLockedError("You already voted on this song")

        await self.db.refresh(vote)
        logger.info(f"Player {voter_id} voted {rating} on song {song_id} (super_vote={super_vote})")

        self.broadcaster.publish(song.party_id, "vote_cast", {
            "song_id": song_id,
            "voter_id": voter_id,
        })
        return vote

    async def lock_vote(self, song_id: UUID, voter_id: UUID) -> Vote:
        """Return the existing vote; votes are already locked on creation."""
        vote = await self.get_vote(song_id, voter_id)
        if not vote:
            raise VoteNotFoundError("No vote to lock")
        return vote

    async def get_vote(self, song_id: UUID, voter_id: UUID) -> Optional[Vote]:
        result = await self.db.execute(
            select(Vote)
            .where(Vote.song_id == song_id)
            .where(Vote.voter_id == voter_id)
        )
        return result.scalar_one_or_none()

    async def get_votes_for_song(self, song_id: UUID) -> List[Vote]:
        result = await self.db.execute(
            select(Vote).where(Vote.song_id == song_id).order_by(Vote.voted_at)
        )
        return list(result.scalars().all())

    async def get_votes_by_player(self, voter_id: UUID) -> List[Vote]:
        result = await self.db.execute(
            select(Vote).where(Vote.voter_id == voter_id).order_by(Vote.voted_at)
        )
        return list(result.scalars().all())
