"""Anonymous identities and the alias-only leaderboard."""
import logging
import random
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nero_party.models import Party, Player, PartyIdentity, Song
from nero_party.models.base import PartyStatus, PlayerStatus
from nero_party.schemas.scoring import LeaderboardEntry
from nero_party.services.identity_pools import ALIAS_POOL, SILHOUETTE_POOL, COLOR_POOL
from nero_party.services.scoring_service import competition_ranks
from nero_party.utils import utc_now
from nero_party.utils.exceptions import (
    IdentityPoolExhaustedError,
    InvalidStateError,
    PartyNotFoundError,
    PlayerNotFoundError,
)

logger = logging.getLogger(__name__)


class IdentityService:
    """Assigns aliases, silhouettes and colors, and reveals them in the finale."""

    def __init__(self, db: AsyncSession, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng or random.Random()

    async def assign_identities(
        self,
        party_id: UUID,
        players: Optional[List[Player]] = None,
    ) -> List[PartyIdentity]:
        """
        Give every player a distinct alias, silhouette and color.

        Drawn without replacement from the identity pools. A party that already
        has identities keeps them unchanged.

        Args:
            party_id: Party to assign identities for
            players: Players to cover; defaults to every non-kicked player

        Raises:
            IdentityPoolExhaustedError: more players than a pool holds
        """
        existing = await self.get_identities(party_id)
        if existing:
            return existing

        if players is None:
            result = await self.db.execute(
                select(Player)
                .where(Player.party_id == party_id)
                .where(Player.status != PlayerStatus.KICKED.value)
                .order_by(Player.joined_at)
            )
            players = list(result.scalars().all())

        count = len(players)
        for pool_name, pool in (("alias", ALIAS_POOL), ("silhouette", SILHOUETTE_POOL), ("color", COLOR_POOL)):
            if count > len(pool):
                raise IdentityPoolExhaustedError(
                    f"Party has {count} players but the {pool_name} pool only holds {len(pool)}"
                )

        aliases = self.rng.sample(ALIAS_POOL, count)
        silhouettes = self.rng.sample(SILHOUETTE_POOL, count)
        colors = self.rng.sample(COLOR_POOL, count)

        identities = [
            PartyIdentity(
                party_id=party_id,
                player_id=player.player_id,
                alias=alias,
                silhouette=silhouette,
                color=color,
                is_revealed=False,
            )
            for player, alias, silhouette, color in zip(players, aliases, silhouettes, colors)
        ]
        self.db.add_all(identities)

        try:
            await self.db.commit()
        except IntegrityError:
            # Another request assigned identities first
            await self.db.rollback()
            logger.warning(f"Identities for party {party_id} were assigned concurrently")
            return await self.get_identities(party_id)

        logger.info(f"Assigned {count} identities for party {party_id}")
        return identities

    async def get_identity(self, player_id: UUID) -> Optional[PartyIdentity]:
        result = await self.db.execute(
            select(PartyIdentity).where(PartyIdentity.player_id == player_id)
        )
        return result.scalar_one_or_none()

    async def get_identities(self, party_id: UUID) -> List[PartyIdentity]:
        result = await self.db.execute(
            select(PartyIdentity)
            .where(PartyIdentity.party_id == party_id)
            .order_by(PartyIdentity.alias)
        )
        return list(result.scalars().all())

    async def reveal_identity(self, party_id: UUID, player_id: UUID, order: int) -> PartyIdentity:
        """Mark a player's identity as revealed at position ``order`` of the finale."""
        party = await self.db.get(Party, party_id, populate_existing=True)
        if not party:
            raise PartyNotFoundError(f"Party {party_id} does not exist")
        if party.status != PartyStatus.FINALE.value:
            raise InvalidStateError("Identities are only revealed during the finale")

        result = await self.db.execute(
            select(PartyIdentity)
            .where(PartyIdentity.party_id == party_id)
            .where(PartyIdentity.player_id == player_id)
        )
        identity = result.scalar_one_or_none()
        if not identity:
            raise PlayerNotFoundError(f"No identity for player {player_id} in party {party_id}")

        identity.is_revealed = True
        identity.revealed_at = utc_now()
        identity.reveal_order = order
        await self.db.commit()
        await self.db.refresh(identity)

        logger.info(f"Revealed identity {identity.alias} for player {player_id} (order {order})")
        return identity

    async def _player_totals(self, party_id: UUID) -> Dict[UUID, tuple]:
        """Map player_id to (score, song_count). Unscored songs count as 0."""
        result = await self.db.execute(
            select(
                Song.submitter_id,
                func.coalesce(func.sum(Song.final_score), 0.0),
                func.count(Song.song_id),
            )
            .where(Song.party_id == party_id)
            .group_by(Song.submitter_id)
        )
        return {submitter_id: (float(score), count) for submitter_id, score, count in result.all()}

    async def get_reveal_order(self, party_id: UUID) -> List[Player]:
        """Players in finale reveal order: lowest score first."""
        result = await self.db.execute(
            select(Player).where(Player.party_id == party_id).order_by(Player.joined_at)
        )
        players = list(result.scalars().all())
        totals = await self._player_totals(party_id)

        return sorted(players, key=lambda player: totals.get(player.player_id, (0.0, 0))[0])

    async def get_anonymous_leaderboard(
        self,
        party_id: UUID,
        previous_scores: Optional[Dict[UUID, float]] = None,
    ) -> List[LeaderboardEntry]:
        """
        Leaderboard keyed by alias, highest score first.

        ``revealed_name`` stays None until the player's identity is revealed.
        ``previous_scores`` maps player_id to the score shown last time and
        drives the movement indicator.
        """
        result = await self.db.execute(
            select(PartyIdentity, Player.name)
            .join(Player, Player.player_id == PartyIdentity.player_id)
            .where(PartyIdentity.party_id == party_id)
        )
        rows = result.all()
        if not rows:
            return []

        totals = await self._player_totals(party_id)
        scored = []
        for identity, real_name in rows:
            score, song_count = totals.get(identity.player_id, (0.0, 0))
            scored.append((identity, real_name, score, song_count))

        scored.sort(key=lambda row: row[2], reverse=True)

        ranks = competition_ranks([row[2] for row in scored])
        entries = []
        for rank, (identity, real_name, score, song_count) in zip(ranks, scored):
            previous_score = (previous_scores or {}).get(identity.player_id)
            if previous_score is None:
                movement = "new"
            elif score > previous_score:
                movement = "up"
            elif score < previous_score:
                movement = "down"
            else:
                movement = "same"

            entries.append(LeaderboardEntry(
                rank=rank,
                alias=identity.alias,
                silhouette=identity.silhouette,
                color=identity.color,
                score=score,
                previous_score=previous_score,
                movement=movement,
                song_count=song_count,
                is_revealed=identity.is_revealed,
                revealed_name=real_name if identity.is_revealed else None,
            ))

        return entries
