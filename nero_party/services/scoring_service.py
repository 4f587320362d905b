"""Scoring engine: song scores, bonus categories and final standings.

Every value is recomputed from stored votes and results, so any function
here can be re-run safely.
"""
import logging
import random
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nero_party.config import get_settings
from nero_party.models import (
    Party,
    Player,
    Song,
    Vote,
    BonusResult,
    PartyIdentity,
    PlayerAchievement,
)
from nero_party.models.base import PlayerStatus
from nero_party.schemas.party import PartySettings
from nero_party.schemas.scoring import SongScore, ScoreBreakdown, FinalStanding
from nero_party.schemas.song import SongResponse
from nero_party.services.bonus_categories import BonusCategory, resolve_winner, select_categories
from nero_party.services.prediction_service import PredictionService
from nero_party.utils.exceptions import PartyNotFoundError, SongNotFoundError

logger = logging.getLogger(__name__)

# Round weights keyed by total number of rounds
ROUND_WEIGHTS = {
    1: (1.5,),
    2: (1.0, 2.0),
    3: (1.0, 1.5, 2.0),
}

HIGH_CONFIDENCE = 4
CONFIDENCE_REWARD_THRESHOLD = 7.0
CONFIDENCE_PENALTY_THRESHOLD = 4.0
CONFIDENCE_SWING = 2.0

NORMAL_VOTE_WEIGHT = 1.0

SongCalculator = Callable[[Song], Awaitable[float]]
PlayerCalculator = Callable[[UUID, UUID], Awaitable[float]]


def get_weight_multiplier(round_number: int, total_rounds: int, enabled: bool = True) -> float:
    """Multiplier for a round; later rounds count more. 1.0 when weighting is off."""
    if not enabled:
        return 1.0
    weights = ROUND_WEIGHTS.get(total_rounds)
    if not weights or not 1 <= round_number <= len(weights):
        return 1.0
    return weights[round_number - 1]


def apply_confidence_modifier(raw_average: float, confidence: int, enabled: bool) -> float:
    """
    Reward or penalty for betting high confidence on a song.

    Only confidence 4 or 5 is at stake: +2 when the song averaged 7 or more,
    -2 when it averaged 4 or less, nothing in between.
    """
    if not enabled or confidence < HIGH_CONFIDENCE:
        return 0.0
    if raw_average >= CONFIDENCE_REWARD_THRESHOLD:
        return CONFIDENCE_SWING
    if raw_average <= CONFIDENCE_PENALTY_THRESHOLD:
        return -CONFIDENCE_SWING
    return 0.0


def weighted_average(votes: Sequence[Vote], super_vote_weight: float) -> float:
    """Weighted mean rating; super votes count ``super_vote_weight``. 0.0 without votes."""
    total_weight = 0.0
    total = 0.0
    for vote in votes:
        weight = super_vote_weight if vote.super_vote else NORMAL_VOTE_WEIGHT
        total += vote.rating * weight
        total_weight += weight
    if total_weight == 0:
        return 0.0
    return total / total_weight


def vote_distribution(votes: Sequence[Vote]) -> List[int]:
    """Count of votes for each rating 1..10."""
    buckets = [0] * 10
    for vote in votes:
        if 1 <= vote.rating <= 10:
            buckets[vote.rating - 1] += 1
    return buckets


def competition_ranks(scores: Sequence[float]) -> List[int]:
    """
    Ranks for scores already sorted descending.

    Equal scores share a rank and the next score takes its position, e.g.
    [9, 9, 7] -> [1, 1, 3].
    """
    ranks = []
    for index, score in enumerate(scores):
        if index > 0 and round(score, 9) == round(scores[index - 1], 9):
            ranks.append(ranks[-1])
        else:
            ranks.append(index + 1)
    return ranks


async def _zero_song_term(song: Song) -> float:
    return 0.0


async def _zero_player_term(player_id: UUID, party_id: UUID) -> float:
    return 0.0


class ScoringService:
    """
    Computes song scores, bonus winners and final standings.

    Theme, power-up and event terms come from pluggable calculators that
    default to zero.
    """

    def __init__(
        self,
        db: AsyncSession,
        rng: Optional[random.Random] = None,
        theme_bonus_calculator: Optional[SongCalculator] = None,
        power_up_calculator: Optional[PlayerCalculator] = None,
        event_calculator: Optional[PlayerCalculator] = None,
    ):
        self.db = db
        self.rng = rng or random.Random()
        self.settings = get_settings()
        self.theme_bonus_calculator = theme_bonus_calculator or _zero_song_term
        self.power_up_calculator = power_up_calculator or _zero_player_term
        self.event_calculator = event_calculator or _zero_player_term

    get_weight_multiplier = staticmethod(get_weight_multiplier)
    apply_confidence_modifier = staticmethod(apply_confidence_modifier)

    async def _get_party_settings(self, party_id: UUID) -> PartySettings:
        party = await self.db.get(Party, party_id)
        if not party:
            raise PartyNotFoundError(f"Party {party_id} does not exist")
        return PartySettings.from_storage(party.settings)

    # ---- Song scores -------------------------------------------------------

    async def calculate_song_score(self, song_id: UUID, commit: bool = True) -> SongScore:
        """
        Recompute and store a song's score from its votes.

        weighted = raw average x round multiplier; final = weighted + confidence
        modifier.
        """
        song = await self.db.get(Song, song_id)
        if not song:
            raise SongNotFoundError(f"Song {song_id} does not exist")

        party_settings = await self._get_party_settings(song.party_id)

        result = await self.db.execute(select(Vote).where(Vote.song_id == song_id))
        votes = list(result.scalars().all())

        raw_average = weighted_average(votes, self.settings.super_vote_weight)
        multiplier = get_weight_multiplier(
            song.round_number,
            party_settings.songs_per_player,
            enabled=party_settings.enable_progressive_weighting,
        )
        weighted_score = raw_average * multiplier
        modifier = apply_confidence_modifier(
            raw_average,
            song.confidence,
            party_settings.enable_confidence_betting,
        )
        distribution = vote_distribution(votes)

        song.raw_average = raw_average
        song.weighted_score = weighted_score
        song.confidence_modifier = modifier
        song.final_score = weighted_score + modifier
        song.vote_distribution = distribution

        if commit:
            await self.db.commit()
        else:
            await self.db.flush()

        logger.debug(f"Scored song {song_id}: raw={raw_average:.2f} final={song.final_score:.2f} ({len(votes)} votes)")
        return SongScore(
            song_id=song.song_id,
            raw_average=raw_average,
            weight_multiplier=multiplier,
            weighted_score=weighted_score,
            confidence_modifier=modifier,
            final_score=song.final_score,
            vote_count=len(votes),
            vote_distribution=distribution,
        )

    async def calculate_party_song_scores(self, party_id: UUID) -> List[SongScore]:
        """Recompute every song in a party."""
        result = await self.db.execute(
            select(Song.song_id).where(Song.party_id == party_id).order_by(Song.queue_position)
        )
        scores = [
            await self.calculate_song_score(song_id, commit=False)
            for song_id in result.scalars().all()
        ]
        await self.db.commit()
        logger.info(f"Recomputed {len(scores)} song scores for party {party_id}")
        return scores

    async def _get_songs_with_scores(self, party_id: UUID, player_id: Optional[UUID] = None) -> List[Song]:
        """Songs of a party (or one player), scoring any that have no final score yet."""
        query = select(Song).where(Song.party_id == party_id)
        if player_id is not None:
            query = query.where(Song.submitter_id == player_id)
        result = await self.db.execute(query.order_by(Song.round_number, Song.queue_position))
        songs = list(result.scalars().all())

        missing = [song for song in songs if song.final_score is None]
        for song in missing:
            await self.calculate_song_score(song.song_id, commit=False)
        if missing:
            await self.db.commit()

        return songs

    async def calculate_player_score(self, player_id: UUID, party_id: UUID) -> float:
        """Sum of the player's song final scores."""
        songs = await self._get_songs_with_scores(party_id, player_id)
        return sum(song.final_score or 0.0 for song in songs)

    # ---- Bonus categories --------------------------------------------------

    def select_bonus_categories(self, count: int) -> List[BonusCategory]:
        return select_categories(self.rng, count)

    async def get_bonus_results(self, party_id: UUID) -> List[BonusResult]:
        result = await self.db.execute(
            select(BonusResult)
            .where(BonusResult.party_id == party_id)
            .order_by(BonusResult.reveal_order)
        )
        return list(result.scalars().all())

    async def calculate_bonus_winners(self, party_id: UUID) -> List[BonusResult]:
        """
        Pick the party's bonus categories and record their winners.

        Runs once per party; later calls return the stored results. A
        category nobody qualifies for is skipped.
        """
        existing = await self.get_bonus_results(party_id)
        if existing:
            return existing

        party_settings = await self._get_party_settings(party_id)
        categories = self.select_bonus_categories(party_settings.bonus_category_count)
        songs = await self._get_songs_with_scores(party_id)

        results = []
        for category in categories:
            winner = resolve_winner(category, songs)
            if winner is None:
                logger.info(f"No song qualifies for {category.id} in party {party_id}")
                continue

            results.append(BonusResult(
                party_id=party_id,
                category_id=category.id,
                category_name=category.name,
                winning_song_id=winner.song_id,
                winner_player_id=winner.submitter_id,
                points=self.settings.bonus_category_points,
                reveal_order=len(results) + 1,
            ))

        if not results:
            return []

        self.db.add_all(results)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(f"Bonus winners for party {party_id} were calculated concurrently")
            return await self.get_bonus_results(party_id)

        logger.info(f"Awarded {len(results)} bonus categories for party {party_id}")
        return results

    async def calculate_player_bonus_points(self, player_id: UUID, party_id: UUID) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(BonusResult.points), 0))
            .where(BonusResult.party_id == party_id)
            .where(BonusResult.winner_player_id == player_id)
        )
        return int(result.scalar_one())

    async def calculate_player_achievement_bonus(self, player_id: UUID, party_id: UUID) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(PlayerAchievement.bonus_points), 0))
            .where(PlayerAchievement.party_id == party_id)
            .where(PlayerAchievement.player_id == player_id)
        )
        return int(result.scalar_one())

    # ---- Breakdown and standings -------------------------------------------

    async def _theme_bonus(self, songs: Sequence[Song]) -> float:
        total = 0.0
        for song in songs:
            try:
                total += await self.theme_bonus_calculator(song)
            except Exception as e:
                logger.warning(f"Skipping theme bonus for song {song.song_id}: {e}")
        return total

    async def calculate_score_breakdown(
        self,
        player_id: UUID,
        party_id: UUID,
        songs: Optional[Sequence[Song]] = None,
    ) -> ScoreBreakdown:
        """Every additive term of a player's final score."""
        party_settings = await self._get_party_settings(party_id)
        if songs is None:
            songs = await self._get_songs_with_scores(party_id, player_id)

        base_score = sum(song.weighted_score or 0.0 for song in songs)
        if songs:
            round_multiplier = sum(
                get_weight_multiplier(
                    song.round_number,
                    party_settings.songs_per_player,
                    enabled=party_settings.enable_progressive_weighting,
                )
                for song in songs
            ) / len(songs)
        else:
            round_multiplier = 1.0
        confidence_modifier = sum(song.confidence_modifier or 0.0 for song in songs)

        bonus_points = await self.calculate_player_bonus_points(player_id, party_id)
        achievement_bonus = await self.calculate_player_achievement_bonus(player_id, party_id)
        prediction_bonus = await PredictionService(self.db).get_player_prediction_bonus(player_id, party_id)
        theme_bonus = await self._theme_bonus(songs)
        power_up_modifier = await self.power_up_calculator(player_id, party_id)
        event_modifier = await self.event_calculator(player_id, party_id)

        final_score = (
            base_score
            + confidence_modifier
            + bonus_points
            + achievement_bonus
            + prediction_bonus
            + theme_bonus
            + power_up_modifier
            + event_modifier
        )

        return ScoreBreakdown(
            base_score=base_score,
            round_multiplier=round_multiplier,
            confidence_modifier=confidence_modifier,
            bonus_points=bonus_points,
            achievement_bonus=achievement_bonus,
            prediction_bonus=prediction_bonus,
            theme_bonus=theme_bonus,
            power_up_modifier=power_up_modifier,
            event_modifier=event_modifier,
            final_score=final_score,
        )

    async def calculate_final_standings(self, party_id: UUID) -> List[FinalStanding]:
        """
        Ranked results for every remaining player, best first.

        Ties share a rank (competition ranking).
        """
        await self._get_party_settings(party_id)

        result = await self.db.execute(
            select(Player)
            .where(Player.party_id == party_id)
            .where(Player.status != PlayerStatus.KICKED.value)
            .order_by(Player.joined_at)
        )
        players = list(result.scalars().all())
        if not players:
            return []

        result = await self.db.execute(
            select(PartyIdentity).where(PartyIdentity.party_id == party_id)
        )
        aliases = {identity.player_id: identity.alias for identity in result.scalars().all()}

        songs_by_player: Dict[UUID, List[Song]] = defaultdict(list)
        for song in await self._get_songs_with_scores(party_id):
            songs_by_player[song.submitter_id].append(song)

        categories_by_player: Dict[UUID, List[str]] = defaultdict(list)
        for bonus in await self.get_bonus_results(party_id):
            categories_by_player[bonus.winner_player_id].append(bonus.category_name)

        rows = []
        for player in players:
            songs = songs_by_player.get(player.player_id, [])
            breakdown = await self.calculate_score_breakdown(player.player_id, party_id, songs)

            ordered = sorted(
                songs,
                key=lambda song: song.final_score if song.final_score is not None else (song.weighted_score or 0.0),
                reverse=True,
            )
            song_responses = [SongResponse.model_validate(song) for song in songs]

            rows.append({
                "player_id": player.player_id,
                "alias": aliases.get(player.player_id, "Unknown"),
                "real_name": player.name,
                "songs": song_responses,
                "total_base_score": breakdown.base_score,
                "confidence_modifiers": breakdown.confidence_modifier,
                "bonus_points": breakdown.bonus_points,
                "achievement_bonus": breakdown.achievement_bonus,
                "prediction_bonus": breakdown.prediction_bonus,
                "final_score": breakdown.final_score,
                "score_breakdown": breakdown,
                "bonus_categories": categories_by_player.get(player.player_id, []),
                "highest_song": SongResponse.model_validate(ordered[0]) if ordered else None,
                "lowest_song": SongResponse.model_validate(ordered[-1]) if ordered else None,
            })

        rows.sort(key=lambda row: row["final_score"], reverse=True)
        ranks = competition_ranks([row["final_score"] for row in rows])

        standings = [FinalStanding(rank=rank, **row) for rank, row in zip(ranks, rows)]
        logger.info(f"Calculated final standings for party {party_id} ({len(standings)} players)")
        return standings
