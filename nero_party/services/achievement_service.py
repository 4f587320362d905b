"""Achievement catalog and unlocking.

Conditions are evaluated by ``evaluate_condition``, a pure function over an
``AchievementContext`` snapshot, so they can be tested without a database.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nero_party.models import Party, Player, Song, Vote, BonusResult, PlayerAchievement
from nero_party.models.base import PlayerStatus
from nero_party.schemas.party import PartySettings
from nero_party.utils.exceptions import (
    PartyNotFoundError,
    PlayerNotFoundError,
    InvalidAchievementError,
)

logger = logging.getLogger(__name__)


class Rarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    LEGENDARY = "legendary"


RARITY_ORDER = {
    Rarity.COMMON: 1,
    Rarity.UNCOMMON: 2,
    Rarity.RARE: 3,
    Rarity.LEGENDARY: 4,
}


class ConditionKind(str, Enum):
    SCORE_THRESHOLD = "score_threshold"
    PERFECT_SCORE = "perfect_score"
    CONSISTENCY = "consistency"
    COMEBACK = "comeback"
    UNDERDOG = "underdog"
    POLARIZING = "polarizing"
    SWEEP = "sweep"


# Underdog start position meaning "last place"
LAST_PLACE = -1


@dataclass(frozen=True)
class AchievementCondition:
    kind: ConditionKind
    threshold: float = 0.0
    # "any" or "all" songs for score thresholds
    song: str = "any"
    start_position: int = LAST_PLACE
    end_position: int = 1


@dataclass(frozen=True)
class Achievement:
    id: str
    name: str
    description: str
    rarity: Rarity
    bonus_points: int
    condition: AchievementCondition


ACHIEVEMENTS = (
    Achievement(
        id="crowd-pleaser",
        name="Crowd Pleaser",
        description="Get a 9+ average on any song",
        rarity=Rarity.UNCOMMON,
        bonus_points=5,
        condition=AchievementCondition(ConditionKind.SCORE_THRESHOLD, threshold=9.0, song="any"),
    ),
    Achievement(
        id="perfect-10",
        name="Perfect 10",
        description="Get a perfect 10.0 average",
        rarity=Rarity.LEGENDARY,
        bonus_points=15,
        condition=AchievementCondition(ConditionKind.PERFECT_SCORE),
    ),
    Achievement(
        id="consistent-king",
        name="Consistent King",
        description="All your songs within 1 point of each other",
        rarity=Rarity.RARE,
        bonus_points=10,
        condition=AchievementCondition(ConditionKind.CONSISTENCY, threshold=1.0),
    ),
    Achievement(
        id="comeback-kid",
        name="Comeback Kid",
        description="Gain 3 or more positions between rounds",
        rarity=Rarity.UNCOMMON,
        bonus_points=5,
        condition=AchievementCondition(ConditionKind.COMEBACK, threshold=3),
    ),
    Achievement(
        id="underdog-victory",
        name="Underdog Victory",
        description="Go from last place to first",
        rarity=Rarity.LEGENDARY,
        bonus_points=20,
        condition=AchievementCondition(ConditionKind.UNDERDOG, start_position=LAST_PLACE, end_position=1),
    ),
    Achievement(
        id="love-hate",
        name="Love/Hate",
        description="Receive both a 1 and a 10 on the same song",
        rarity=Rarity.RARE,
        bonus_points=8,
        condition=AchievementCondition(ConditionKind.POLARIZING),
    ),
    Achievement(
        id="category-sweep",
        name="Category Sweep",
        description="Win 2 or more bonus categories",
        rarity=Rarity.RARE,
        bonus_points=10,
        condition=AchievementCondition(ConditionKind.SWEEP, threshold=2),
    ),
)

ACHIEVEMENTS_BY_ID = {achievement.id: achievement for achievement in ACHIEVEMENTS}


@dataclass(frozen=True)
class SongFacts:
    """The parts of a song an achievement condition looks at."""
    submitter_id: UUID
    round_number: int
    raw_average: Optional[float]
    final_score: Optional[float]
    ratings: tuple = ()


@dataclass
class AchievementContext:
    player_id: UUID
    player_songs: List[SongFacts] = field(default_factory=list)
    all_songs: List[SongFacts] = field(default_factory=list)
    categories_won: int = 0


def round_positions(context: AchievementContext) -> List[tuple]:
    """
    Player's position after each round by cumulative final score.

    Returns a list of (round_number, position, total_players); position 1 is
    the leader.
    """
    songs_by_round: Dict[int, List[SongFacts]] = defaultdict(list)
    for song in context.all_songs:
        songs_by_round[song.round_number].append(song)

    cumulative = {song.submitter_id: 0.0 for song in context.all_songs}
    positions = []
    for round_number in sorted(songs_by_round):
        for song in songs_by_round[round_number]:
            cumulative[song.submitter_id] += song.final_score or 0.0

        ordered = sorted(cumulative.items(), key=lambda item: item[1], reverse=True)
        for index, (submitter_id, _) in enumerate(ordered):
            if submitter_id == context.player_id:
                positions.append((round_number, index + 1, len(ordered)))
                break

    return positions


def evaluate_condition(condition: AchievementCondition, context: AchievementContext) -> bool:
    """Whether ``context`` satisfies ``condition``."""
    scored = [song for song in context.player_songs if song.raw_average is not None]

    if condition.kind == ConditionKind.SCORE_THRESHOLD:
        if not scored:
            return False
        hits = [song.raw_average >= condition.threshold for song in scored]
        return all(hits) if condition.song == "all" else any(hits)

    if condition.kind == ConditionKind.PERFECT_SCORE:
        return any(song.raw_average == 10.0 for song in scored)

    if condition.kind == ConditionKind.CONSISTENCY:
        if len(scored) < 2:
            return False
        averages = [song.raw_average for song in scored]
        return max(averages) - min(averages) <= condition.threshold

    if condition.kind == ConditionKind.COMEBACK:
        positions = round_positions(context)
        return any(
            previous[1] - current[1] >= condition.threshold
            for previous, current in zip(positions, positions[1:])
        )

    if condition.kind == ConditionKind.UNDERDOG:
        positions = round_positions(context)
        if len(positions) < 2:
            return False
        _, first_position, total_players = positions[0]
        required_start = total_players if condition.start_position == LAST_PLACE else condition.start_position
        return first_position == required_start and positions[-1][1] == condition.end_position

    if condition.kind == ConditionKind.POLARIZING:
        return any(1 in song.ratings and 10 in song.ratings for song in context.player_songs)

    if condition.kind == ConditionKind.SWEEP:
        return context.categories_won >= condition.threshold

    return False


def _song_facts(song: Song, ratings: Sequence[int]) -> SongFacts:
    return SongFacts(
        submitter_id=song.submitter_id,
        round_number=song.round_number,
        raw_average=song.raw_average,
        final_score=song.final_score,
        ratings=tuple(ratings),
    )


class AchievementService:
    """Checks and records achievements for a party."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def build_context(self, player_id: UUID, party_id: UUID) -> AchievementContext:
        """Snapshot of a party's songs, votes and bonus wins from one player's view."""
        result = await self.db.execute(
            select(Song).where(Song.party_id == party_id).order_by(Song.round_number, Song.queue_position)
        )
        songs = list(result.scalars().all())

        ratings_by_song: Dict[UUID, List[int]] = defaultdict(list)
        if songs:
            result = await self.db.execute(
                select(Vote.song_id, Vote.rating).where(Vote.song_id.in_([song.song_id for song in songs]))
            )
            for song_id, rating in result.all():
                ratings_by_song[song_id].append(rating)

        result = await self.db.execute(
            select(BonusResult.bonus_result_id)
            .where(BonusResult.party_id == party_id)
            .where(BonusResult.winner_player_id == player_id)
        )
        categories_won = len(result.all())

        all_songs = [_song_facts(song, ratings_by_song[song.song_id]) for song in songs]
        return AchievementContext(
            player_id=player_id,
            player_songs=[facts for facts in all_songs if facts.submitter_id == player_id],
            all_songs=all_songs,
            categories_won=categories_won,
        )

    async def check_achievements(self, player_id: UUID, party_id: UUID) -> List[Achievement]:
        """Achievements the player now qualifies for and has not unlocked yet."""
        if not await self.db.get(Player, player_id):
            raise PlayerNotFoundError(f"Player {player_id} does not exist")
        if not await self.db.get(Party, party_id):
            raise PartyNotFoundError(f"Party {party_id} does not exist")

        unlocked = {record.achievement_id for record in await self.get_player_achievements(player_id, party_id)}
        context = await self.build_context(player_id, party_id)

        return [
            achievement for achievement in ACHIEVEMENTS
            if achievement.id not in unlocked and evaluate_condition(achievement.condition, context)
        ]

    async def unlock_achievement(self, player_id: UUID, achievement_id: str, party_id: UUID) -> PlayerAchievement:
        """Record an achievement. Unlocking it again returns the existing record."""
        achievement = ACHIEVEMENTS_BY_ID.get(achievement_id)
        if not achievement:
            raise InvalidAchievementError(f"Unknown achievement {achievement_id}", field="achievementId")

        if not await self.db.get(Player, player_id):
            raise PlayerNotFoundError(f"Player {player_id} does not exist")

        existing = await self._get_unlock(player_id, achievement_id, party_id)
        if existing:
            return existing

        record = PlayerAchievement(
            player_id=player_id,
            party_id=party_id,
            achievement_id=achievement_id,
            bonus_points=achievement.bonus_points,
        )
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            return await self._get_unlock(player_id, achievement_id, party_id)

        await self.db.refresh(record)
        logger.info(f"Player {player_id} unlocked {achievement_id} in party {party_id}")
        return record

    async def _get_unlock(self, player_id: UUID, achievement_id: str, party_id: UUID) -> Optional[PlayerAchievement]:
        result = await self.db.execute(
            select(PlayerAchievement)
            .where(PlayerAchievement.player_id == player_id)
            .where(PlayerAchievement.achievement_id == achievement_id)
            .where(PlayerAchievement.party_id == party_id)
        )
        return result.scalar_one_or_none()

    async def award_achievements(self, party_id: UUID) -> List[PlayerAchievement]:
        """Check and unlock achievements for every player in the party."""
        party = await self.db.get(Party, party_id)
        if not party:
            raise PartyNotFoundError(f"Party {party_id} does not exist")

        if not PartySettings.from_storage(party.settings).enable_achievements:
            return []

        result = await self.db.execute(
            select(Player.player_id)
            .where(Player.party_id == party_id)
            .where(Player.status != PlayerStatus.KICKED.value)
        )
        unlocked = []
        for player_id in result.scalars().all():
            for achievement in await self.check_achievements(player_id, party_id):
                unlocked.append(await self.unlock_achievement(player_id, achievement.id, party_id))

        logger.info(f"Awarded {len(unlocked)} achievements in party {party_id}")
        return unlocked

    async def get_player_achievements(self, player_id: UUID, party_id: Optional[UUID] = None) -> List[PlayerAchievement]:
        query = select(PlayerAchievement).where(PlayerAchievement.player_id == player_id)
        if party_id is not None:
            query = query.where(PlayerAchievement.party_id == party_id)
        result = await self.db.execute(query.order_by(PlayerAchievement.unlocked_at))
        return list(result.scalars().all())

    async def get_party_achievements(self, party_id: UUID) -> List[PlayerAchievement]:
        result = await self.db.execute(
            select(PlayerAchievement)
            .where(PlayerAchievement.party_id == party_id)
            .order_by(PlayerAchievement.unlocked_at)
        )
        return list(result.scalars().all())

    async def get_achievement_reveal_order(self, party_id: UUID) -> List[PlayerAchievement]:
        """Party achievements ordered for the finale: commonest first, then by unlock time."""
        records = await self.get_party_achievements(party_id)

        def sort_key(record):
            achievement = ACHIEVEMENTS_BY_ID.get(record.achievement_id)
            rarity = RARITY_ORDER[achievement.rarity] if achievement else 0
            return rarity, record.unlocked_at

        return sorted(records, key=sort_key)
