"""Bonus category catalog and winner resolution.

Each category names a strategy; strategies are pure functions over a party's
scored songs that return the winning song or None when nothing qualifies.
Ties keep the first song encountered.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from nero_party.models import Song

BONUS_CATEGORY_POINTS = 10


class BonusStrategy(str, Enum):
    HIGHEST_WEIGHTED = "highest_weighted"
    HIGHEST_VARIANCE = "highest_variance"
    LOW_CONFIDENCE_HIGHEST = "low_confidence_highest"
    MAX_CONFIDENCE_HIGHEST = "max_confidence_highest"


@dataclass(frozen=True)
class BonusCategory:
    id: str
    name: str
    description: str
    strategy: BonusStrategy
    points: int = BONUS_CATEGORY_POINTS


BONUS_CATEGORIES = (
    BonusCategory(
        id="crowd-favorite",
        name="Crowd Favorite",
        description="Highest average rating",
        strategy=BonusStrategy.HIGHEST_WEIGHTED,
    ),
    BonusCategory(
        id="cult-classic",
        name="Cult Classic",
        description="Most divisive song",
        strategy=BonusStrategy.HIGHEST_VARIANCE,
    ),
    BonusCategory(
        id="hidden-gem",
        name="Hidden Gem",
        description="Best score with low confidence",
        strategy=BonusStrategy.LOW_CONFIDENCE_HIGHEST,
    ),
    BonusCategory(
        id="bold-move",
        name="Bold Move",
        description="High confidence that paid off",
        strategy=BonusStrategy.MAX_CONFIDENCE_HIGHEST,
    ),
)

BONUS_CATEGORIES_BY_ID = {category.id: category for category in BONUS_CATEGORIES}


def histogram_variance(distribution: Optional[Sequence[int]]) -> float:
    """Population variance of ratings rebuilt from a 10-bucket histogram."""
    if not distribution:
        return 0.0

    count = sum(distribution)
    if count == 0:
        return 0.0

    mean = sum((index + 1) * bucket for index, bucket in enumerate(distribution)) / count
    squared = sum(bucket * ((index + 1) - mean) ** 2 for index, bucket in enumerate(distribution))
    return squared / count


def _highest(songs: Sequence[Song], key: Callable[[Song], float]) -> Optional[Song]:
    winner = None
    best = None
    for song in songs:
        value = key(song)
        if best is None or value > best:
            winner, best = song, value
    return winner


def _highest_weighted(songs: Sequence[Song]) -> Optional[Song]:
    return _highest(songs, lambda song: song.weighted_score)


def _highest_variance(songs: Sequence[Song]) -> Optional[Song]:
    voted = [song for song in songs if sum(song.vote_distribution or ()) > 0]
    return _highest(voted, lambda song: histogram_variance(song.vote_distribution))


def _low_confidence_highest(songs: Sequence[Song]) -> Optional[Song]:
    return _highest_weighted([song for song in songs if song.confidence <= 2])


def _max_confidence_highest(songs: Sequence[Song]) -> Optional[Song]:
    return _highest_weighted([song for song in songs if song.confidence == 5])


_STRATEGIES: Dict[BonusStrategy, Callable[[Sequence[Song]], Optional[Song]]] = {
    BonusStrategy.HIGHEST_WEIGHTED: _highest_weighted,
    BonusStrategy.HIGHEST_VARIANCE: _highest_variance,
    BonusStrategy.LOW_CONFIDENCE_HIGHEST: _low_confidence_highest,
    BonusStrategy.MAX_CONFIDENCE_HIGHEST: _max_confidence_highest,
}


def resolve_winner(category: BonusCategory, songs: Sequence[Song]) -> Optional[Song]:
    """Winning song of ``category`` among songs that have been scored."""
    scored = [song for song in songs if song.weighted_score is not None]
    return _STRATEGIES[category.strategy](scored)


def select_categories(rng, count: int) -> List[BonusCategory]:
    """
    Pick ``count`` categories at random.

    Uses a Fisher-Yates shuffle driven by ``rng``. Asking for the whole
    catalog or more returns it in catalog order.
    """
    if count <= 0:
        return []
    if count >= len(BONUS_CATEGORIES):
        return list(BONUS_CATEGORIES)

    shuffled = list(BONUS_CATEGORIES)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled[:count]
