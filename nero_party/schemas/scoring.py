"""Scoring, finale and leaderboard Pydantic schemas."""
from datetime import datetime
from typing import Optional, List, Literal
from uuid import UUID

from nero_party.schemas.base import BaseSchema
from nero_party.schemas.song import SongResponse


class SongScore(BaseSchema):
    """Computed score of one song."""
    song_id: UUID
    raw_average: float
    weight_multiplier: float
    weighted_score: float
    confidence_modifier: float
    final_score: float
    vote_count: int
    vote_distribution: List[int]


class ScoreBreakdown(BaseSchema):
    """Every additive term of a player's final score."""
    base_score: float
    round_multiplier: float
    confidence_modifier: float
    bonus_points: float
    achievement_bonus: float
    prediction_bonus: float
    theme_bonus: float
    power_up_modifier: float
    event_modifier: float
    final_score: float


class BonusResultResponse(BaseSchema):
    """Winner of a bonus category."""
    bonus_result_id: UUID
    party_id: UUID
    category_id: str
    category_name: str
    winning_song_id: UUID
    winner_player_id: UUID
    points: int
    reveal_order: int


class FinalStanding(BaseSchema):
    """One row of the final, ranked results."""
    player_id: UUID
    alias: str
    real_name: str
    rank: int
    songs: List[SongResponse]
    total_base_score: float
    confidence_modifiers: float
    bonus_points: float
    achievement_bonus: float
    prediction_bonus: float
    final_score: float
    score_breakdown: ScoreBreakdown
    bonus_categories: List[str]
    highest_song: Optional[SongResponse]
    lowest_song: Optional[SongResponse]


class IdentityResponse(BaseSchema):
    """Anonymous identity of a player."""
    identity_id: UUID
    party_id: UUID
    player_id: UUID
    alias: str
    silhouette: str
    color: str
    is_revealed: bool
    revealed_at: Optional[datetime]
    reveal_order: Optional[int]


class LeaderboardEntry(BaseSchema):
    """Leaderboard row that never exposes a real name before reveal."""
    rank: int
    alias: str
    silhouette: str
    color: str
    score: float
    previous_score: Optional[float]
    movement: Literal["up", "down", "same", "new"]
    song_count: int
    is_revealed: bool
    revealed_name: Optional[str]


class PlayerAchievementResponse(BaseSchema):
    player_achievement_id: UUID
    player_id: UUID
    achievement_id: str
    party_id: UUID
    bonus_points: int
    unlocked_at: datetime
