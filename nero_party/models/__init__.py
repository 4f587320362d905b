"""Database models."""
from nero_party.models.party import Party
from nero_party.models.player import Player
from nero_party.models.song import Song
from nero_party.models.vote import Vote
from nero_party.models.bonus_result import BonusResult
from nero_party.models.party_identity import PartyIdentity
from nero_party.models.player_achievement import PlayerAchievement
from nero_party.models.round_prediction import RoundPrediction

__all__ = [
    "Party",
    "Player",
    "Song",
    "Vote",
    "BonusResult",
    "PartyIdentity",
    "PlayerAchievement",
    "RoundPrediction",
]
