from nero_party.services.party_websocket_manager import (
    BroadcastChannel,
    NullBroadcaster,
    PartyWebSocketManager,
    get_party_websocket_manager,
)
from nero_party.services.identity_service import IdentityService
from nero_party.services.prediction_service import PredictionService
from nero_party.services.scoring_service import ScoringService
from nero_party.services.song_service import SongService
from nero_party.services.vote_service import VoteService
from nero_party.services.achievement_service import AchievementService
from nero_party.services.party_service import PartyService

__all__ = [
    "BroadcastChannel",
    "NullBroadcaster",
    "PartyWebSocketManager",
    "get_party_websocket_manager",
    "IdentityService",
    "PredictionService",
    "ScoringService",
    "SongService",
    "VoteService",
    "AchievementService",
    "PartyService",
]
