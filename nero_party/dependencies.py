"""FastAPI dependencies."""
import logging

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from nero_party.database import get_db
from nero_party.services import (
    AchievementService,
    BroadcastChannel,
    IdentityService,
    PartyService,
    PredictionService,
    ScoringService,
    SongService,
    VoteService,
    get_party_websocket_manager,
)

logger = logging.getLogger(__name__)


def get_broadcaster() -> BroadcastChannel:
    """Channel used to push party events to connected clients."""
    return get_party_websocket_manager()


async def get_party_service(
    db: AsyncSession = Depends(get_db),
    broadcaster: BroadcastChannel = Depends(get_broadcaster),
) -> PartyService:
    return PartyService(db, broadcaster=broadcaster)


async def get_song_service(
    db: AsyncSession = Depends(get_db),
    broadcaster: BroadcastChannel = Depends(get_broadcaster),
) -> SongService:
    return SongService(db, broadcaster=broadcaster)


async def get_vote_service(
    db: AsyncSession = Depends(get_db),
    broadcaster: BroadcastChannel = Depends(get_broadcaster),
) -> VoteService:
    return VoteService(db, broadcaster=broadcaster)


async def get_identity_service(db: AsyncSession = Depends(get_db)) -> IdentityService:
    return IdentityService(db)


async def get_scoring_service(db: AsyncSession = Depends(get_db)) -> ScoringService:
    return ScoringService(db)


async def get_achievement_service(db: AsyncSession = Depends(get_db)) -> AchievementService:
    return AchievementService(db)


async def get_prediction_service(db: AsyncSession = Depends(get_db)) -> PredictionService:
    return PredictionService(db)
