"""Party API router.

Service errors propagate as ``PartyError`` and are turned into JSON responses
by the application's exception handler.
"""
from typing import List
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status as http_status

from nero_party.database import AsyncSessionLocal
from nero_party.dependencies import (
    get_party_service,
    get_song_service,
    get_vote_service,
    get_identity_service,
    get_scoring_service,
    get_achievement_service,
    get_prediction_service,
)
from nero_party.schemas.party import (
    CreatePartyRequest,
    JoinPartyRequest,
    UpdateSettingsRequest,
    HostActionRequest,
    KickPlayerRequest,
    RevealIdentityRequest,
    PlayerResponse,
    PartyResponse,
    PartyWithPlayerResponse,
    PartyStateResponse,
)
from nero_party.schemas.song import SubmitSongRequest, SongResponse
from nero_party.schemas.vote import CastVoteRequest, VoteResponse
from nero_party.schemas.prediction import SubmitPredictionRequest, RoundPredictionResponse, PredictionResult
from nero_party.schemas.scoring import (
    SongScore,
    BonusResultResponse,
    FinalStanding,
    IdentityResponse,
    LeaderboardEntry,
    PlayerAchievementResponse,
)
from nero_party.services import (
    PartyService,
    SongService,
    VoteService,
    IdentityService,
    ScoringService,
    AchievementService,
    PredictionService,
)
from nero_party.services.party_websocket_manager import get_party_websocket_manager
from nero_party.utils.exceptions import NotHostError, PartyNotFoundError, PartyError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/party", tags=["party"])
ws_manager = get_party_websocket_manager()


async def _require_host(party_service: PartyService, party_id: UUID, host_id: UUID) -> None:
    party = await party_service.get_party(party_id)
    if not party:
        raise PartyNotFoundError(f"Party {party_id} does not exist")
    if party.host_player_id != host_id:
        raise NotHostError("Only the host can do this")


# ---- Lobby -----------------------------------------------------------------

@router.post("", response_model=PartyWithPlayerResponse, status_code=http_status.HTTP_201_CREATED)
async def create_party(
    request: CreatePartyRequest,
    party_service: PartyService = Depends(get_party_service),
):
    """Create a party; the caller becomes its host."""
    party, host = await party_service.create_party(request.host_name, request.settings)
    return PartyWithPlayerResponse(
        party=PartyResponse.model_validate(party),
        player=PlayerResponse.model_validate(host),
    )


@router.post("/join", response_model=PartyWithPlayerResponse)
async def join_party(
    request: JoinPartyRequest,
    party_service: PartyService = Depends(get_party_service),
):
    party, player = await party_service.join_party(request.code, request.name)
    return PartyWithPlayerResponse(
        party=PartyResponse.model_validate(party),
        player=PlayerResponse.model_validate(player),
    )


@router.get("/code/{code}", response_model=PartyResponse)
async def get_party_by_code(
    code: str,
    party_service: PartyService = Depends(get_party_service),
):
    party = await party_service.get_party_by_code(code)
    if not party:
        raise HTTPException(status_code=404, detail="Party not found")
    return PartyResponse.model_validate(party)


@router.get("/{party_id}", response_model=PartyStateResponse)
async def get_party_state(
    party_id: UUID,
    party_service: PartyService = Depends(get_party_service),
):
    """Party with its full roster, kicked players included."""
    party = await party_service.get_party(party_id)
    if not party:
        raise HTTPException(status_code=404, detail="Party not found")

    players = await party_service.get_players(party_id)
    return PartyStateResponse(
        party=PartyResponse.model_validate(party),
        players=[PlayerResponse.model_validate(player) for player in players],
    )


@router.patch("/{party_id}/settings", response_model=PartyResponse)
async def update_settings(
    party_id: UUID,
    request: UpdateSettingsRequest,
    party_service: PartyService = Depends(get_party_service),
):
    party = await party_service.update_settings(party_id, request.player_id, request.settings)
    return PartyResponse.model_validate(party)


@router.post("/{party_id}/kick", response_model=PlayerResponse)
async def kick_player(
    party_id: UUID,
    request: KickPlayerRequest,
    party_service: PartyService = Depends(get_party_service),
):
    player = await party_service.kick_player(party_id, request.host_id, request.target_id)
    return PlayerResponse.model_validate(player)


# ---- Lifecycle -------------------------------------------------------------

@router.post("/{party_id}/start", response_model=PartyResponse)
async def start_party(
    party_id: UUID,
    request: HostActionRequest,
    party_service: PartyService = Depends(get_party_service),
):
    party = await party_service.start_party(party_id, request.host_id)
    return PartyResponse.model_validate(party)


@router.post("/{party_id}/play", response_model=PartyResponse)
async def start_playing(
    party_id: UUID,
    request: HostActionRequest,
    party_service: PartyService = Depends(get_party_service),
):
    await _require_host(party_service, party_id, request.host_id)
    party = await party_service.transition_to_playing(party_id)
    return PartyResponse.model_validate(party)


@router.post("/{party_id}/finale", response_model=PartyResponse)
async def start_finale(
    party_id: UUID,
    request: HostActionRequest,
    party_service: PartyService = Depends(get_party_service),
    scoring_service: ScoringService = Depends(get_scoring_service),
    achievement_service: AchievementService = Depends(get_achievement_service),
):
    """Enter the finale: freeze scores, pick bonus winners and award achievements."""
    await _require_host(party_service, party_id, request.host_id)
    party = await party_service.transition_to_finale(party_id)

    await scoring_service.calculate_party_song_scores(party_id)
    await scoring_service.calculate_bonus_winners(party_id)
    await achievement_service.award_achievements(party_id)
    return PartyResponse.model_validate(party)


@router.post("/{party_id}/complete", response_model=PartyResponse)
async def complete_party(
    party_id: UUID,
    request: HostActionRequest,
    party_service: PartyService = Depends(get_party_service),
):
    await _require_host(party_service, party_id, request.host_id)
    party = await party_service.transition_to_complete(party_id)
    return PartyResponse.model_validate(party)


# ---- Songs and votes -------------------------------------------------------

@router.post("/{party_id}/songs", response_model=SongResponse, status_code=http_status.HTTP_201_CREATED)
async def submit_song(
    party_id: UUID,
    request: SubmitSongRequest,
    song_service: SongService = Depends(get_song_service),
):
    song = await song_service.submit_song(party_id, request.player_id, request)
    return SongResponse.model_validate(song)


@router.get("/{party_id}/songs", response_model=List[SongResponse])
async def list_songs(
    party_id: UUID,
    song_service: SongService = Depends(get_song_service),
):
    songs = await song_service.get_songs(party_id)
    return [SongResponse.model_validate(song) for song in songs]


@router.delete("/songs/{song_id}", status_code=http_status.HTTP_204_NO_CONTENT)
async def remove_song(
    song_id: UUID,
    player_id: UUID = Query(..., alias="playerId"),
    song_service: SongService = Depends(get_song_service),
):
    await song_service.remove_song(song_id, player_id)


@router.post("/songs/{song_id}/votes", response_model=VoteResponse, status_code=http_status.HTTP_201_CREATED)
async def cast_vote(
    song_id: UUID,
    request: CastVoteRequest,
    vote_service: VoteService = Depends(get_vote_service),
    scoring_service: ScoringService = Depends(get_scoring_service),
):
    """Cast a locked vote and refresh the song's score."""
    vote = await vote_service.cast_vote(
        song_id,
        request.voter_id,
        request.rating,
        super_vote=request.super_vote,
        comment=request.comment,
    )
    await scoring_service.calculate_song_score(song_id)
    return VoteResponse.model_validate(vote)


@router.get("/songs/{song_id}/votes", response_model=List[VoteResponse])
async def list_votes(
    song_id: UUID,
    vote_service: VoteService = Depends(get_vote_service),
):
    votes = await vote_service.get_votes_for_song(song_id)
    return [VoteResponse.model_validate(vote) for vote in votes]


@router.get("/songs/{song_id}/score", response_model=SongScore)
async def get_song_score(
    song_id: UUID,
    scoring_service: ScoringService = Depends(get_scoring_service),
):
    return await scoring_service.calculate_song_score(song_id)


# ---- Predictions -----------------------------------------------------------

@router.post(
    "/{party_id}/rounds/{round_number}/predictions",
    response_model=RoundPredictionResponse,
    status_code=http_status.HTTP_201_CREATED,
)
async def submit_prediction(
    party_id: UUID,
    round_number: int,
    request: SubmitPredictionRequest,
    prediction_service: PredictionService = Depends(get_prediction_service),
):
    record = await prediction_service.submit_prediction(
        request.player_id, party_id, round_number, request.predictions
    )
    return RoundPredictionResponse.model_validate(record)


@router.post("/{party_id}/rounds/{round_number}/evaluate", response_model=List[PredictionResult])
async def evaluate_predictions(
    party_id: UUID,
    round_number: int,
    request: HostActionRequest,
    party_service: PartyService = Depends(get_party_service),
    prediction_service: PredictionService = Depends(get_prediction_service),
):
    await _require_host(party_service, party_id, request.host_id)
    return await prediction_service.evaluate_predictions(party_id, round_number)


# ---- Leaderboard and finale ------------------------------------------------

@router.get("/{party_id}/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(
    party_id: UUID,
    identity_service: IdentityService = Depends(get_identity_service),
):
    return await identity_service.get_anonymous_leaderboard(party_id)


@router.get("/{party_id}/identities", response_model=List[IdentityResponse])
async def list_identities(
    party_id: UUID,
    identity_service: IdentityService = Depends(get_identity_service),
):
    identities = await identity_service.get_identities(party_id)
    return [IdentityResponse.model_validate(identity) for identity in identities]


@router.post("/{party_id}/reveal", response_model=IdentityResponse)
async def reveal_identity(
    party_id: UUID,
    request: RevealIdentityRequest,
    party_service: PartyService = Depends(get_party_service),
    identity_service: IdentityService = Depends(get_identity_service),
):
    await _require_host(party_service, party_id, request.host_id)
    identity = await identity_service.reveal_identity(party_id, request.player_id, request.order)
    return IdentityResponse.model_validate(identity)


@router.get("/{party_id}/bonus-results", response_model=List[BonusResultResponse])
async def list_bonus_results(
    party_id: UUID,
    scoring_service: ScoringService = Depends(get_scoring_service),
):
    results = await scoring_service.get_bonus_results(party_id)
    return [BonusResultResponse.model_validate(result) for result in results]


@router.get("/{party_id}/achievements", response_model=List[PlayerAchievementResponse])
async def list_achievements(
    party_id: UUID,
    achievement_service: AchievementService = Depends(get_achievement_service),
):
    """Party achievements in finale reveal order."""
    records = await achievement_service.get_achievement_reveal_order(party_id)
    return [PlayerAchievementResponse.model_validate(record) for record in records]


@router.get("/{party_id}/standings", response_model=List[FinalStanding])
async def get_final_standings(
    party_id: UUID,
    scoring_service: ScoringService = Depends(get_scoring_service),
):
    return await scoring_service.calculate_final_standings(party_id)


# ---- Realtime --------------------------------------------------------------

@router.websocket("/{party_id}/ws")
async def party_websocket(
    websocket: WebSocket,
    party_id: UUID,
    player_id: UUID = Query(..., alias="playerId"),
):
    """Push party events to a player until they disconnect."""
    async with AsyncSessionLocal() as db:
        party_service = PartyService(db, broadcaster=ws_manager)
        player = await party_service.get_player(player_id)
        if not player or player.party_id != party_id:
            await websocket.close(code=4004)
            return

        await ws_manager.connect(party_id, player_id, websocket)
        try:
            await party_service.set_connection(player_id, f"ws:{player_id}")
        except PartyError as e:
            logger.info(f"Rejecting websocket for {player_id}: {e.message}")
            await ws_manager.disconnect(party_id, player_id)
            await websocket.close(code=4003)
            return

    try:
        while True:
            # Clients only listen; incoming frames are keep-alives
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await ws_manager.disconnect(party_id, player_id)
        async with AsyncSessionLocal() as db:
            await PartyService(db, broadcaster=ws_manager).mark_disconnected(player_id)
