"""Service for managing parties, players and the party lifecycle."""
import logging
import random
import string
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID
import uuid

from sqlalchemy import select, update, delete, func
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
    RoundPrediction,
)
from nero_party.models.base import PartyStatus, PlayerStatus
from nero_party.schemas.party import PartySettings
from nero_party.services.identity_service import IdentityService
from nero_party.services.party_websocket_manager import BroadcastChannel, NullBroadcaster
from nero_party.services.song_service import SongService
from nero_party.utils import ensure_utc, utc_now
from nero_party.utils.exceptions import (
    PartyNotFoundError,
    PlayerNotFoundError,
    TargetNotFoundError,
    NotHostError,
    CannotKickSelfError,
    InvalidStateError,
    PartyStartedError,
    PartyFullError,
    PlayerNotInPartyError,
    SubmissionsIncompleteError,
    CodeGenerationError,
)

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 4


def get_party_settings(party: Party) -> PartySettings:
    """Settings record stored on a party row."""
    return PartySettings.from_storage(party.settings)


class PartyService:
    """
    Owns parties and players.

    Every status change is a compare-and-set UPDATE guarded by the expected
    current status, so concurrent callers cannot both win a transition.
    Events are published after commit and never awaited.
    """

    def __init__(
        self,
        db: AsyncSession,
        broadcaster: Optional[BroadcastChannel] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.broadcaster = broadcaster or NullBroadcaster()
        self.rng = rng or random.Random()
        self.settings = get_settings()

    # ---- Codes -------------------------------------------------------------

    async def generate_code(self) -> str:
        """
        Draw a 4-character code not used by any unfinished party.

        Raises:
            CodeGenerationError: every attempt collided
        """
        for _ in range(self.settings.party_code_max_attempts):
            code = "".join(self.rng.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))

            result = await self.db.execute(
                select(Party.party_id)
                .where(Party.code == code)
                .where(Party.status != PartyStatus.COMPLETE.value)
            )
            if result.first() is None:
                return code

        raise CodeGenerationError(
            f"Could not generate a unique party code after {self.settings.party_code_max_attempts} attempts"
        )

    # ---- Creation and membership -------------------------------------------

    async def create_party(
        self,
        host_name: str,
        settings_override: Optional[dict] = None,
    ) -> Tuple[Party, Player]:
        """
        Create a party in LOBBY along with its host.

        Args:
            host_name: Display name of the host
            settings_override: Partial settings merged onto the defaults

        Returns:
            (party, host)

        Raises:
            InvalidSettingsError: override field outside its domain
            CodeGenerationError: no free code could be found
        """
        party_settings = PartySettings().merged(settings_override or {})

        for attempt in range(self.settings.party_code_max_attempts):
            code = await self.generate_code()
            party_id = uuid.uuid4()
            host_id = uuid.uuid4()

            party = Party(
                party_id=party_id,
                code=code,
                status=PartyStatus.LOBBY.value,
                host_player_id=host_id,
                settings=party_settings.to_storage(),
            )
            host = Player(
                player_id=host_id,
                party_id=party_id,
                name=host_name,
                is_host=True,
                status=PlayerStatus.CONNECTED.value,
                power_up_points=0,
            )
            try:
                self.db.add(party)
                await self.db.flush()
                self.db.add(host)
                await self.db.commit()
            except IntegrityError:
                # Code taken between the check and the insert
                await self.db.rollback()
                logger.warning(f"Party code {code} collided on insert (attempt {attempt + 1})")
                continue

            await self.db.refresh(party)
            await self.db.refresh(host)
            logger.info(f"Created party {party.party_id} with code {code}, host {host_id}")
            return party, host

        raise CodeGenerationError("Could not create a party with a unique code")

    async def join_party(self, code: str, name: str) -> Tuple[Party, Player]:
        """
        Add a player to a party that is still in LOBBY.

        Raises:
            PartyNotFoundError: no unfinished party uses the code
            PartyStartedError: party already left LOBBY
            PartyFullError: party has reached the player limit
        """
        result = await self.db.execute(
            select(Party)
            .where(Party.code == code.upper())
            .where(Party.status != PartyStatus.COMPLETE.value)
            .with_for_update()
        )
        party = result.scalar_one_or_none()
        if not party:
            raise PartyNotFoundError(f"No party with code {code}")

        if party.status != PartyStatus.LOBBY.value:
            raise PartyStartedError("Party has already started")

        active_count = await self._count_active_players(party.party_id)
        if active_count >= self.settings.max_players_per_party:
            raise PartyFullError(f"Party is full ({self.settings.max_players_per_party} players)")

        player = Player(
            party_id=party.party_id,
            name=name,
            is_host=False,
            status=PlayerStatus.CONNECTED.value,
            power_up_points=0,
        )
        self.db.add(player)
        await self.db.commit()
        await self.db.refresh(player)

        logger.info(f"Player {player.player_id} ({name}) joined party {party.party_id}")
        self.broadcaster.publish(party.party_id, "player_joined", {
            "player_id": player.player_id,
            "name": player.name,
            "player_count": active_count + 1,
        })
        return party, player

    # ---- Reads -------------------------------------------------------------

    async def get_party(self, party_id: UUID) -> Optional[Party]:
        return await self.db.get(Party, party_id, populate_existing=True)

    async def get_party_by_code(self, code: str) -> Optional[Party]:
        """The unfinished party using ``code``, if any."""
        result = await self.db.execute(
            select(Party)
            .where(Party.code == code.upper())
            .where(Party.status != PartyStatus.COMPLETE.value)
        )
        return result.scalar_one_or_none()

    async def get_player(self, player_id: UUID) -> Optional[Player]:
        return await self.db.get(Player, player_id, populate_existing=True)

    async def get_players(self, party_id: UUID, include_kicked: bool = True) -> List[Player]:
        query = select(Player).where(Player.party_id == party_id)
        if not include_kicked:
            query = query.where(Player.status != PlayerStatus.KICKED.value)
        result = await self.db.execute(query.order_by(Player.joined_at))
        return list(result.scalars().all())

    async def _count_active_players(self, party_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(Player.player_id))
            .where(Player.party_id == party_id)
            .where(Player.status != PlayerStatus.KICKED.value)
        )
        return result.scalar_one()

    async def _require_party(self, party_id: UUID, for_update: bool = False) -> Party:
        query = select(Party).where(Party.party_id == party_id).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        party = result.scalar_one_or_none()
        if not party:
            raise PartyNotFoundError(f"Party {party_id} does not exist")
        return party

    # ---- Transitions -------------------------------------------------------

    async def _compare_and_set_status(
        self,
        party_id: UUID,
        expected: PartyStatus,
        new_status: PartyStatus,
        host_id: Optional[UUID] = None,
        **values,
    ) -> None:
        """
        Move a party from ``expected`` to ``new_status`` in one UPDATE.

        When no row matches, the party is re-read and the precise reason is
        raised. Does not commit.
        """
        stmt = (
            update(Party)
            .where(Party.party_id == party_id)
            .where(Party.status == expected.value)
        )
        if host_id is not None:
            stmt = stmt.where(Party.host_player_id == host_id)

        result = await self.db.execute(
            stmt.values(status=new_status.value, **values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        await self.db.rollback()
        party = await self.get_party(party_id)
        if not party:
            raise PartyNotFoundError(f"Party {party_id} does not exist")
        if host_id is not None and party.host_player_id != host_id:
            raise NotHostError("Only the host can do this")

        logger.warning(
            f"Rejected transition {expected.value} -> {new_status.value} for party {party_id} "
            f"(status is {party.status})"
        )
        raise InvalidStateError(f"Party must be in {expected.value} (currently {party.status})")

    async def update_settings(self, party_id: UUID, player_id: UUID, partial: dict) -> Party:
        """
        Merge a partial settings update while the party is in LOBBY.

        Raises:
            PartyNotFoundError, PlayerNotFoundError, NotHostError,
            InvalidStateError, InvalidSettingsError
        """
        party = await self._require_party(party_id, for_update=True)

        player = await self.get_player(player_id)
        if not player:
            raise PlayerNotFoundError(f"Player {player_id} does not exist")

        if party.host_player_id != player_id:
            raise NotHostError("Only the host can change settings")

        if party.status != PartyStatus.LOBBY.value:
            raise InvalidStateError("Settings can only be changed in the lobby")

        new_settings = get_party_settings(party).merged(partial)

        result = await self.db.execute(
            update(Party)
            .where(Party.party_id == party_id)
            .where(Party.status == PartyStatus.LOBBY.value)
            .values(settings=new_settings.to_storage())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise InvalidStateError("Settings can only be changed in the lobby")

        await self.db.commit()
        party = await self.get_party(party_id)

        logger.info(f"Updated settings for party {party_id}: {sorted(partial)}")
        self.broadcaster.publish(party_id, "settings_updated", {
            "settings": new_settings.model_dump(by_alias=True),
        })
        return party

    async def start_party(self, party_id: UUID, host_id: UUID) -> Party:
        """
        Move a party from LOBBY to SUBMITTING.

        Grants every remaining player the starting power-up points and assigns
        anonymous identities.
        """
        party = await self._require_party(party_id)
        if party.host_player_id != host_id:
            raise NotHostError("Only the host can start the party")
        if party.status != PartyStatus.LOBBY.value:
            raise InvalidStateError("Party can only be started from the lobby")

        party_settings = get_party_settings(party)
        starting_points = party_settings.starting_power_up_points if party_settings.enable_power_ups else 0

        await self._compare_and_set_status(
            party_id,
            PartyStatus.LOBBY,
            PartyStatus.SUBMITTING,
            host_id=host_id,
            started_at=utc_now(),
        )
        await self.db.execute(
            update(Player)
            .where(Player.party_id == party_id)
            .where(Player.status != PlayerStatus.KICKED.value)
            .values(power_up_points=starting_points)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        players = await self.get_players(party_id, include_kicked=False)
        identity_service = IdentityService(self.db, rng=self.rng)
        await identity_service.assign_identities(party_id, players)

        party = await self.get_party(party_id)
        logger.info(f"Party {party_id} started with {len(players)} players")
        self.broadcaster.publish(party_id, "party_started", {
            "status": party.status,
            "started_at": party.started_at,
        })
        return party

    async def all_players_submitted_songs(self, party_id: UUID) -> bool:
        """True when every non-kicked player has submitted exactly songs_per_player songs."""
        party = await self._require_party(party_id)
        songs_per_player = get_party_settings(party).songs_per_player

        players = await self.get_players(party_id, include_kicked=False)
        counts = await SongService(self.db).count_songs_by_player(party_id)

        return all(counts.get(player.player_id, 0) == songs_per_player for player in players)

    async def transition_to_playing(self, party_id: UUID) -> Party:
        """
        Move a party from SUBMITTING to PLAYING and build the song queue.

        Raises:
            InvalidStateError: not in SUBMITTING
            SubmissionsIncompleteError: some player is missing songs
        """
        party = await self._require_party(party_id)
        if party.status != PartyStatus.SUBMITTING.value:
            raise InvalidStateError("Party must be in SUBMITTING to start playing")

        if not await self.all_players_submitted_songs(party_id):
            raise SubmissionsIncompleteError("Not every player has submitted their songs")

        await self._compare_and_set_status(party_id, PartyStatus.SUBMITTING, PartyStatus.PLAYING)
        rounds = await SongService(self.db, rng=self.rng).organize_into_rounds(party_id)
        await self.db.commit()

        party = await self.get_party(party_id)
        logger.info(f"Party {party_id} is now PLAYING with {len(rounds)} round(s)")
        self.broadcaster.publish(party_id, "party_playing", {
            "status": party.status,
            "rounds": [summary.model_dump(by_alias=True) for summary in rounds],
        })
        return party

    async def transition_to_finale(self, party_id: UUID) -> Party:
        """Move a party from PLAYING to FINALE."""
        await self._compare_and_set_status(party_id, PartyStatus.PLAYING, PartyStatus.FINALE)
        await self.db.commit()

        party = await self.get_party(party_id)
        logger.info(f"Party {party_id} entered FINALE")
        self.broadcaster.publish(party_id, "party_finale", {"status": party.status})
        return party

    async def transition_to_complete(self, party_id: UUID) -> Party:
        """Move a party from FINALE to COMPLETE, freeing its code for reuse."""
        await self._compare_and_set_status(
            party_id,
            PartyStatus.FINALE,
            PartyStatus.COMPLETE,
            completed_at=utc_now(),
        )
        await self.db.commit()

        party = await self.get_party(party_id)
        logger.info(f"Party {party_id} completed")
        self.broadcaster.publish(party_id, "party_complete", {
            "status": party.status,
            "completed_at": party.completed_at,
        })
        return party

    # ---- Player management -------------------------------------------------

    async def kick_player(self, party_id: UUID, host_id: UUID, target_id: UUID) -> Player:
        """
        Remove a player from the lobby.

        The player row is kept with status KICKED and no connection handle.

        Raises:
            PartyNotFoundError, NotHostError, InvalidStateError,
            CannotKickSelfError, TargetNotFoundError
        """
        party = await self._require_party(party_id, for_update=True)
        if party.host_player_id != host_id:
            raise NotHostError("Only the host can kick players")
        if party.status != PartyStatus.LOBBY.value:
            raise InvalidStateError("Players can only be kicked in the lobby")
        if target_id == host_id:
            raise CannotKickSelfError("The host cannot kick themselves")

        target = await self.get_player(target_id)
        if not target or target.party_id != party_id:
            raise TargetNotFoundError(f"Player {target_id} is not in this party")

        # Guarded by the party still being in LOBBY
        lobby_guard = (
            select(Party.party_id)
            .where(Party.party_id == party_id)
            .where(Party.status == PartyStatus.LOBBY.value)
            .scalar_subquery()
        )
        result = await self.db.execute(
            update(Player)
            .where(Player.player_id == target_id)
            .where(Player.party_id == lobby_guard)
            .values(status=PlayerStatus.KICKED.value, connection_handle=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise InvalidStateError("Players can only be kicked in the lobby")

        await self.db.commit()
        target = await self.get_player(target_id)

        logger.info(f"Host {host_id} kicked player {target_id} from party {party_id}")
        self.broadcaster.publish(party_id, "player_kicked", {"player_id": target_id})
        return target

    async def set_connection(self, player_id: UUID, handle: str) -> Player:
        """Record a live connection for a player."""
        player = await self.get_player(player_id)
        if not player:
            raise PlayerNotFoundError(f"Player {player_id} does not exist")
        if player.status == PlayerStatus.KICKED.value:
            raise PlayerNotInPartyError("Player was removed from this party")

        player.status = PlayerStatus.CONNECTED.value
        player.connection_handle = handle
        await self.db.commit()

        self.broadcaster.publish(player.party_id, "player_connected", {"player_id": player_id})
        return player

    async def mark_disconnected(self, player_id: UUID) -> Optional[Player]:
        """Drop a player's connection. Kicked players keep their status."""
        player = await self.get_player(player_id)
        if not player:
            return None

        if player.status != PlayerStatus.KICKED.value:
            player.status = PlayerStatus.DISCONNECTED.value
        player.connection_handle = None
        await self.db.commit()

        self.broadcaster.publish(player.party_id, "player_disconnected", {"player_id": player_id})
        return player

    # ---- Retention ---------------------------------------------------------

    async def cleanup_completed_parties(self, now: Optional[datetime] = None) -> int:
        """
        Delete completed parties older than the retention window.

        A party without ``completed_at`` is never deleted. Dependent rows are
        removed explicitly, children first.

        Returns:
            Number of parties deleted
        """
        cutoff = ensure_utc(now or utc_now()) - timedelta(hours=self.settings.completed_party_retention_hours)

        result = await self.db.execute(
            select(Party.party_id)
            .where(Party.status == PartyStatus.COMPLETE.value)
            .where(Party.completed_at.isnot(None))
            .where(Party.completed_at < cutoff)
        )
        party_ids = [row[0] for row in result.all()]
        if not party_ids:
            return 0

        song_ids = select(Song.song_id).where(Song.party_id.in_(party_ids))
        await self.db.execute(delete(Vote).where(Vote.song_id.in_(song_ids)))
        for model in (BonusResult, PlayerAchievement, RoundPrediction, PartyIdentity, Song, Player):
            await self.db.execute(delete(model).where(model.party_id.in_(party_ids)))

        result = await self.db.execute(delete(Party).where(Party.party_id.in_(party_ids)))
        await self.db.commit()

        deleted = result.rowcount or 0
        logger.info(f"Deleted {deleted} completed parties older than {cutoff.isoformat()}")
        return deleted
