"""Party broadcast channel backed by WebSockets."""
import asyncio
import logging
from datetime import datetime, UTC
from typing import Any, Dict, Optional, Protocol, Set
from uuid import UUID

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class BroadcastChannel(Protocol):
    """Best-effort fan-out of party events to connected clients.

    ``publish`` must return immediately; callers never wait for delivery.
    """

    def publish(self, party_id: UUID, event_name: str, payload: dict) -> None:
        ...


class NullBroadcaster:
    """Broadcast channel that drops every event."""

    def publish(self, party_id: UUID, event_name: str, payload: dict) -> None:
        logger.debug(f"Dropping {event_name} for party {party_id} (no broadcaster)")


class PartyWebSocketManager:
    """
    Manages WebSocket connections for parties.

    Connections are grouped by party so events can be broadcast to everyone
    in a party; each player holds at most one connection. Delivery runs in
    background tasks so a slow client never holds up the state change that
    produced the event.
    """

    def __init__(self) -> None:
        # party_id -> player_id -> websocket
        self._parties: Dict[UUID, Dict[UUID, WebSocket]] = {}
        self._pending: Set[asyncio.Task] = set()

    async def connect(self, party_id: UUID, player_id: UUID, websocket: WebSocket) -> None:
        """Accept a player's WebSocket and register it with the party.

        A second connection from the same player replaces the first.
        """
        await websocket.accept()
        self._parties.setdefault(party_id, {})[player_id] = websocket

        connection_count = self.get_connection_count(party_id)
        logger.info(f"WebSocket connected for {player_id=} in {party_id=} ({connection_count=})")

    async def disconnect(self, party_id: UUID, player_id: UUID) -> bool:
        """Remove a player's WebSocket connection. Returns whether one existed."""
        connections = self._parties.get(party_id)
        if not connections:
            return False

        websocket: Optional[WebSocket] = connections.pop(player_id, None)
        if not connections:
            self._parties.pop(party_id, None)

        if websocket is not None:
            logger.info(f"WebSocket disconnected for {player_id=} in party {party_id}")
        return websocket is not None

    def get_connection_count(self, party_id: UUID) -> int:
        return len(self._parties.get(party_id, {}))

    def publish(self, party_id: UUID, event_name: str, payload: dict) -> None:
        """Schedule delivery of an event to every client in the party."""
        message = {
            'type': event_name,
            'party_id': str(party_id),
            'data': _jsonable(payload),
            'timestamp': datetime.now(UTC).isoformat(),
        }

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, dropping {event_name} for party {party_id}")
            return

        task = loop.create_task(self._deliver(party_id, message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, party_id: UUID, message: dict) -> None:
        """Send ``message`` to every socket in the party, dropping dead ones."""
        connections = self._parties.get(party_id)
        if not connections:
            logger.debug(f"No connections in party {party_id}, skipping {message['type']}")
            return

        dead = []
        for player_id, websocket in list(connections.items()):
            try:
                await websocket.send_json(message)
            except Exception as e:  # pragma: no cover - network stack
                logger.warning(f"Failed to send {message['type']} to {player_id} in party {party_id}: {e}")
                dead.append(player_id)

        for player_id in dead:
            await self.disconnect(party_id, player_id)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def _jsonable(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if hasattr(value, "model_dump"):
        return _jsonable(value.model_dump(by_alias=True))
    return value


_party_ws_manager = PartyWebSocketManager()


def get_party_websocket_manager() -> PartyWebSocketManager:
    """Return the application's PartyWebSocketManager instance."""
    return _party_ws_manager
