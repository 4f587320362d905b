"""Tests for the party WebSocket broadcast channel."""
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from nero_party.services.party_websocket_manager import NullBroadcaster, PartyWebSocketManager


def _websocket():
    websocket = AsyncMock()
    websocket.send_json = AsyncMock()
    return websocket


@pytest.mark.asyncio
async def test_publish_reaches_every_player_in_party():
    manager = PartyWebSocketManager()
    party_id, other_party_id = uuid4(), uuid4()
    first, second, outsider = _websocket(), _websocket(), _websocket()
    await manager.connect(party_id, uuid4(), first)
    await manager.connect(party_id, uuid4(), second)
    await manager.connect(other_party_id, uuid4(), outsider)

    player_id = uuid4()
    manager.publish(party_id, "player_joined", {"player_id": player_id})
    await manager.drain()

    message = first.send_json.await_args.args[0]
    assert message["type"] == "player_joined"
    assert message["party_id"] == str(party_id)
    assert message["data"] == {"player_id": str(player_id)}
    second.send_json.assert_awaited_once()
    outsider.send_json.assert_not_awaited()


@pytest.mark.asyncio
async def test_dead_sockets_are_dropped():
    manager = PartyWebSocketManager()
    party_id = uuid4()
    healthy, broken = _websocket(), _websocket()
    broken.send_json.side_effect = RuntimeError("connection reset")
    await manager.connect(party_id, uuid4(), healthy)
    await manager.connect(party_id, uuid4(), broken)

    manager.publish(party_id, "vote_cast", {})
    await manager.drain()

    assert manager.get_connection_count(party_id) == 1


@pytest.mark.asyncio
async def test_disconnect():
    manager = PartyWebSocketManager()
    party_id, player_id = uuid4(), uuid4()
    await manager.connect(party_id, player_id, _websocket())

    assert await manager.disconnect(party_id, player_id) is True
    assert await manager.disconnect(party_id, player_id) is False
    assert manager.get_connection_count(party_id) == 0


def test_publish_without_event_loop_is_dropped():
    manager = PartyWebSocketManager()

    manager.publish(uuid4(), "party_started", {})

    NullBroadcaster().publish(uuid4(), "party_started", {})
