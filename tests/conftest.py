"""Pytest configuration and fixtures."""
import os
import random
from unittest.mock import Mock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Keep the application engine away from any real database during tests
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_nero_party.db"
os.environ["ENVIRONMENT"] = "test"

from nero_party.database import Base, enable_sqlite_foreign_keys
import nero_party.models  # noqa: F401  (registers tables on Base.metadata)
from nero_party.schemas.song import SongSubmission
from nero_party.services.party_service import PartyService
from nero_party.services.song_service import SongService


@pytest.fixture
async def test_engine():
    """Fresh in-memory database per test, built from the model metadata."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(test_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()
        await session.close()


@pytest.fixture
def broadcaster():
    """Broadcast channel that records published events."""
    return Mock(spec=["publish"])


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
async def test_app(test_engine, broadcaster):
    """Create test app with database and broadcaster overrides."""
    from nero_party.main import app
    from nero_party.database import get_db
    from nero_party.dependencies import get_broadcaster

    async def override_get_db():
        async_session = async_sessionmaker(
            test_engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        async with async_session() as session:
            try:
                yield session
            finally:
                await session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def party_service(db_session, broadcaster, rng):
    return PartyService(db_session, broadcaster=broadcaster, rng=rng)


@pytest.fixture
def song_service(db_session, broadcaster, rng):
    return SongService(db_session, broadcaster=broadcaster, rng=rng)


def make_submission(index: int, confidence: int = 3) -> SongSubmission:
    return SongSubmission(
        external_track_ref=f"track-{index}",
        title=f"Song {index}",
        artist=f"Artist {index}",
        duration=180,
        confidence=confidence,
    )


@pytest.fixture
def party_factory(party_service, song_service):
    """
    Build a party with a host and ``guests`` extra players.

    ``status`` may be "LOBBY", "SUBMITTING" or "PLAYING"; for PLAYING every
    player submits ``songs_per_player`` songs first.
    """

    async def _create_party(guests: int = 2, status: str = "LOBBY", settings: dict | None = None):
        party, host = await party_service.create_party("Host", settings)
        players = [host]
        for index in range(guests):
            _, guest = await party_service.join_party(party.code, f"Guest {index + 1}")
            players.append(guest)

        if status in ("SUBMITTING", "PLAYING"):
            party = await party_service.start_party(party.party_id, host.player_id)

        if status == "PLAYING":
            songs_per_player = party.settings["songs_per_player"]
            counter = 0
            for player in players:
                for _ in range(songs_per_player):
                    counter += 1
                    await song_service.submit_song(party.party_id, player.player_id, make_submission(counter))
            party = await party_service.transition_to_playing(party.party_id)

        players = [await party_service.get_player(player.player_id) for player in players]
        return party, players

    return _create_party
