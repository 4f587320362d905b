"""Tests for the periodic party maintenance task."""
from datetime import datetime, timedelta, UTC

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nero_party.models import Party
from nero_party.models.base import PartyStatus
from nero_party.tasks import party_maintenance


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.mark.asyncio
async def test_maintenance_removes_expired_parties(db_session, party_service, session_factory):
    now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    expired, _ = await party_service.create_party("Old")
    kept, _ = await party_service.create_party("New")
    await db_session.execute(
        update(Party)
        .where(Party.party_id == expired.party_id)
        .values(status=PartyStatus.COMPLETE.value, completed_at=now - timedelta(hours=30))
    )
    await db_session.commit()

    deleted = await party_maintenance.run_party_maintenance(session_factory, now=now)

    assert deleted == 1
    remaining = (await db_session.execute(select(Party.party_id))).scalars().all()
    assert list(remaining) == [kept.party_id]


@pytest.mark.asyncio
async def test_maintenance_skips_when_already_running(monkeypatch, session_factory):
    monkeypatch.setattr(party_maintenance, "_maintenance_task_running", True)

    assert await party_maintenance.run_party_maintenance(session_factory) == 0


@pytest.mark.asyncio
async def test_maintenance_resets_guard_after_failure(monkeypatch, session_factory):
    async def broken_cleanup(self, now=None):
        raise RuntimeError("database went away")

    monkeypatch.setattr(party_maintenance.PartyService, "cleanup_completed_parties", broken_cleanup)

    assert await party_maintenance.run_party_maintenance(session_factory) == 0
    assert party_maintenance._maintenance_task_running is False
