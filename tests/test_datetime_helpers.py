"""Tests for datetime helper utilities."""
from datetime import UTC, datetime, timedelta

from nero_party.utils.datetime_helpers import ensure_utc, utc_now


def test_ensure_utc_none_returns_none():
    assert ensure_utc(None) is None


def test_ensure_utc_attaches_timezone_to_naive_datetime():
    """Naive datetimes read back from SQLite are marked as UTC without adjusting the clock."""
    naive = datetime(2026, 5, 1, 12, 30, 0)

    result = ensure_utc(naive)

    assert result.tzinfo is UTC
    assert result.replace(tzinfo=None) == naive


def test_ensure_utc_keeps_aware_datetime():
    aware = datetime(2026, 5, 1, 8, 0, tzinfo=UTC)

    assert ensure_utc(aware) is aware


def test_utc_now_is_aware_and_current():
    before = datetime.now(UTC)
    now = utc_now()

    assert now.tzinfo is UTC
    assert now - before < timedelta(seconds=5)
