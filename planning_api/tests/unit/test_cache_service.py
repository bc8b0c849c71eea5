from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import databases
import pytest
import pytest_asyncio
from sqlalchemy import create_engine

from planning_api.core.cache_service import (CacheGate, DatabaseCacheStore,
                                             is_fresh)
from planning_api.core.errors import CacheUnavailable
from planning_api.models.db_models import Base
from planning_api.models.models import CacheRecord, NormalizedEvent

NOW = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)

EVENTS = [
    NormalizedEvent(id="1", title="Algorithmique", room="B201", professor="M. Dupont",
                    start="2024-03-04T08:00:00", end="2024-03-04T10:00:00", type="td",
                    raw_title="Algorithmique\nM. Dupont\nB201"),
    NormalizedEvent(id="2", title="Réunion", type="reunion", raw_title="Réunion", all_day=True),
]


# --- Freshness ---

def test_exactly_max_age_is_stale():
    assert is_fresh(NOW - timedelta(hours=2), max_age_hours=2, now=NOW) is False


def test_just_under_max_age_is_fresh():
    assert is_fresh(NOW - timedelta(hours=1, minutes=59, seconds=59), max_age_hours=2, now=NOW) is True


def test_naive_timestamps_are_utc():
    naive = (NOW - timedelta(minutes=5)).replace(tzinfo=None)
    assert is_fresh(naive, now=NOW) is True


def test_missing_timestamp_is_stale():
    assert is_fresh(None, now=NOW) is False


# --- CacheGate ---

def _record(age: timedelta) -> CacheRecord:
    return CacheRecord(owner_identity="alice", events=EVENTS,
                       last_updated_at=datetime.now(timezone.utc) - age)


@pytest.mark.asyncio
async def test_gate_without_store_always_misses():
    gate = CacheGate(None)
    assert gate.enabled is False
    assert await gate.fetch("alice") is None
    assert await gate.fetch_fresh("alice") is None
    await gate.persist("alice", EVENTS)


@pytest.mark.asyncio
async def test_gate_fetch_fresh_filters_stale_records():
    store = MagicMock()
    store.get = AsyncMock(return_value=_record(timedelta(hours=3)))
    gate = CacheGate(store, max_age_hours=2)

    assert await gate.fetch_fresh("alice") is None
    assert (await gate.fetch("alice")).events == EVENTS

    store.get.return_value = _record(timedelta(minutes=30))
    assert (await gate.fetch_fresh("alice")).owner_identity == "alice"


@pytest.mark.asyncio
async def test_gate_read_failure_is_a_miss():
    store = MagicMock()
    store.get = AsyncMock(side_effect=CacheUnavailable("database is locked"))
    gate = CacheGate(store)

    assert await gate.fetch("alice") is None
    assert await gate.fetch_fresh("alice") is None


@pytest.mark.asyncio
async def test_gate_write_failure_is_logged(caplog):
    store = MagicMock()
    store.save = AsyncMock(side_effect=CacheUnavailable("disk full"))
    gate = CacheGate(store)

    await gate.persist("alice", EVENTS)

    store.save.assert_awaited_once_with("alice", EVENTS)
    assert "Failed to cache events for alice" in caplog.text


# --- DatabaseCacheStore ---

@pytest_asyncio.fixture
async def database(tmp_path):
    path = tmp_path / "cache.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()

    db = databases.Database(f"sqlite+aiosqlite:///{path}")
    await db.connect()
    yield db
    await db.disconnect()


@pytest.mark.asyncio
async def test_store_roundtrip_preserves_events_and_order(database):
    store = DatabaseCacheStore(database)
    assert await store.get("alice") is None

    before = datetime.now(timezone.utc) - timedelta(seconds=1)
    await store.save("alice", EVENTS)
    record = await store.get("alice")

    assert record.owner_identity == "alice"
    assert record.events == EVENTS
    assert record.last_updated_at.tzinfo is not None
    assert record.last_updated_at >= before


@pytest.mark.asyncio
async def test_store_save_replaces_previous_events(database):
    store = DatabaseCacheStore(database)
    await store.save("alice", EVENTS)
    await store.save("alice", EVENTS[:1])
    await store.save("bob", [])

    assert [e.id for e in (await store.get("alice")).events] == ["1"]
    assert (await store.get("bob")).events == []


@pytest.mark.asyncio
async def test_store_errors_raise_cache_unavailable():
    db = MagicMock()
    db.fetch_one = AsyncMock(side_effect=RuntimeError("no such table: user_events"))
    store = DatabaseCacheStore(db)

    with pytest.raises(CacheUnavailable):
        await store.get("alice")
