import asyncio
import re
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from planning_api.core.cache_service import CacheGate
from planning_api.core.errors import AuthenticationFailed, SessionNotFound
from planning_api.core.extraction import ExtractionResult
from planning_api.core.service import PlanningService
from planning_api.core.session import SessionManager
from planning_api.models.models import CacheRecord, NormalizedEvent, RawCalendarEntry
from planning_api.tests.fakes import FakeElement, FakePage, FakeResponse

# --- Test Helpers ---

CACHED_EVENTS = [NormalizedEvent(id="c1", title="Anglais", raw_title="Anglais")]

RAW_ENTRIES = [
    RawCalendarEntry(id="1", title="Algorithmique\nTD\nM. Dupont\nB201", start="2024-03-04T08:00:00"),
    RawCalendarEntry(id="2", title="", is_empty=True),
]


class FakeStore:
    def __init__(self, record=None):
        self.record = record
        self.saved = []

    async def get(self, owner_identity):
        return self.record

    async def save(self, owner_identity, events):
        self.saved.append((owner_identity, list(events)))


def _flow_factory(error: Exception = None):
    flow = MagicMock()
    flow.run = AsyncMock(side_effect=error)
    return MagicMock(return_value=flow), flow


def _cascade_factory(entries):
    cascade = MagicMock()
    cascade.run = AsyncMock(return_value=ExtractionResult(entries=list(entries), strategy="widget_store"))
    return MagicMock(return_value=cascade)


def _launcher(page=None):
    browser = MagicMock()
    browser.close = AsyncMock()
    launcher = MagicMock()
    launcher.launch = AsyncMock(return_value=(browser, page or FakePage()))
    return launcher, browser


def _service(store=None, launcher=None, flow_factory=None, cascade_factory=None) -> PlanningService:
    return PlanningService(
        sessions=SessionManager(),
        cache_gate=CacheGate(store),
        launcher=launcher,
        flow_factory=flow_factory or _flow_factory()[0],
        cascade_factory=cascade_factory or _cascade_factory(RAW_ENTRIES),
    )


# --- login_and_fetch ---

@pytest.mark.asyncio
async def test_fresh_cache_skips_browser():
    cached_at = datetime.now(timezone.utc) - timedelta(minutes=10)
    store = FakeStore(CacheRecord(owner_identity="alice", events=CACHED_EVENTS, last_updated_at=cached_at))
    launcher, _ = _launcher()
    service = _service(store=store, launcher=launcher)

    result = await service.login_and_fetch("alice", "secret")

    assert result.from_cache is True
    assert result.events == CACHED_EVENTS
    assert result.cached_at == cached_at
    assert re.fullmatch(r"[0-9a-f]{32}", result.token)
    assert result.message == "1 événements (cache). Données mises à jour il y a moins de 2h."
    launcher.launch.assert_not_awaited()
    # Cache-hit tokens have no browser behind them
    assert len(service.sessions) == 0


@pytest.mark.asyncio
async def test_stale_cache_runs_live_fetch_and_persists():
    stale = CacheRecord(owner_identity="alice", events=CACHED_EVENTS,
                        last_updated_at=datetime.now(timezone.utc) - timedelta(hours=5))
    store = FakeStore(stale)
    page = FakePage()
    launcher, browser = _launcher(page)
    flow_factory, flow = _flow_factory()
    service = _service(store=store, launcher=launcher, flow_factory=flow_factory)

    result = await service.login_and_fetch("alice", "secret")

    flow_factory.assert_called_once_with(page)
    flow.run.assert_awaited_once_with("alice", "secret")
    assert result.from_cache is False
    assert result.cached_at is None
    assert [e.id for e in result.events] == ["1"]
    assert result.events[0].type == "td"
    assert result.message == "Connecté en tant que alice. 1 événements trouvés."

    session = service.sessions.get(result.token)
    assert session.owner_identity == "alice"
    assert session.page is page
    browser.close.assert_not_awaited()
    assert store.saved == [("alice", result.events)]


@pytest.mark.asyncio
async def test_empty_extraction_is_a_successful_login():
    launcher, _ = _launcher()
    service = _service(store=FakeStore(), launcher=launcher, cascade_factory=_cascade_factory([]))

    result = await service.login_and_fetch("alice", "secret")

    assert result.events == []
    assert result.token in service.sessions


@pytest.mark.asyncio
async def test_flow_failure_closes_browser_without_session():
    store = FakeStore()
    launcher, browser = _launcher()
    flow_factory, _ = _flow_factory(AuthenticationFailed())
    service = _service(store=store, launcher=launcher, flow_factory=flow_factory)

    with pytest.raises(AuthenticationFailed):
        await service.login_and_fetch("alice", "wrong")

    browser.close.assert_awaited_once()
    assert len(service.sessions) == 0
    assert store.saved == []


@pytest.mark.asyncio
async def test_missing_launcher_raises():
    service = _service(store=FakeStore(), launcher=None)
    with pytest.raises(RuntimeError):
        await service.login_and_fetch("alice", "secret")


# --- navigate / logout ---

@pytest.mark.asyncio
async def test_navigate_unknown_token_raises():
    service = _service()
    with pytest.raises(SessionNotFound):
        await service.navigate("0" * 32, "next")


@pytest.mark.asyncio
async def test_navigate_uses_session_page():
    page = FakePage()
    body = '{"events": [{"id": "n1", "title": "TP Chimie\\nLabo 2"}]}'

    async def emit_payload():
        await page.emit_response(FakeResponse("application/json", body))

    button = FakeElement(on_click=emit_payload)
    page.selectors = {".fc-prev-button": [button]}
    service = _service()
    token = service.sessions.create("alice", MagicMock(), page)

    events = await service.navigate(token, "prev")

    assert button.clicks == 1
    assert [(e.id, e.type, e.room) for e in events] == [("n1", "tp", "Labo 2")]


@pytest.mark.asyncio
async def test_logout_closes_session():
    browser = MagicMock()
    browser.close = AsyncMock()
    service = _service()
    token = service.sessions.create("alice", browser, FakePage())

    await service.logout(token)
    await service.logout(token)
    await service.logout(None)

    browser.close.assert_awaited_once()
    assert token not in service.sessions


@pytest.mark.parametrize("direction", [None, "", "sideways"])
@pytest.mark.asyncio
async def test_navigate_unknown_direction_falls_back_to_today(direction):
    page = FakePage()

    async def emit_payload():
        await page.emit_response(FakeResponse("application/json", '{"events": [{"id": "t1", "title": "CM Analyse"}]}'))

    today_button = FakeElement(on_click=emit_payload)
    page.selectors = {".fc-today-button": [today_button]}
    service = _service()
    token = service.sessions.create("alice", MagicMock(), page)

    events = await service.navigate(token, direction)

    assert today_button.clicks == 1
    assert [e.id for e in events] == ["t1"]


@pytest.mark.asyncio
async def test_logout_during_navigate_waits_for_it():
    steps = []
    page = FakePage()

    async def slow_calendar_update():
        steps.append("clicked")
        await asyncio.sleep(0.05)
        await page.emit_response(FakeResponse("application/json", '{"events": [{"id": "n1", "title": "Anglais"}]}'))

    page.selectors = {".fc-next-button": [FakeElement(on_click=slow_calendar_update)]}
    browser = MagicMock()
    browser.close = AsyncMock(side_effect=lambda: steps.append("closed"))
    service = _service()
    token = service.sessions.create("alice", browser, page)

    navigate_task = asyncio.create_task(service.navigate(token, "next"))
    await asyncio.sleep(0.01)
    await service.logout(token)
    events = await navigate_task

    assert [e.id for e in events] == ["n1"]
    assert steps == ["clicked", "closed"]
    assert token not in service.sessions


# --- cached_events ---

@pytest.mark.asyncio
async def test_cached_events_reports_freshness():
    cached_at = datetime.now(timezone.utc) - timedelta(hours=3)
    store = FakeStore(CacheRecord(owner_identity="alice", events=CACHED_EVENTS, last_updated_at=cached_at))
    service = _service(store=store)

    cached = await service.cached_events("alice")

    assert cached.events == CACHED_EVENTS
    assert cached.cached_at == cached_at
    assert cached.fresh is False


@pytest.mark.asyncio
async def test_cached_events_absent():
    cached = await _service(store=FakeStore()).cached_events("alice")
    assert cached.events == []
    assert cached.cached_at is None
    assert cached.fresh is False
