import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Protocol, Tuple

from .auth_flow import AuthenticationFlow
from .browser import close_browser_quietly, dump_page_html
from .cache_service import CacheGate
from .constants import DIRECTION_SELECTORS
from .extraction import (ExtractionCascade, describe_entries,
                         strategy_for_direction)
from .normalizer import normalize_events
from .session import SessionManager, generate_token
from ..models.models import NormalizedEvent

log = logging.getLogger(__name__)


class Launcher(Protocol):
    async def launch(self) -> Tuple[Any, Any]:
        ...


@dataclass
class ScheduleResult:
    """Outcome of a login-and-fetch run."""
    token: str
    events: List[NormalizedEvent] = field(default_factory=list)
    from_cache: bool = False
    cached_at: Optional[datetime] = None
    message: str = ""


@dataclass
class CachedSchedule:
    events: List[NormalizedEvent] = field(default_factory=list)
    cached_at: Optional[datetime] = None
    fresh: bool = False


class PlanningService:
    """
    Orchestrates cache gate, login flow, session registration and extraction.

    Collaborators are injected so each can be replaced independently
    (tests use fakes for the launcher, the flow and the cascade).
    """

    def __init__(
        self,
        sessions: SessionManager,
        cache_gate: CacheGate,
        launcher: Optional[Launcher],
        flow_factory: Callable[[Any], AuthenticationFlow] = AuthenticationFlow,
        cascade_factory: Callable[[], ExtractionCascade] = ExtractionCascade,
        save_debug_html: bool = False,
    ):
        self.sessions = sessions
        self.cache_gate = cache_gate
        self.launcher = launcher
        self.flow_factory = flow_factory
        self.cascade_factory = cascade_factory
        self.save_debug_html = save_debug_html

    async def login_and_fetch(self, username: str, password: str) -> ScheduleResult:
        """
        Returns the user's schedule, from cache when fresh, otherwise live.

        The live path logs in, extracts and normalizes events, registers the
        browser session and writes the events back to the cache. On any
        failure the browser is closed before the error propagates.

        Raises:
            AuthenticationFailed, NavigationTimeout, MenuNotFound, or any
            browser error from the live path.
        """
        # --- 1. Cache ---
        cached = await self.cache_gate.fetch_fresh(username)
        if cached is not None:
            count = len(cached.events)
            log.info(f"[login] Returning {count} cached events for {username} (fresh)")
            return ScheduleResult(
                # No browser behind this token: navigate will ask for a new login
                token=generate_token(),
                events=list(cached.events),
                from_cache=True,
                cached_at=cached.last_updated_at,
                message=(f"{count} événements (cache). Données mises à jour "
                         f"il y a moins de {self.cache_gate.max_age_hours:g}h."),
            )

        if self.launcher is None:
            raise RuntimeError("Browser runtime is not available")

        # --- 2. Live fetch ---
        log.info(f"[login] Launching browser for {username}...")
        browser, page = await self.launcher.launch()
        try:
            flow = self.flow_factory(page)
            try:
                await flow.run(username, password)
            except Exception:
                if self.save_debug_html:
                    await dump_page_html(page, "login_failed")
                raise

            log.info("[login] Planning page loaded, extracting events...")
            result = await self.cascade_factory().run(page)
            log.info(f"[login] Found {len(result.entries)} events via {result.strategy} {describe_entries(result.entries)}")
            if result.is_empty and self.save_debug_html:
                await dump_page_html(page, "extraction_empty")
            events = normalize_events(result.entries)
        except BaseException:
            await close_browser_quietly(browser)
            raise

        # --- 3. Register session & persist ---
        token = self.sessions.create(username, browser, page)
        await self.cache_gate.persist(username, events)

        return ScheduleResult(
            token=token,
            events=events,
            from_cache=False,
            message=f"Connecté en tant que {username}. {len(events)} événements trouvés.",
        )

    async def navigate(self, token: Optional[str], direction: Optional[str]) -> List[NormalizedEvent]:
        """
        Moves the session's calendar and returns the events of the new period.

        Raises:
            SessionNotFound: Unknown or expired token.
        """
        selector = DIRECTION_SELECTORS.get(direction, DIRECTION_SELECTORS["today"])
        async with self.sessions.use(token) as session:
            log.info(f"[navigate] {direction} for {session.owner_identity}")
            entries = await strategy_for_direction(selector).try_extract(session.page)
        return normalize_events(entries)

    async def logout(self, token: Optional[str]) -> None:
        """Closes the session if it exists; unknown tokens are ignored."""
        await self.sessions.close(token)

    async def cached_events(self, username: str) -> CachedSchedule:
        """Reads the cache only; never contacts the portal."""
        record = await self.cache_gate.fetch(username)
        if record is None or not record.events:
            return CachedSchedule()
        log.info(f"[cache] Returning {len(record.events)} cached events for {username}")
        return CachedSchedule(
            events=list(record.events),
            cached_at=record.last_updated_at,
            fresh=self.cache_gate.is_fresh(record.last_updated_at),
        )
