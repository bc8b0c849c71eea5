# planning_api/core/session.py
import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .browser import close_browser_quietly
from .constants import (SESSION_IDLE_TIMEOUT_SECONDS,
                        SESSION_SWEEP_INTERVAL_SECONDS, SESSION_TOKEN_BYTES)
from .errors import SessionNotFound

log = logging.getLogger(__name__)


def generate_token() -> str:
    """Returns an unguessable 32-character lowercase hex token (128 bits)."""
    return secrets.token_hex(SESSION_TOKEN_BYTES)


@dataclass
class Session:
    """A logged-in portal session; owns its browser and page for its whole lifetime."""
    token: str
    owner_identity: str
    browser: Any
    page: Any
    last_used_at: float
    # Serializes browser operations issued with the same token
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def in_use(self) -> bool:
        return self.lock.locked()


class SessionManager:
    """
    Process-scoped store of active browser sessions keyed by opaque token.

    Starts empty; `close_all()` drains it on shutdown. A background sweeper
    (see `start_sweeper`) closes sessions idle for longer than `idle_timeout`.
    Each session carries a lock, and `use()` holds it for the duration of a
    request so two requests with the same token never interleave browser
    operations. The sweeper skips sessions whose lock is held.
    """

    def __init__(
        self,
        idle_timeout: float = SESSION_IDLE_TIMEOUT_SECONDS,
        sweep_interval: float = SESSION_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            idle_timeout: Seconds without use after which a session is evicted.
            sweep_interval: Seconds between two sweeps.
            clock: Monotonic time source, injectable for tests.
        """
        self.idle_timeout = idle_timeout
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, token: object) -> bool:
        return token in self._sessions

    def create(self, owner_identity: str, browser: Any, page: Any) -> str:
        """Registers a new session and returns its token."""
        token = generate_token()
        self._sessions[token] = Session(
            token=token,
            owner_identity=owner_identity,
            browser=browser,
            page=page,
            last_used_at=self._clock(),
        )
        log.info(f"Session {token[:8]}... created for {owner_identity} ({len(self._sessions)} active).")
        return token

    def get(self, token: Optional[str]) -> Session:
        """
        Returns the session for `token`.

        Raises:
            SessionNotFound: If the token is unknown or was evicted by the sweeper.
        """
        session = self._sessions.get(token) if token else None
        if session is None:
            raise SessionNotFound(token)
        return session

    def touch(self, token: Optional[str]) -> None:
        """Refreshes the session's last-used time; unknown tokens are ignored."""
        session = self._sessions.get(token) if token else None
        if session is not None:
            session.last_used_at = self._clock()

    async def _release(self, token: str, session: Session) -> None:
        # Caller holds session.lock, or the manager is shutting down
        if self._sessions.get(token) is not session:
            return
        del self._sessions[token]
        await close_browser_quietly(session.browser)
        log.info(f"Session {token[:8]}... closed ({len(self._sessions)} active).")

    async def close(self, token: Optional[str]) -> bool:
        """
        Removes the session and releases its browser.

        Waits for any request currently using the session to finish first, so
        the browser is never closed under an in-flight operation.
        Release errors are logged and swallowed. Returns True if a session was removed.
        """
        session = self._sessions.get(token) if token else None
        if session is None:
            return False
        async with session.lock:
            # Another close or the sweeper may have won while we waited
            if self._sessions.get(token) is not session:
                return False
            await self._release(token, session)
        return True

    @asynccontextmanager
    async def use(self, token: Optional[str]) -> AsyncIterator[Session]:
        """
        Exclusive use of a session for one request.

        The session is touched on entry and again on exit, so a long-running
        operation does not look idle to the sweeper once it completes.

        Raises:
            SessionNotFound: If the token is unknown, or the session was closed
                while waiting for the lock.
        """
        session = self.get(token)
        async with session.lock:
            # Session may have been closed (logout) while we waited
            if self._sessions.get(token) is not session:
                raise SessionNotFound(token)
            self.touch(token)
            try:
                yield session
            finally:
                self.touch(token)

    def _is_idle(self, session: Session) -> bool:
        return self._clock() - session.last_used_at > self.idle_timeout and not session.in_use

    def _idle_tokens(self) -> List[str]:
        return [token for token, session in self._sessions.items() if self._is_idle(session)]

    async def sweep(self) -> List[str]:
        """Closes every idle session not currently in use. Returns the evicted tokens."""
        expired = []
        for token in self._idle_tokens():
            session = self._sessions.get(token)
            # Earlier evictions await browser.close(); a request may have claimed
            # or touched this session meanwhile
            if session is None or not self._is_idle(session):
                continue
            # Unlocked, so acquiring does not suspend between the check and the lock
            async with session.lock:
                await self._release(token, session)
            expired.append(token)
            log.info(f"[cleanup] Session {token[:8]}... expired")
        return expired

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                # Keep the sweeper alive; the next cycle retries
                log.error(f"Session sweep failed: {e}", exc_info=True)

    def start_sweeper(self) -> None:
        """Starts the periodic idle sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())
            log.info(f"Session sweeper started (interval={self.sweep_interval}s, idle_timeout={self.idle_timeout}s).")

    async def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
            log.info("Session sweeper stopped.")

    async def close_all(self) -> None:
        """Stops the sweeper and closes every remaining session without waiting on in-flight requests."""
        await self.stop_sweeper()
        for token, session in list(self._sessions.items()):
            await self._release(token, session)
