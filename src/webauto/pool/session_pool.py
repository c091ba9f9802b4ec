"""
Per-client page session pool.

Provides a bounded pool of page sessions keyed by client id with:
- Lazy, single-flight initialization of one shared browser backend
- Liveness probes on reuse and transparent recreation of dead sessions
- Capacity enforcement that fails fast instead of evicting
- Pool-wide invalidation when the backend disconnects
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from webauto.backend.base import bounded
from webauto.errors import (
    BackendInitFailed,
    CapacityExceeded,
    SessionCreationFailed,
)

if TYPE_CHECKING:
    from webauto.backend.base import BrowserBackend, BrowserHandle, PageHandle
    from webauto.config import BrowserConfig, PoolConfig

logger = structlog.get_logger(__name__)

LIVENESS_PROBE_SCRIPT = "() => document.readyState"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class SessionStatus:
    """Read-only snapshot of one client session."""

    id: str
    current_url: str | None
    created_at: datetime
    last_activity: datetime
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "current_url": self.current_url,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "is_active": self.is_active,
        }


@dataclass(frozen=True, slots=True)
class PoolStatus:
    """Read-only snapshot of the whole pool."""

    total_sessions: int
    max_sessions: int
    backend_initialized: bool
    sessions: tuple[SessionStatus, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_sessions": self.total_sessions,
            "max_sessions": self.max_sessions,
            "backend_initialized": self.backend_initialized,
            "sessions": [s.to_dict() for s in self.sessions],
        }


@dataclass
class Session:
    """
    One client's exclusive binding to a backend page.

    The page handle is never shared with another session.
    """

    id: str
    """Caller supplied client identifier."""

    page: PageHandle
    """The backend page owned by this session."""

    created_at: datetime = field(default_factory=_utcnow)
    """When the session was created."""

    last_activity: datetime = field(default_factory=_utcnow)
    """When the session was last used by an operation."""

    current_url: str | None = None
    """Last URL navigated to, if any."""

    generation: int = 0
    """Backend generation the page was opened on."""

    def touch(self, url: str | None = None) -> None:
        """Record activity and optionally the current URL."""
        self.last_activity = _utcnow()
        if url is not None:
            self.current_url = url

    def snapshot(self) -> SessionStatus:
        return SessionStatus(
            id=self.id,
            current_url=self.current_url,
            created_at=self.created_at,
            last_activity=self.last_activity,
        )


@dataclass
class _ClientLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionPool:
    """
    Pool of page sessions for concurrent clients.

    Features:
    - At most one session per client id
    - count(sessions) <= max_sessions, except while replacing a dead session
    - Backend launched on first use; a failed launch does not poison the pool
    - Disconnect observer clears every session eagerly

    Usage:
        async with SessionPool(backend, browser_config, pool_config) as pool:
            session = await pool.acquire("client-a")
            await session.page.goto("https://example.com", ...)

    Map mutations never await in the middle of a read-modify-write, so the
    synchronous disconnect handler cannot interleave with them.
    """

    def __init__(
        self,
        backend: BrowserBackend,
        browser_config: BrowserConfig,
        config: PoolConfig,
    ) -> None:
        """
        Initialize the session pool.

        Args:
            backend: Factory used to launch the shared browser
            browser_config: Launch options and page defaults
            config: Pool sizing and probe configuration
        """
        self._backend = backend
        self._browser_config = browser_config
        self._config = config

        self._browser: BrowserHandle | None = None
        self._generation = 0
        self._sessions: dict[str, Session] = {}
        self._pending: set[str] = set()
        self._client_locks: dict[str, _ClientLock] = {}
        self._closing: set[asyncio.Task[None]] = set()
        self._backend_lock = asyncio.Lock()

        self._log = logger.bind(component="session_pool")

        # Statistics
        self._stats = {
            "total_created": 0,
            "total_recreated": 0,
            "total_released": 0,
            "total_failed": 0,
            "total_invalidations": 0,
            "backend_launches": 0,
        }

    @property
    def size(self) -> int:
        """Get current number of sessions."""
        return len(self._sessions)

    @property
    def max_sessions(self) -> int:
        return self._config.max_sessions

    @property
    def backend_initialized(self) -> bool:
        return self._browser is not None

    @property
    def statistics(self) -> dict[str, Any]:
        """Get pool statistics."""
        return {
            **self._stats,
            "current_size": self.size,
            "max_sessions": self.max_sessions,
            "backend_initialized": self.backend_initialized,
        }

    async def acquire(self, client_id: str) -> Session:
        """
        Get the live session for a client, creating it if needed.

        Concurrent calls for the same id converge on one session; calls for
        different ids only contend on the backend launch.

        Raises:
            CapacityExceeded: If client_id is new and the pool is full
            BackendInitFailed: If the browser cannot be launched
            SessionCreationFailed: If the page cannot be opened
        """
        async with self._client_lock(client_id):
            replacing = False
            session = self._sessions.get(client_id)
            if session is not None:
                if await self._is_alive(session):
                    return session

                self._log.warning(
                    "Session failed liveness probe, recreating",
                    client_id=client_id,
                )
                await self._discard(session)
                replacing = True
            else:
                self._reserve(client_id)

            try:
                session = await self._create_session(client_id)
            finally:
                self._pending.discard(client_id)

            if replacing:
                self._stats["total_recreated"] += 1
            return session

    async def release(self, client_id: str) -> bool:
        """
        Close a client's page and forget the session.

        The mapping is removed even if closing the page fails.

        Returns:
            False if the client had no session
        """
        async with self._client_lock(client_id):
            session = self._sessions.pop(client_id, None)
            if session is None:
                return False

            await self._close_page(session)
            self._stats["total_released"] += 1
            self._log.info("Session released", client_id=client_id)
            return True

    def get(self, client_id: str) -> Session | None:
        """Get a session without probing it."""
        return self._sessions.get(client_id)

    def touch(self, client_id: str, url: str | None = None) -> None:
        """Record activity on a client session, if it still exists."""
        session = self._sessions.get(client_id)
        if session is not None:
            session.touch(url)

    def status(self, client_id: str) -> SessionStatus | None:
        session = self._sessions.get(client_id)
        return session.snapshot() if session is not None else None

    def all_statuses(self) -> PoolStatus:
        sessions = tuple(s.snapshot() for s in self._sessions.values())
        return PoolStatus(
            total_sessions=len(sessions),
            max_sessions=self._config.max_sessions,
            backend_initialized=self.backend_initialized,
            sessions=sessions,
        )

    def handle_backend_disconnect(self, browser: BrowserHandle | None = None) -> None:
        """
        Invalidate every session and drop the backend handle.

        Registered as the backend's disconnect listener. Events from a handle
        that has already been replaced are ignored.
        """
        if browser is not None and browser is not self._browser:
            self._log.debug("Ignoring disconnect from stale backend handle")
            return

        dropped = list(self._sessions)
        stale = self._browser
        self._sessions.clear()
        self._browser = None
        self._generation += 1
        self._stats["total_invalidations"] += 1

        self._log.warning(
            "Browser backend disconnected, sessions invalidated",
            dropped_sessions=dropped,
            generation=self._generation,
        )
        if stale is not None:
            self._schedule_close(stale)

    async def shutdown(self) -> None:
        """Release every session, then close the backend. Never raises."""
        self._log.info("Shutting down session pool", sessions=self.size)

        for client_id in list(self._sessions):
            try:
                await self.release(client_id)
            except Exception as e:
                self._log.warning(
                    "Error releasing session during shutdown",
                    client_id=client_id,
                    error=str(e),
                )

        browser = self._browser
        self._browser = None
        self._generation += 1

        if browser is not None:
            await self._close_browser(browser)
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

        self._log.info("Session pool shut down", stats=self._stats)

    async def __aenter__(self) -> SessionPool:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.shutdown()

    @asynccontextmanager
    async def _client_lock(self, client_id: str) -> AsyncIterator[None]:
        """Serialize operations on one client id; the lock is dropped once idle."""
        entry = self._client_locks.get(client_id)
        if entry is None:
            entry = self._client_locks[client_id] = _ClientLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._client_locks.get(client_id) is entry:
                del self._client_locks[client_id]

    def _schedule_close(self, browser: BrowserHandle) -> None:
        """Close a dropped backend handle in the background."""
        try:
            task = asyncio.get_running_loop().create_task(self._close_browser(browser))
        except RuntimeError:
            self._log.warning("No running event loop, disconnected backend left open")
            return
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_browser(self, browser: BrowserHandle) -> None:
        try:
            await bounded(browser.close(), self._config.close_timeout_ms, "browser_close")
        except Exception as e:
            self._log.warning("Error closing browser backend", error=str(e))

    def _reserve(self, client_id: str) -> None:
        """Reserve a slot for a new client id or fail fast."""
        in_use = len(self._sessions) + len(self._pending)
        if self._config.enforce_capacity and in_use >= self._config.max_sessions:
            self._log.warning(
                "Session pool at capacity",
                client_id=client_id,
                max_sessions=self._config.max_sessions,
            )
            raise CapacityExceeded(
                f"Maximum number of clients ({self._config.max_sessions}) exceeded",
                details={"client_id": client_id, "max_sessions": self._config.max_sessions},
            )
        self._pending.add(client_id)

    async def _discard(self, session: Session) -> None:
        """Drop a dead session while keeping its slot reserved for the replacement."""
        if self._sessions.get(session.id) is session:
            del self._sessions[session.id]
        self._pending.add(session.id)
        await self._close_page(session)

    async def _is_alive(self, session: Session) -> bool:
        if session.generation != self._generation:
            return False
        try:
            await bounded(
                session.page.evaluate(LIVENESS_PROBE_SCRIPT),
                self._config.probe_timeout_ms,
                "liveness_probe",
            )
            return True
        except Exception as e:
            self._log.debug("Liveness probe failed", client_id=session.id, error=str(e))
            return False

    async def _ensure_browser(self) -> tuple[BrowserHandle, int]:
        """Launch the shared backend once; concurrent callers wait for the same launch."""
        if self._browser is not None:
            return self._browser, self._generation

        async with self._backend_lock:
            if self._browser is not None:
                return self._browser, self._generation

            try:
                browser = await self._backend.launch(self._browser_config)
            except BackendInitFailed:
                self._log.error("Browser launch failed")
                raise
            except Exception as e:
                self._log.error("Browser launch failed", error=str(e))
                raise BackendInitFailed(f"Browser initialization failed: {e}") from e

            browser.on_disconnected(lambda: self.handle_backend_disconnect(browser))
            self._browser = browser
            self._stats["backend_launches"] += 1
            self._log.info("Browser backend initialized", generation=self._generation)
            return browser, self._generation

    async def _create_session(self, client_id: str) -> Session:
        browser, generation = await self._ensure_browser()

        try:
            page = await bounded(
                browser.new_page(), self._browser_config.timeout_ms, "new_page"
            )
            page.set_default_timeout(self._browser_config.timeout_ms)
        except Exception as e:
            self._stats["total_failed"] += 1
            self._log.error("Failed to create session", client_id=client_id, error=str(e))
            raise SessionCreationFailed(
                f"Failed to create client session: {e}",
                details={"client_id": client_id},
            ) from e

        session = Session(id=client_id, page=page, generation=generation)

        if generation != self._generation:
            # The backend went away while the page was being opened.
            self._stats["total_failed"] += 1
            await self._close_page(session)
            raise SessionCreationFailed(
                "Browser backend disconnected during session creation",
                details={"client_id": client_id},
            )

        self._sessions[client_id] = session
        self._stats["total_created"] += 1
        self._log.info("Session created", client_id=client_id, pool_size=self.size)
        return session

    async def _close_page(self, session: Session) -> None:
        """Close a session page safely."""
        try:
            await bounded(
                session.page.close(), self._config.close_timeout_ms, "page_close"
            )
        except Exception as e:
            self._log.warning("Error closing session page", client_id=session.id, error=str(e))
