"""
Unit tests for the session pool.

Tests cover:
- Lazy backend launch and session reuse
- Liveness checks and recreation of dead sessions
- Capacity enforcement, including concurrent acquires
- Backend disconnect invalidation and relaunch
- Release and shutdown cleanup
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_browser, make_page
from webauto.config import BrowserConfig, PoolConfig
from webauto.errors import BackendInitFailed, CapacityExceeded, SessionCreationFailed
from webauto.pool.session_pool import SessionPool


class TestAcquire:
    """Tests for acquiring sessions."""

    @pytest.mark.asyncio
    async def test_first_acquire_launches_backend(
        self, pool: SessionPool, backend: MagicMock
    ) -> None:
        """Test the backend is launched lazily on first acquire."""
        assert not pool.backend_initialized
        backend.launch.assert_not_called()

        session = await pool.acquire("a")

        assert session.id == "a"
        assert pool.backend_initialized
        assert pool.size == 1
        backend.launch.assert_awaited_once()
        session.page.set_default_timeout.assert_called_once_with(5000)

    @pytest.mark.asyncio
    async def test_acquire_is_idempotent(self, pool: SessionPool, backend: MagicMock) -> None:
        """Test acquiring the same id twice returns the same live session."""
        first = await pool.acquire("a")
        second = await pool.acquire("a")

        assert second is first
        assert second.created_at == first.created_at
        assert pool.size == 1
        backend.browsers[0].new_page.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reuse_runs_liveness_check(self, pool: SessionPool) -> None:
        """Test a reused session is checked with document.readyState."""
        session = await pool.acquire("a")
        session.page.evaluate.reset_mock()

        await pool.acquire("a")

        session.page.evaluate.assert_awaited_once()
        assert "readyState" in session.page.evaluate.await_args.args[0]

    @pytest.mark.asyncio
    async def test_dead_session_is_recreated(self, pool: SessionPool) -> None:
        """Test a session failing its liveness check is replaced transparently."""
        old = await pool.acquire("a")
        old.page.evaluate.side_effect = RuntimeError("Target closed")

        new = await pool.acquire("a")

        assert new is not old
        assert new.page is not old.page
        old.page.close.assert_awaited_once()
        assert pool.size == 1
        assert pool.statistics["total_recreated"] == 1

    @pytest.mark.asyncio
    async def test_dead_session_recreated_at_capacity(self, pool: SessionPool) -> None:
        """Test replacing a dead session never trips the capacity check."""
        await pool.acquire("a")
        dead = await pool.acquire("b")
        dead.page.evaluate.side_effect = RuntimeError("Session closed")

        replacement = await pool.acquire("b")

        assert replacement is not dead
        assert pool.size == 2

    @pytest.mark.asyncio
    async def test_concurrent_acquire_same_id_converges(
        self, pool: SessionPool, backend: MagicMock
    ) -> None:
        """Test concurrent acquires for one id create a single session."""
        sessions = await asyncio.gather(*(pool.acquire("a") for _ in range(5)))

        assert all(s is sessions[0] for s in sessions)
        assert pool.size == 1
        backend.browsers[0].new_page.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_first_acquires_launch_once(
        self, pool: SessionPool, backend: MagicMock
    ) -> None:
        """Test backend launch is single-flight across client ids."""
        await asyncio.gather(pool.acquire("a"), pool.acquire("b"))

        backend.launch.assert_awaited_once()
        assert pool.size == 2


class TestCapacity:
    """Tests for capacity enforcement."""

    @pytest.mark.asyncio
    async def test_new_id_rejected_when_full(self, pool: SessionPool) -> None:
        """Test a third client is rejected when max_sessions is two."""
        await pool.acquire("a")
        await pool.acquire("b")

        with pytest.raises(CapacityExceeded, match=r"Maximum number of clients \(2\) exceeded"):
            await pool.acquire("c")

        assert pool.size == 2
        assert pool.status("c") is None

    @pytest.mark.asyncio
    async def test_release_frees_a_slot(self, pool: SessionPool) -> None:
        """Test a released slot can be taken by a new client."""
        await pool.acquire("a")
        await pool.acquire("b")
        with pytest.raises(CapacityExceeded):
            await pool.acquire("c")

        assert await pool.release("a") is True
        session = await pool.acquire("c")

        assert session.id == "c"
        assert pool.size == 2

    @pytest.mark.asyncio
    async def test_existing_id_allowed_when_full(self, pool: SessionPool) -> None:
        """Test existing clients keep working at capacity."""
        a = await pool.acquire("a")
        await pool.acquire("b")

        assert await pool.acquire("a") is a

    @pytest.mark.asyncio
    async def test_concurrent_new_ids_cannot_overshoot(self, pool: SessionPool) -> None:
        """Test concurrent acquires of new ids respect the limit."""
        results = await asyncio.gather(
            pool.acquire("a"),
            pool.acquire("b"),
            pool.acquire("c"),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, CapacityExceeded)]
        assert len(failures) == 1
        assert pool.size == 2

    @pytest.mark.asyncio
    async def test_capacity_enforcement_can_be_disabled(
        self, backend: MagicMock, browser_config: BrowserConfig
    ) -> None:
        """Test enforce_capacity=False lets the pool grow past max_sessions."""
        pool = SessionPool(
            backend, browser_config, PoolConfig(max_sessions=1, enforce_capacity=False)
        )

        await pool.acquire("a")
        await pool.acquire("b")

        assert pool.size == 2

    @pytest.mark.asyncio
    async def test_failed_creation_releases_reservation(
        self, backend: MagicMock, browser_config: BrowserConfig
    ) -> None:
        """Test a failed page creation does not leak its capacity slot."""
        pool = SessionPool(backend, browser_config, PoolConfig(max_sessions=1))
        calls = 0

        def flaky_page() -> MagicMock:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("Protocol error: Target.createTarget")
            return make_page()

        backend.page_factory = flaky_page

        with pytest.raises(SessionCreationFailed):
            await pool.acquire("a")

        session = await pool.acquire("b")
        assert session.id == "b"
        assert pool.statistics["total_failed"] == 1


    @pytest.mark.asyncio
    async def test_client_locks_do_not_accumulate(self, pool: SessionPool) -> None:
        """Test per-client locks are dropped once no operation holds them."""
        await pool.acquire("a")
        await pool.acquire("b")
        for i in range(50):
            with pytest.raises(CapacityExceeded):
                await pool.acquire(f"rejected-{i}")

        await pool.release("a")

        assert pool._client_locks == {}
        assert pool.status("b") is not None

    @pytest.mark.asyncio
    async def test_concurrent_same_id_shares_lock_until_idle(self, pool: SessionPool) -> None:
        """Test waiters on one id keep its lock alive and it is freed afterwards."""
        sessions = await asyncio.gather(*(pool.acquire("a") for _ in range(3)))

        assert all(s is sessions[0] for s in sessions)
        assert "a" not in pool._client_locks


class TestBackendLifecycle:
    """Tests for backend launch failures and disconnects."""

    @pytest.mark.asyncio
    async def test_launch_failure_is_not_sticky(
        self, pool: SessionPool, backend: MagicMock
    ) -> None:
        """Test a failed launch surfaces BackendInitFailed and the next call retries."""
        browser = make_browser()
        backend.launch.side_effect = [RuntimeError("Executable doesn't exist"), browser]

        with pytest.raises(BackendInitFailed, match="Browser initialization failed"):
            await pool.acquire("a")
        assert not pool.backend_initialized
        assert pool.size == 0

        session = await pool.acquire("a")

        assert session.page is browser.pages[0]
        assert backend.launch.await_count == 2

    @pytest.mark.asyncio
    async def test_disconnect_invalidates_all_sessions(
        self, pool: SessionPool, backend: MagicMock
    ) -> None:
        """Test a backend disconnect drops every session and the handle."""
        await pool.acquire("a")
        await pool.acquire("b")

        backend.browsers[0].disconnect()

        assert pool.status("a") is None
        assert pool.status("b") is None
        assert pool.size == 0
        assert not pool.backend_initialized
        assert pool.statistics["total_invalidations"] == 1

    @pytest.mark.asyncio
    async def test_acquire_after_disconnect_relaunches(
        self, pool: SessionPool, backend: MagicMock
    ) -> None:
        """Test the next acquire after a disconnect launches a new backend."""
        await pool.acquire("a")
        backend.browsers[0].disconnect()

        session = await pool.acquire("a")

        assert backend.launch.await_count == 2
        assert session.page is backend.browsers[1].pages[0]
        assert pool.status("a") is not None

    @pytest.mark.asyncio
    async def test_stale_disconnect_is_ignored(
        self, pool: SessionPool, backend: MagicMock
    ) -> None:
        """Test a late disconnect from a replaced backend does not clear the pool."""
        await pool.acquire("a")
        old_browser = backend.browsers[0]
        old_browser.disconnect()
        await pool.acquire("a")

        old_browser.disconnect()

        assert pool.status("a") is not None
        assert pool.backend_initialized

    @pytest.mark.asyncio
    async def test_disconnected_backend_is_closed(
        self, pool: SessionPool, backend: MagicMock
    ) -> None:
        """Test the dropped backend handle is closed so its driver does not linger."""
        await pool.acquire("a")
        old_browser = backend.browsers[0]
        old_browser.disconnect()
        await pool.acquire("a")

        await pool.shutdown()

        old_browser.close.assert_awaited_once()
        backend.browsers[1].close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_creation_straddling_disconnect_is_discarded(
        self, pool: SessionPool, backend: MagicMock
    ) -> None:
        """Test a page opened across a disconnect is closed, not registered."""
        browser = make_browser()
        page = make_page()

        async def new_page_then_disconnect() -> MagicMock:
            browser.disconnect()
            return page

        browser.new_page = AsyncMock(side_effect=new_page_then_disconnect)
        backend.launch.side_effect = None
        backend.launch.return_value = browser

        with pytest.raises(SessionCreationFailed, match="disconnected"):
            await pool.acquire("a")

        page.close.assert_awaited_once()
        assert pool.size == 0


class TestStatus:
    """Tests for status snapshots."""

    @pytest.mark.asyncio
    async def test_status_snapshot(self, pool: SessionPool) -> None:
        """Test per-session status reflects touch() updates."""
        session = await pool.acquire("a")
        before = session.last_activity

        pool.touch("a", "https://x.test/")
        status = pool.status("a")

        assert status is not None
        assert status.current_url == "https://x.test/"
        assert status.last_activity >= before
        assert status.to_dict()["is_active"] is True

    @pytest.mark.asyncio
    async def test_all_statuses(self, pool: SessionPool) -> None:
        """Test pool-wide status lists every session."""
        await pool.acquire("a")
        await pool.acquire("b")

        status = pool.all_statuses().to_dict()

        assert status["total_sessions"] == 2
        assert status["max_sessions"] == 2
        assert status["backend_initialized"] is True
        assert sorted(s["id"] for s in status["sessions"]) == ["a", "b"]

    def test_status_unknown_client(self, pool: SessionPool) -> None:
        """Test status of an unknown client is None."""
        assert pool.status("nobody") is None


class TestReleaseAndShutdown:
    """Tests for release and shutdown."""

    @pytest.mark.asyncio
    async def test_release_unknown_client(self, pool: SessionPool) -> None:
        """Test releasing an unknown id reports False."""
        assert await pool.release("nobody") is False

    @pytest.mark.asyncio
    async def test_release_removes_mapping_when_close_fails(self, pool: SessionPool) -> None:
        """Test the mapping is dropped even if closing the page errors."""
        session = await pool.acquire("a")
        session.page.close.side_effect = RuntimeError("Target closed")

        assert await pool.release("a") is True
        assert pool.status("a") is None

    @pytest.mark.asyncio
    async def test_shutdown_closes_everything(
        self, pool: SessionPool, backend: MagicMock
    ) -> None:
        """Test shutdown closes all pages and the browser."""
        a = await pool.acquire("a")
        b = await pool.acquire("b")
        b.page.close.side_effect = RuntimeError("already closed")

        await pool.shutdown()

        a.page.close.assert_awaited_once()
        backend.browsers[0].close.assert_awaited_once()
        assert pool.size == 0
        assert not pool.backend_initialized

    @pytest.mark.asyncio
    async def test_context_manager_shuts_down(self, backend: MagicMock) -> None:
        """Test leaving the async context shuts the pool down."""
        async with SessionPool(backend, BrowserConfig(), PoolConfig()) as pool:
            await pool.acquire("a")

        assert pool.size == 0
        backend.browsers[0].close.assert_awaited_once()
