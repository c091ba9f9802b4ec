"""
Browser backend interface.

The session pool and the extraction engine only talk to the backend through
these protocols, so the Playwright adapter can be swapped for a fake in tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from webauto.errors import OperationTimeout

if TYPE_CHECKING:
    from webauto.config import BrowserConfig

T = TypeVar("T")

DisconnectListener = Callable[[], None]


class PageHandle(Protocol):
    """A single automated page owned by exactly one session."""

    @property
    def url(self) -> str: ...

    async def goto(self, url: str, *, wait_until: str, timeout_ms: int) -> int | None:
        """Navigate and return the main response status, if any."""
        ...

    async def title(self) -> str: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def eval_on_selector(self, selector: str, script: str, arg: Any = None) -> Any:
        """Run script against the first element matching selector."""
        ...

    async def wait_for_selector(
        self, selector: str, *, timeout_ms: int, state: str = "visible"
    ) -> None: ...

    async def has_element(self, selector: str) -> bool: ...

    async def click(self, selector: str, *, timeout_ms: int) -> None: ...

    async def click_and_wait_for_navigation(
        self, selector: str, *, timeout_ms: int
    ) -> int | None: ...

    async def focus(self, selector: str) -> None: ...

    async def type(self, selector: str, text: str, *, delay_ms: int) -> None: ...

    async def screenshot(
        self,
        *,
        full_page: bool,
        image_format: str,
        quality: int | None = None,
    ) -> bytes: ...

    async def element_screenshot(
        self,
        selector: str,
        *,
        image_format: str,
        quality: int | None = None,
    ) -> bytes: ...

    def set_default_timeout(self, timeout_ms: int) -> None: ...

    async def close(self) -> None: ...


class BrowserHandle(Protocol):
    """The single shared browser instance underlying all sessions."""

    async def new_page(self) -> PageHandle:
        """Open a page with the user agent and viewport given at launch."""
        ...

    async def close(self) -> None: ...

    def on_disconnected(self, listener: DisconnectListener) -> None:
        """Register a listener invoked once when the browser goes away."""
        ...


class BrowserBackend(Protocol):
    """Factory for browser handles."""

    async def launch(self, config: BrowserConfig) -> BrowserHandle: ...


async def bounded(awaitable: Awaitable[T], timeout_ms: int, operation: str) -> T:
    """
    Await a backend call with a hard timeout.

    The in-flight call is abandoned on timeout and OperationTimeout is raised.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except TimeoutError as e:
        raise OperationTimeout(
            f"{operation} timeout after {timeout_ms}ms",
            details={"operation": operation, "timeout_ms": timeout_ms},
        ) from e
