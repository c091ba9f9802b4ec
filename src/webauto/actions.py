"""
Page actions: navigate, click, type and screenshot.

Each action acquires the caller's session from the pool, performs one
bounded backend sequence and wraps any failure in its action-specific error.
Actions do not retry.
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from webauto.backend.base import bounded
from webauto.errors import (
    ClickFailed,
    ElementNotFound,
    InputFailed,
    NavigationFailed,
    ScreenshotFailed,
)

if TYPE_CHECKING:
    from webauto.config import ActionConfig, BrowserConfig
    from webauto.pool.session_pool import SessionPool

logger = structlog.get_logger(__name__)

SUPPORTED_IMAGE_FORMATS = ("png", "jpeg", "jpg")

_SCROLL_INTO_VIEW = """sel => {
    const element = document.querySelector(sel);
    if (element) {
        element.scrollIntoView({ behavior: 'instant', block: 'center' });
    }
}"""
_CLEAR_INPUT = """sel => {
    const element = document.querySelector(sel);
    if (!element) return;
    if ('value' in element) {
        element.value = '';
    } else {
        element.textContent = '';
    }
}"""
_VIEWPORT_DIMENSIONS = """() => ({
    width: Math.max(document.documentElement.clientWidth, window.innerWidth || 0),
    height: Math.max(document.documentElement.clientHeight, window.innerHeight || 0),
})"""


@dataclass(frozen=True)
class NavigationResult:
    url: str
    title: str
    status: int

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "title": self.title, "status": self.status}


@dataclass(frozen=True)
class ClickResult:
    navigated: bool
    url: str | None = None
    status: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"navigated": self.navigated, "url": self.url, "status": self.status}


@dataclass(frozen=True)
class InputResult:
    text: str
    selector: str

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "selector": self.selector}


@dataclass(frozen=True)
class ScreenshotResult:
    """Captured image plus the page viewport it was taken from."""

    data: bytes
    image_format: str
    width: int
    height: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def size(self) -> int:
        return len(self.data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": base64.b64encode(self.data).decode("ascii"),
            "format": self.image_format,
            "size": self.size,
            "width": self.width,
            "height": self.height,
            "timestamp": self.timestamp.isoformat(),
        }


class ActionRunner:
    """
    Executes single page actions on pooled sessions.

    Usage:
        runner = ActionRunner(pool, browser_config, action_config)
        await runner.navigate("client-a", "https://example.com")
        shot = await runner.screenshot("client-a", element="#chart")
    """

    def __init__(
        self,
        pool: SessionPool,
        browser_config: BrowserConfig,
        config: ActionConfig,
    ) -> None:
        self._pool = pool
        self._timeout_ms = browser_config.timeout_ms
        self._config = config
        self._log = logger.bind(component="action_runner")

    async def navigate(
        self,
        client_id: str,
        url: str,
        wait_for_load: bool = True,
        wait_for_selector: str | None = None,
    ) -> NavigationResult:
        """
        Navigate the client's page.

        Raises:
            NavigationFailed: If loading the page or the awaited selector fails
        """
        session = await self._pool.acquire(client_id)
        page = session.page
        wait_until = "networkidle" if wait_for_load else "domcontentloaded"
        self._log.info("Navigating", client_id=client_id, url=url, wait_until=wait_until)

        try:
            status = await bounded(
                page.goto(url, wait_until=wait_until, timeout_ms=self._timeout_ms),
                self._timeout_ms,
                "navigation",
            )
            self._pool.touch(client_id, url)

            if wait_for_selector:
                await bounded(
                    page.wait_for_selector(wait_for_selector, timeout_ms=self._timeout_ms),
                    self._timeout_ms,
                    "wait_for_selector",
                )

            title = await bounded(page.title(), self._timeout_ms, "page_title")
        except Exception as e:
            self._log.error("Navigation failed", client_id=client_id, url=url, error=str(e))
            raise NavigationFailed(
                f"Navigation failed: {e}",
                details={"client_id": client_id, "url": url},
            ) from e

        result = NavigationResult(url=page.url, title=title, status=status or 200)
        self._log.info(
            "Navigation succeeded", client_id=client_id, title=title, status=result.status
        )
        return result

    async def click(
        self,
        client_id: str,
        selector: str,
        wait_for_navigation: bool = False,
    ) -> ClickResult:
        """
        Scroll an element into view and click it.

        Raises:
            ClickFailed: If the element never appears or the click fails
        """
        session = await self._pool.acquire(client_id)
        page = session.page
        self._pool.touch(client_id)
        self._log.debug("Clicking element", client_id=client_id, selector=selector)

        try:
            await bounded(
                page.wait_for_selector(selector, timeout_ms=self._timeout_ms),
                self._timeout_ms,
                "wait_for_selector",
            )
            await bounded(page.evaluate(_SCROLL_INTO_VIEW, selector), self._timeout_ms, "scroll")
            await self._settle()

            if wait_for_navigation:
                status = await bounded(
                    page.click_and_wait_for_navigation(selector, timeout_ms=self._timeout_ms),
                    self._timeout_ms,
                    "click_navigation",
                )
                self._pool.touch(client_id, page.url)
                return ClickResult(navigated=True, url=page.url, status=status)

            await bounded(
                page.click(selector, timeout_ms=self._timeout_ms),
                self._timeout_ms,
                "click",
            )
        except Exception as e:
            self._log.error("Click failed", client_id=client_id, selector=selector, error=str(e))
            raise ClickFailed(
                f"Click failed: {e}",
                details={"client_id": client_id, "selector": selector},
            ) from e

        return ClickResult(navigated=False)

    async def type_text(
        self,
        client_id: str,
        selector: str,
        text: str,
        clear: bool = True,
        delay_ms: int | None = None,
    ) -> InputResult:
        """
        Focus an input, optionally clear it and type text keystroke by keystroke.

        Raises:
            InputFailed: If the element never appears or typing fails
        """
        session = await self._pool.acquire(client_id)
        page = session.page
        self._pool.touch(client_id)
        delay = self._config.type_delay_ms if delay_ms is None else delay_ms
        self._log.debug("Typing text", client_id=client_id, selector=selector, length=len(text))

        try:
            await bounded(
                page.wait_for_selector(selector, timeout_ms=self._timeout_ms),
                self._timeout_ms,
                "wait_for_selector",
            )
            await bounded(page.focus(selector), self._timeout_ms, "focus")
            if clear:
                await bounded(page.evaluate(_CLEAR_INPUT, selector), self._timeout_ms, "clear")

            # Typing time grows with the text, so budget the timeout per keystroke.
            typing_budget = self._timeout_ms + delay * len(text)
            await bounded(page.type(selector, text, delay_ms=delay), typing_budget, "type")
        except Exception as e:
            self._log.error(
                "Text input failed", client_id=client_id, selector=selector, error=str(e)
            )
            raise InputFailed(
                f"Text input failed: {e}",
                details={"client_id": client_id, "selector": selector},
            ) from e

        return InputResult(text=text, selector=selector)

    async def screenshot(
        self,
        client_id: str,
        full_page: bool = True,
        element: str | None = None,
        image_format: str = "png",
        quality: int | None = None,
    ) -> ScreenshotResult:
        """
        Capture the page or a single element.

        Raises:
            ElementNotFound: If element is given and does not exist
            ScreenshotFailed: If capturing fails
        """
        image_format = image_format.lower()
        if image_format not in SUPPORTED_IMAGE_FORMATS:
            raise ScreenshotFailed(
                f"Unsupported screenshot format: {image_format}",
                details={"supported": list(SUPPORTED_IMAGE_FORMATS)},
            )
        if quality is None:
            quality = self._config.screenshot_quality

        session = await self._pool.acquire(client_id)
        page = session.page
        self._pool.touch(client_id)

        try:
            if element:
                if not await bounded(page.has_element(element), self._timeout_ms, "query"):
                    raise ElementNotFound(
                        f"Element not found: {element}",
                        details={"client_id": client_id, "selector": element},
                    )
                data = await bounded(
                    page.element_screenshot(element, image_format=image_format, quality=quality),
                    self._timeout_ms,
                    "screenshot",
                )
            else:
                data = await bounded(
                    page.screenshot(
                        full_page=full_page, image_format=image_format, quality=quality
                    ),
                    self._timeout_ms,
                    "screenshot",
                )
            dimensions = await bounded(
                page.evaluate(_VIEWPORT_DIMENSIONS), self._timeout_ms, "dimensions"
            )
        except ElementNotFound:
            raise
        except LookupError as e:
            # Element detached between the existence check and the capture.
            raise ElementNotFound(
                str(e), details={"client_id": client_id, "selector": element}
            ) from e
        except Exception as e:
            self._log.error("Screenshot failed", client_id=client_id, error=str(e))
            raise ScreenshotFailed(
                f"Screenshot failed: {e}",
                details={"client_id": client_id},
            ) from e

        result = ScreenshotResult(
            data=data,
            image_format=image_format,
            width=int(dimensions.get("width", 0)),
            height=int(dimensions.get("height", 0)),
        )
        self._log.debug(
            "Screenshot captured",
            client_id=client_id,
            size=result.size,
            width=result.width,
            height=result.height,
        )
        return result

    async def _settle(self) -> None:
        if self._config.click_settle_ms:
            await asyncio.sleep(self._config.click_settle_ms / 1000)
