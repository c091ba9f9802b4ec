"""
Playwright implementation of the browser backend interface.

One Chromium process is shared by every session; each page lives in its own
browser context so cookies and storage never leak between clients.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from webauto.errors import BackendInitFailed

if TYPE_CHECKING:
    from webauto.backend.base import DisconnectListener
    from webauto.config import BrowserConfig

logger = structlog.get_logger(__name__)


class PlaywrightPage:
    """PageHandle backed by a Playwright page and its private context."""

    def __init__(self, page: Page, context: BrowserContext) -> None:
        self._page = page
        self._context = context

    @property
    def url(self) -> str:
        return self._page.url

    async def goto(self, url: str, *, wait_until: str, timeout_ms: int) -> int | None:
        response = await self._page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        return response.status if response is not None else None

    async def title(self) -> str:
        return await self._page.title()

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._page.evaluate(script, arg)

    async def eval_on_selector(self, selector: str, script: str, arg: Any = None) -> Any:
        return await self._page.eval_on_selector(selector, script, arg)

    async def wait_for_selector(
        self, selector: str, *, timeout_ms: int, state: str = "visible"
    ) -> None:
        await self._page.wait_for_selector(selector, timeout=timeout_ms, state=state)

    async def has_element(self, selector: str) -> bool:
        return await self._page.query_selector(selector) is not None

    async def click(self, selector: str, *, timeout_ms: int) -> None:
        await self._page.click(selector, timeout=timeout_ms)

    async def click_and_wait_for_navigation(
        self, selector: str, *, timeout_ms: int
    ) -> int | None:
        async with self._page.expect_navigation(
            wait_until="networkidle", timeout=timeout_ms
        ) as navigation:
            await self._page.click(selector, timeout=timeout_ms)
        response = await navigation.value
        return response.status if response is not None else None

    async def focus(self, selector: str) -> None:
        await self._page.focus(selector)

    async def type(self, selector: str, text: str, *, delay_ms: int) -> None:
        await self._page.type(selector, text, delay=delay_ms)

    async def screenshot(
        self,
        *,
        full_page: bool,
        image_format: str,
        quality: int | None = None,
    ) -> bytes:
        options = _screenshot_options(image_format, quality)
        return await self._page.screenshot(full_page=full_page, **options)

    async def element_screenshot(
        self,
        selector: str,
        *,
        image_format: str,
        quality: int | None = None,
    ) -> bytes:
        handle = await self._page.query_selector(selector)
        if handle is None:
            raise LookupError(f"Element not found: {selector}")
        try:
            return await handle.screenshot(**_screenshot_options(image_format, quality))
        finally:
            await handle.dispose()

    def set_default_timeout(self, timeout_ms: int) -> None:
        self._page.set_default_timeout(timeout_ms)
        self._page.set_default_navigation_timeout(timeout_ms)

    async def close(self) -> None:
        try:
            await self._page.close()
        finally:
            await self._context.close()


def _screenshot_options(image_format: str, quality: int | None) -> dict[str, Any]:
    image_type = "jpeg" if image_format in ("jpeg", "jpg") else "png"
    options: dict[str, Any] = {"type": image_type}
    if image_type == "jpeg" and quality is not None:
        options["quality"] = quality
    return options


class PlaywrightBrowser:
    """BrowserHandle wrapping a launched Chromium instance."""

    def __init__(self, playwright: Playwright, browser: Browser, config: BrowserConfig) -> None:
        self._playwright = playwright
        self._browser = browser
        self._config = config
        self._log = logger.bind(component="playwright_browser")

    async def new_page(self) -> PlaywrightPage:
        context = await self._browser.new_context(
            user_agent=self._config.user_agent,
            viewport={
                "width": self._config.viewport.width,
                "height": self._config.viewport.height,
            },
            ignore_https_errors=self._config.ignore_https_errors,
        )
        try:
            page = await context.new_page()
        except Exception:
            await context.close()
            raise
        return PlaywrightPage(page, context)

    def on_disconnected(self, listener: DisconnectListener) -> None:
        self._browser.on("disconnected", lambda _browser: listener())

    async def close(self) -> None:
        try:
            if self._browser.is_connected():
                await self._browser.close()
        finally:
            await self._playwright.stop()
            self._log.info("Browser closed")


class PlaywrightBackend:
    """BrowserBackend that launches Chromium through Playwright."""

    async def launch(self, config: BrowserConfig) -> PlaywrightBrowser:
        log = logger.bind(component="playwright_backend")
        log.info("Launching browser", headless=config.headless)

        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=config.headless,
                args=list(config.launch_args),
                executable_path=config.executable_path,
                timeout=config.timeout_ms,
            )
        except Exception as e:
            await playwright.stop()
            raise BackendInitFailed(
                f"Browser initialization failed: {e}",
                details={"headless": config.headless},
            ) from e

        log.info("Browser launched", version=browser.version)
        return PlaywrightBrowser(playwright, browser, config)
