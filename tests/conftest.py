"""Pytest fixtures for webauto tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from webauto.config import (
    ActionConfig,
    BrowserConfig,
    ExtractionConfig,
    PoolConfig,
    WebAutoConfig,
)
from webauto.pool.session_pool import SessionPool

PAGE_URL = "https://x.test/"
PAGE_TITLE = "Example"
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image-data"


class ElementMissing(Exception):
    """Raised by fake pages for selectors that match nothing."""


def make_page(
    elements: dict[str, Any] | None = None,
    url: str = PAGE_URL,
    title: str = PAGE_TITLE,
    text_length: int = 42,
) -> MagicMock:
    """
    Create a fake page handle.

    elements maps selectors to what eval_on_selector returns for them; any
    other selector behaves like a missing element.
    """
    page = MagicMock()
    page.elements = dict(elements or {})
    page.url = url

    async def eval_on_selector(selector: str, script: str, arg: Any = None) -> Any:
        if selector not in page.elements:
            raise ElementMissing(f'failed to find element matching selector "{selector}"')
        return page.elements[selector]

    async def wait_for_selector(selector: str, *, timeout_ms: int, state: str = "visible") -> None:
        if state == "visible" and selector not in page.elements:
            raise ElementMissing(
                f'Timeout {timeout_ms}ms exceeded waiting for selector "{selector}"'
            )

    async def evaluate(script: str, arg: Any = None) -> Any:
        if "readyState" in script:
            return "complete"
        if "innerWidth" in script:
            return {"width": 1920, "height": 1080}
        if "innerText" in script:
            return text_length
        return None

    async def has_element(selector: str) -> bool:
        return selector in page.elements

    page.eval_on_selector = AsyncMock(side_effect=eval_on_selector)
    page.wait_for_selector = AsyncMock(side_effect=wait_for_selector)
    page.evaluate = AsyncMock(side_effect=evaluate)
    page.has_element = AsyncMock(side_effect=has_element)
    page.goto = AsyncMock(return_value=200)
    page.title = AsyncMock(return_value=title)
    page.click = AsyncMock(return_value=None)
    page.click_and_wait_for_navigation = AsyncMock(return_value=200)
    page.focus = AsyncMock(return_value=None)
    page.type = AsyncMock(return_value=None)
    page.screenshot = AsyncMock(return_value=PNG_BYTES)
    page.element_screenshot = AsyncMock(return_value=PNG_BYTES)
    page.set_default_timeout = MagicMock()
    page.close = AsyncMock(return_value=None)
    return page


def make_browser(page_factory: Any = make_page) -> MagicMock:
    """Create a fake browser handle whose disconnect() fires the registered listeners."""
    browser = MagicMock()
    browser.listeners = []
    browser.pages = []

    async def new_page() -> MagicMock:
        page = page_factory()
        browser.pages.append(page)
        return page

    def disconnect() -> None:
        for listener in list(browser.listeners):
            listener()

    browser.new_page = AsyncMock(side_effect=new_page)
    browser.on_disconnected = MagicMock(side_effect=browser.listeners.append)
    browser.close = AsyncMock(return_value=None)
    browser.disconnect = disconnect
    return browser


def make_backend() -> MagicMock:
    """Create a fake backend that launches a fresh fake browser every time."""
    backend = MagicMock()
    backend.browsers = []
    backend.page_factory = make_page

    async def launch(config: BrowserConfig) -> MagicMock:
        browser = make_browser(lambda: backend.page_factory())
        backend.browsers.append(browser)
        return browser

    backend.launch = AsyncMock(side_effect=launch)
    return backend


@pytest.fixture
def backend() -> MagicMock:
    """Fake browser backend."""
    return make_backend()


@pytest.fixture
def browser_config() -> BrowserConfig:
    """Browser configuration with a short timeout."""
    return BrowserConfig(timeout_ms=5000)


@pytest.fixture
def pool_config() -> PoolConfig:
    """Pool configuration with the default capacity of two."""
    return PoolConfig(max_sessions=2)


@pytest.fixture
def pool(backend: MagicMock, browser_config: BrowserConfig, pool_config: PoolConfig) -> SessionPool:
    """Session pool over the fake backend."""
    return SessionPool(backend, browser_config, pool_config)


@pytest.fixture
def extraction_config() -> ExtractionConfig:
    """Extraction configuration with production delays (sleep is mocked)."""
    return ExtractionConfig()


@pytest.fixture
def action_config() -> ActionConfig:
    """Action configuration without the click settle pause."""
    return ActionConfig(click_settle_ms=0)


@pytest.fixture
def sleep() -> AsyncMock:
    """Recording replacement for asyncio.sleep."""
    return AsyncMock(return_value=None)


@pytest.fixture
def webauto_config(action_config: ActionConfig) -> WebAutoConfig:
    """Complete configuration used by service and API tests."""
    return WebAutoConfig(
        browser=BrowserConfig(timeout_ms=5000),
        pool=PoolConfig(max_sessions=2),
        actions=action_config,
    )
