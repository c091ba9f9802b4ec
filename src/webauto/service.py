"""
Automation service facade.

Wires the session pool, the extraction engine and the action runner into the
single surface used by the HTTP API and the CLI.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any, Self

import structlog

from webauto.actions import (
    ActionRunner,
    ClickResult,
    InputResult,
    NavigationResult,
    ScreenshotResult,
)
from webauto.backend.playwright_backend import PlaywrightBackend
from webauto.config import WebAutoConfig, load_config
from webauto.errors import AutomationError, InvalidSelector
from webauto.extraction.diagnostics import enhance_error
from webauto.extraction.engine import (
    ContentType,
    ExtractionEngine,
    ExtractionRequest,
    ExtractionResult,
)
from webauto.extraction.selectors import FallbackPolicy, SelectorResolver
from webauto.extraction.validation import ContentValidator
from webauto.pool.session_pool import PoolStatus, SessionPool, SessionStatus

if TYPE_CHECKING:
    from webauto.backend.base import BrowserBackend

logger = structlog.get_logger(__name__)


class AutomationService:
    """
    Page automation for concurrent clients.

    Usage:
        async with AutomationService.from_config() as service:
            await service.navigate("client-a", "https://example.com")
            result = await service.extract_content("client-a", "h1")
            print(result.to_dict())
    """

    def __init__(
        self,
        config: WebAutoConfig | None = None,
        backend: BrowserBackend | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the service.

        Args:
            config: Complete configuration, defaults if omitted
            backend: Browser backend, Playwright Chromium if omitted
            sleep: Coroutine used for extraction backoff and settle delays
        """
        self.config = config or WebAutoConfig()
        extraction = self.config.extraction

        self.pool = SessionPool(
            backend or PlaywrightBackend(),
            self.config.browser,
            self.config.pool,
        )
        self.resolver = SelectorResolver(
            FallbackPolicy(
                keyword_alternatives=extraction.fallback_policy.keyword_alternatives,
                generic_ladder=extraction.fallback_policy.generic_ladder,
            ),
            max_length=extraction.max_selector_length,
        )
        self.validator = ContentValidator(extraction.meaningful_patterns)
        self.engine = ExtractionEngine(self.resolver, self.validator, extraction, sleep=sleep)
        self.actions = ActionRunner(self.pool, self.config.browser, self.config.actions)

        self._log = logger.bind(component="automation_service")

    @classmethod
    def from_config(
        cls,
        config_file: Path | str | None = None,
        backend: BrowserBackend | None = None,
    ) -> Self:
        """Create a service from the YAML file and WEBAUTO_ environment."""
        return cls(load_config(config_file), backend=backend)

    async def navigate(
        self,
        client_id: str,
        url: str,
        wait_for_load: bool = True,
        wait_for_selector: str | None = None,
    ) -> NavigationResult:
        return await self.actions.navigate(
            client_id,
            url,
            wait_for_load=wait_for_load,
            wait_for_selector=wait_for_selector,
        )

    async def extract_content(
        self,
        client_id: str,
        selector: str = "body",
        content_type: ContentType | str = ContentType.TEXT,
        *,
        timeout_ms: int | None = None,
        wait_for_content: bool | None = None,
        retry_attempts: int | None = None,
        min_length: int | None = None,
        fallback_selectors: Sequence[str] = (),
    ) -> ExtractionResult:
        """
        Extract content from the client's current page.

        Falls back to a page summary when no selector yields valid content.

        Raises:
            InvalidSelector: If the selector fails the safety screen
            CapacityExceeded: If client_id is new and the pool is full
            ExtractionFailed: If the page cannot be read at all
        """
        request = ExtractionRequest(
            selector=selector,
            content_type=ContentType(content_type),
            timeout_ms=timeout_ms,
            wait_for_content=wait_for_content,
            retry_attempts=retry_attempts,
            min_length=min_length,
            fallback_selectors=tuple(fallback_selectors),
        )
        # Screen the selector before touching the pool.
        try:
            self.resolver.validate(self.resolver.normalize(selector))
        except InvalidSelector as e:
            raise enhance_error(e, selector, request.content_type.value) from None

        try:
            session = await self.pool.acquire(client_id)
        except AutomationError as e:
            raise enhance_error(e, selector, request.content_type.value) from None
        self.pool.touch(client_id)
        try:
            return await self.engine.extract(session, request)
        finally:
            self.pool.touch(client_id)

    async def click_element(
        self,
        client_id: str,
        selector: str,
        wait_for_navigation: bool = False,
    ) -> ClickResult:
        return await self.actions.click(
            client_id, selector, wait_for_navigation=wait_for_navigation
        )

    async def input_text(
        self,
        client_id: str,
        selector: str,
        text: str,
        clear: bool = True,
        delay_ms: int | None = None,
    ) -> InputResult:
        return await self.actions.type_text(
            client_id, selector, text, clear=clear, delay_ms=delay_ms
        )

    async def take_screenshot(
        self,
        client_id: str,
        full_page: bool = True,
        element: str | None = None,
        image_format: str = "png",
        quality: int | None = None,
    ) -> ScreenshotResult:
        return await self.actions.screenshot(
            client_id,
            full_page=full_page,
            element=element,
            image_format=image_format,
            quality=quality,
        )

    def get_status(self, client_id: str) -> SessionStatus | None:
        return self.pool.status(client_id)

    def get_all_statuses(self) -> PoolStatus:
        return self.pool.all_statuses()

    async def close_client(self, client_id: str) -> bool:
        """Release a client's session; False if it had none."""
        return await self.pool.release(client_id)

    async def shutdown(self) -> None:
        self._log.info("Shutting down automation service")
        await self.pool.shutdown()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.shutdown()
