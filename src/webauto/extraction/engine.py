"""
Resilient content extraction.

Drives a resolution plan through a small state machine:

    PROBING -> SUCCESS | RETRYING | EXHAUST_SELECTOR
    EXHAUST_SELECTOR -> PROBING (next selector) | ALL_EXHAUSTED
    ALL_EXHAUSTED -> FALLBACK_SYNTHESIS -> DONE

Transient failures are recorded in the attempt log and never surface on
their own; the caller sees a result or one ExtractionFailed.
"""

from __future__ import annotations

import asyncio
import html
import json
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from webauto.backend.base import bounded
from webauto.errors import AutomationError, ExtractionFailed
from webauto.extraction.diagnostics import enhance_error

if TYPE_CHECKING:
    from webauto.backend.base import PageHandle
    from webauto.config import ExtractionConfig
    from webauto.extraction.selectors import ResolutionPlan, SelectorResolver
    from webauto.extraction.validation import ContentValidator
    from webauto.pool.session_pool import Session

logger = structlog.get_logger(__name__)

PREVIEW_LENGTH = 100

COMPUTED_STYLE_PROPERTIES: tuple[str, ...] = (
    "display",
    "visibility",
    "opacity",
    "color",
    "backgroundColor",
    "fontSize",
    "fontWeight",
    "width",
    "height",
)

_EXTRACT_TEXT = "el => (el.textContent || '').trim()"
_EXTRACT_HTML = "el => el.innerHTML"
_EXTRACT_ATTRIBUTES = """el => {
    const attrs = {};
    for (const attr of el.attributes) {
        attrs[attr.name] = attr.value;
    }
    return attrs;
}"""
_EXTRACT_COMPUTED = """(el, props) => {
    const style = window.getComputedStyle(el);
    const result = {};
    for (const prop of props) {
        result[prop] = style[prop];
    }
    return result;
}"""
_TEXT_LENGTH_PROBE = """() => {
    const text = document.body ? (document.body.innerText || '') : '';
    return text.trim().length;
}"""


class ContentType(StrEnum):
    """What to read from the matched element."""

    TEXT = "text"
    HTML = "html"
    ATTRIBUTE = "attribute"
    COMPUTED = "computed"


class ExtractionMethod(StrEnum):
    """How the returned content was obtained."""

    DIRECT = "direct"
    FALLBACK = "fallback"


class Phase(StrEnum):
    """States of one extraction call."""

    PROBING = "probing"
    SUCCESS = "success"
    RETRYING = "retrying"
    EXHAUST_SELECTOR = "exhaust_selector"
    ALL_EXHAUSTED = "all_exhausted"
    FALLBACK_SYNTHESIS = "fallback_synthesis"
    DONE = "done"


@dataclass(frozen=True)
class ExtractionRequest:
    """
    Parameters of one extraction call.

    Unset numeric options and wait_for_content fall back to the engine
    configuration; timeout and retry caps are clamped to its limits.
    """

    selector: str
    content_type: ContentType = ContentType.TEXT
    timeout_ms: int | None = None
    wait_for_content: bool | None = None
    retry_attempts: int | None = None
    min_length: int | None = None
    fallback_selectors: tuple[str, ...] = ()


@dataclass(frozen=True)
class AttemptRecord:
    """One probe of one selector."""

    selector: str
    attempt: int
    error: str | None = None
    preview: str | None = None

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {"selector": self.selector, "attempt": self.attempt}
        if self.error is not None:
            record["error"] = self.error
        if self.preview is not None:
            record["preview"] = self.preview
        return record


@dataclass
class ExtractionResult:
    """Outcome of a successful extraction call."""

    content: str
    selector: str
    content_type: ContentType
    extraction_method: ExtractionMethod
    retry_count: int
    attempts: list[AttemptRecord] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "selector": self.selector,
            "type": self.content_type.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": {
                "length": len(self.content),
                "isEmpty": not self.content.strip(),
                "extractionMethod": self.extraction_method.value,
                "retryCount": self.retry_count,
            },
            "attempts": [a.to_dict() for a in self.attempts],
        }


@dataclass
class _Cursor:
    """Position of an extraction call within its resolution plan."""

    plan: ResolutionPlan
    max_attempts: int
    index: int = 0
    attempt: int = 1
    failures: int = 0
    phase: Phase = Phase.PROBING
    content: str = ""
    last_error: str | None = None
    attempts: list[AttemptRecord] = field(default_factory=list)
    trace: list[Phase] = field(default_factory=lambda: [Phase.PROBING])

    @property
    def selector(self) -> str:
        return self.plan.selectors[self.index]

    def move(self, phase: Phase) -> None:
        self.phase = phase
        self.trace.append(phase)


@dataclass(frozen=True)
class _Budget:
    timeout_ms: int
    max_attempts: int
    wait_for_content: bool


class ExtractionEngine:
    """
    Extracts content from a session page with retries and fallbacks.

    Usage:
        engine = ExtractionEngine(SelectorResolver(), ContentValidator(), config)
        result = await engine.extract(session, ExtractionRequest(".comments"))
    """

    def __init__(
        self,
        resolver: SelectorResolver,
        validator: ContentValidator,
        config: ExtractionConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._resolver = resolver
        self._validator = validator
        self._config = config
        self._sleep = sleep
        self._log = logger.bind(component="extraction_engine")

    async def extract(self, session: Session, request: ExtractionRequest) -> ExtractionResult:
        """
        Run one extraction call against a session.

        Raises:
            InvalidSelector: If the primary selector is rejected; no backend
                call is made
            ExtractionFailed: If every selector failed and the page metadata
                could not be read either
        """
        content_type = ContentType(request.content_type)
        try:
            plan = self._resolver.build_plan(request.selector, request.fallback_selectors)
        except AutomationError as e:
            raise enhance_error(e, request.selector, content_type.value) from None

        budget = self._budget(request)
        cursor = _Cursor(plan=plan, max_attempts=budget.max_attempts)
        self._log.debug(
            "Starting extraction",
            selector=plan.primary,
            type=content_type.value,
            plan_size=len(plan),
            max_attempts=budget.max_attempts,
        )

        while True:
            if cursor.phase is Phase.PROBING:
                await self._probe(session.page, cursor, request, content_type, budget)
            elif cursor.phase is Phase.RETRYING:
                await self._sleep(self._config.backoff_base_ms * cursor.attempt / 1000)
                cursor.attempt += 1
                cursor.move(Phase.PROBING)
            elif cursor.phase is Phase.EXHAUST_SELECTOR:
                cursor.index += 1
                cursor.attempt = 1
                cursor.failures = 0
                if cursor.index < len(plan):
                    cursor.move(Phase.PROBING)
                else:
                    cursor.move(Phase.ALL_EXHAUSTED)
            elif cursor.phase is Phase.SUCCESS:
                cursor.move(Phase.DONE)
                return self._completed(cursor, self._direct_result(cursor, content_type))
            elif cursor.phase is Phase.ALL_EXHAUSTED:
                self._log.warning(
                    "All selectors exhausted, synthesizing fallback content",
                    selector=plan.primary,
                    attempts=len(cursor.attempts),
                    last_error=cursor.last_error,
                )
                cursor.move(Phase.FALLBACK_SYNTHESIS)
            elif cursor.phase is Phase.FALLBACK_SYNTHESIS:
                result = await self._synthesize(session.page, cursor, content_type, budget)
                cursor.move(Phase.DONE)
                return self._completed(cursor, result)

    def _completed(self, cursor: _Cursor, result: ExtractionResult) -> ExtractionResult:
        self._log.info(
            "Content extracted",
            selector=result.selector,
            method=result.extraction_method.value,
            retry_count=result.retry_count,
            length=len(result.content),
            phases=[p.value for p in cursor.trace],
        )
        return result

    def _budget(self, request: ExtractionRequest) -> _Budget:
        config = self._config
        timeout_ms = request.timeout_ms
        if timeout_ms is None:
            timeout_ms = config.default_timeout_ms
        attempts = request.retry_attempts
        if attempts is None:
            attempts = config.retry_attempts
        wait = request.wait_for_content
        if wait is None:
            wait = config.wait_for_content
        return _Budget(
            timeout_ms=max(1, min(timeout_ms, config.max_timeout_ms)),
            max_attempts=max(1, min(attempts, config.max_retry_attempts)),
            wait_for_content=wait,
        )

    async def _probe(
        self,
        page: PageHandle,
        cursor: _Cursor,
        request: ExtractionRequest,
        content_type: ContentType,
        budget: _Budget,
    ) -> None:
        selector = cursor.selector
        try:
            if cursor.attempt == 1 and budget.wait_for_content:
                await self._wait_for_dynamic_content(page, selector, budget.timeout_ms)
            content = await bounded(
                self._read(page, selector, content_type),
                budget.timeout_ms,
                "extraction",
            )
        except Exception as e:
            self._record_failure(cursor, str(e) or type(e).__name__)
            return

        if not self._validator.is_valid_content(content, request.min_length):
            self._record_failure(
                cursor,
                f"Content did not pass validation ({len(content.strip())} characters)",
                preview=content[:PREVIEW_LENGTH],
            )
            return

        cursor.content = content
        cursor.attempts.append(
            AttemptRecord(
                selector=selector,
                attempt=cursor.attempt,
                preview=content[:PREVIEW_LENGTH],
            )
        )
        cursor.move(Phase.SUCCESS)

    def _record_failure(self, cursor: _Cursor, error: str, preview: str | None = None) -> None:
        cursor.failures += 1
        cursor.last_error = error
        cursor.attempts.append(
            AttemptRecord(
                selector=cursor.selector,
                attempt=cursor.attempt,
                error=error,
                preview=preview,
            )
        )
        self._log.debug(
            "Extraction attempt failed",
            selector=cursor.selector,
            attempt=cursor.attempt,
            error=error,
        )
        if cursor.attempt < cursor.max_attempts:
            cursor.move(Phase.RETRYING)
        else:
            cursor.move(Phase.EXHAUST_SELECTOR)

    async def _wait_for_dynamic_content(
        self, page: PageHandle, selector: str, timeout_ms: int
    ) -> None:
        wait_ms = min(timeout_ms, self._config.dynamic_wait_cap_ms)
        await bounded(
            page.wait_for_selector(selector, timeout_ms=wait_ms),
            wait_ms,
            "wait_for_selector",
        )

        if self._config.settle_delay_ms:
            await self._sleep(self._config.settle_delay_ms / 1000)

        await self._wait_for_loading_indicators(page)

    async def _wait_for_loading_indicators(self, page: PageHandle) -> None:
        """Best-effort wait for spinners and skeletons to disappear."""
        indicators: Sequence[str] = self._config.loading_indicators
        if not indicators:
            return

        timeout_ms = self._config.loading_indicator_timeout_ms
        outcomes = await asyncio.gather(
            *(
                bounded(
                    page.wait_for_selector(indicator, timeout_ms=timeout_ms, state="hidden"),
                    timeout_ms,
                    "loading_indicator",
                )
                for indicator in indicators
            ),
            return_exceptions=True,
        )
        pending = [i for i, o in zip(indicators, outcomes, strict=True) if isinstance(o, Exception)]
        if pending:
            self._log.debug("Loading indicators still present", indicators=pending)

    async def _read(self, page: PageHandle, selector: str, content_type: ContentType) -> str:
        if content_type is ContentType.HTML:
            return await page.eval_on_selector(selector, _EXTRACT_HTML) or ""
        if content_type is ContentType.ATTRIBUTE:
            attrs = await page.eval_on_selector(selector, _EXTRACT_ATTRIBUTES)
            return json.dumps(attrs or {}, ensure_ascii=False)
        if content_type is ContentType.COMPUTED:
            styles = await page.eval_on_selector(
                selector, _EXTRACT_COMPUTED, list(COMPUTED_STYLE_PROPERTIES)
            )
            return json.dumps(styles or {}, ensure_ascii=False)
        return await page.eval_on_selector(selector, _EXTRACT_TEXT) or ""

    def _direct_result(self, cursor: _Cursor, content_type: ContentType) -> ExtractionResult:
        method = ExtractionMethod.DIRECT if cursor.index == 0 else ExtractionMethod.FALLBACK
        return ExtractionResult(
            content=cursor.content,
            selector=cursor.selector,
            content_type=content_type,
            extraction_method=method,
            retry_count=cursor.failures,
            attempts=cursor.attempts,
        )

    async def _synthesize(
        self,
        page: PageHandle,
        cursor: _Cursor,
        content_type: ContentType,
        budget: _Budget,
    ) -> ExtractionResult:
        primary = cursor.plan.primary
        try:
            title = await bounded(page.title(), budget.timeout_ms, "page_title")
            text_length = await bounded(
                page.evaluate(_TEXT_LENGTH_PROBE), budget.timeout_ms, "text_length_probe"
            )
            url = page.url
        except Exception as e:
            self._log.error(
                "Fallback synthesis failed",
                selector=primary,
                last_error=cursor.last_error,
                error=str(e),
            )
            error = ExtractionFailed(
                f"Content extraction failed: {cursor.last_error}; "
                f"fallback synthesis failed: {e}",
                details={
                    "last_error": cursor.last_error,
                    "synthesis_error": str(e),
                    "attempts": len(cursor.attempts),
                },
            )
            raise enhance_error(error, primary, content_type.value) from e

        content = _format_fallback(
            title=title or "Untitled page",
            url=url,
            text_length=int(text_length or 0),
            selector=primary,
            attempts=len(cursor.attempts),
            as_html=content_type is ContentType.HTML,
        )
        return ExtractionResult(
            content=content,
            selector=primary,
            content_type=content_type,
            extraction_method=ExtractionMethod.FALLBACK,
            retry_count=cursor.max_attempts,
            attempts=cursor.attempts,
        )


def _format_fallback(
    *,
    title: str,
    url: str,
    text_length: int,
    selector: str,
    attempts: int,
    as_html: bool,
) -> str:
    has_content = "yes" if text_length > 0 else "no"
    note = f'No content matched "{selector}" after {attempts} attempts.'
    if not as_html:
        return "\n".join(
            (
                f"Page title: {title}",
                f"URL: {url}",
                f"Has content: {has_content} ({text_length} characters of text)",
                note,
            )
        )

    t, u = html.escape(title), html.escape(url)
    return (
        "<!DOCTYPE html>"
        f"<html><head><title>{t}</title></head><body>"
        f"<h1>{t}</h1>"
        f'<p>URL: <a href="{u}">{u}</a></p>'
        f"<p>Has content: {has_content} ({text_length} characters of text)</p>"
        f"<p>{html.escape(note)}</p>"
        "</body></html>"
    )
