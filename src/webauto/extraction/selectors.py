"""
Selector normalization, safety screening and fallback generation.

Deterministic string heuristics only: matching is always delegated to the
browser, this module just decides which selectors to try and in what order.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from urllib.parse import unquote

import structlog

from webauto.errors import InvalidSelector

logger = structlog.get_logger(__name__)

MAX_SELECTOR_LENGTH = 1000

_PERCENT_ESCAPE = re.compile(r"%[0-9A-Fa-f]{2}")
_WHITESPACE = re.compile(r"\s+")
_COMBINATOR = re.compile(r"\s*([>+~])\s*")
_COMMA = re.compile(r"\s*,\s*")
_QUOTED = re.compile(r"""("(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')""")

_UNSAFE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"javascript\s*:", re.IGNORECASE), "javascript: URL"),
    (re.compile(r"<\s*script", re.IGNORECASE), "inline script tag"),
    (re.compile(r"(?<![\w-])on[a-z]+\s*=", re.IGNORECASE), "event handler attribute"),
)

DEFAULT_KEYWORD_ALTERNATIVES: dict[str, tuple[str, ...]] = {
    "comment": (
        '[class*="comment"]',
        '[id*="comment"]',
        ".comments",
        ".comment-list",
        '[data-type="comment"]',
    ),
    "video": (
        '[class*="video"]',
        '[id*="video"]',
        ".video-info",
        ".video-title",
        "video",
    ),
}

DEFAULT_GENERIC_LADDER: tuple[str, ...] = ("main", "article", "section", "div", "body")


@dataclass(frozen=True)
class FallbackPolicy:
    """
    Heuristics used to expand a selector into fallback candidates.

    keyword_alternatives maps a substring of the selector to extra selectors
    worth trying when it appears; generic_ladder is always appended last.
    """

    keyword_alternatives: Mapping[str, Sequence[str]] = field(
        default_factory=lambda: dict(DEFAULT_KEYWORD_ALTERNATIVES)
    )
    generic_ladder: Sequence[str] = DEFAULT_GENERIC_LADDER


@dataclass(frozen=True)
class ResolutionPlan:
    """Ordered, duplicate-free selectors to try for one extraction."""

    primary: str
    fallbacks: tuple[str, ...]

    @property
    def selectors(self) -> tuple[str, ...]:
        return (self.primary, *self.fallbacks)

    def __len__(self) -> int:
        return 1 + len(self.fallbacks)


def _outside_quotes(text: str, transform: Callable[[str], str]) -> str:
    """Apply transform to the parts of text that are not quoted strings."""
    parts = _QUOTED.split(text)
    # split() with one capture group alternates unquoted/quoted chunks
    return "".join(
        part if i % 2 else transform(part) for i, part in enumerate(parts)
    )


def _decode(raw: str) -> str:
    """Percent-decode until stable so normalization stays idempotent."""
    current = raw
    while _PERCENT_ESCAPE.search(current):
        try:
            decoded = unquote(current, errors="strict")
        except UnicodeDecodeError as e:
            logger.warning(
                "Selector percent-decoding failed, using raw text",
                selector=raw[:100],
                error=str(e),
            )
            return current
        if decoded == current:
            break
        current = decoded
    return current


def _components(selector: str) -> list[str]:
    """Split a selector on descendant spaces, keeping quoted values whole."""
    components = [""]
    for i, part in enumerate(_QUOTED.split(selector)):
        if i % 2:
            components[-1] += part
            continue
        head, *rest = part.split(" ")
        components[-1] += head
        components.extend(rest)
    return [c.strip(",") for c in components if c.strip(",")]


def _canonicalize(chunk: str) -> str:
    chunk = _WHITESPACE.sub(" ", chunk)
    chunk = _COMBINATOR.sub(r"\1", chunk)
    return _COMMA.sub(", ", chunk)


def _dedupe(items: Iterable[str], exclude: str) -> list[str]:
    seen = {exclude}
    ordered: list[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


class SelectorResolver:
    """
    Turns raw selector text into a resolution plan.

    Usage:
        resolver = SelectorResolver()
        plan = resolver.build_plan("%2Ecomment-list  >  li", ["#replies"])
        for selector in plan.selectors:
            ...
    """

    def __init__(
        self,
        policy: FallbackPolicy | None = None,
        max_length: int = MAX_SELECTOR_LENGTH,
    ) -> None:
        self._policy = policy or FallbackPolicy()
        self._max_length = max_length
        self._log = logger.bind(component="selector_resolver")

    @property
    def policy(self) -> FallbackPolicy:
        return self._policy

    def normalize(self, raw: str) -> str:
        """
        Canonicalize selector text.

        Decodes percent-encoding, collapses whitespace, removes spaces around
        the >, + and ~ combinators and renders lists as "a, b". Quoted
        attribute values are left as written.
        """
        text = _decode(raw).strip()
        return _outside_quotes(text, _canonicalize).strip()

    def validate(self, selector: str) -> str:
        """
        Screen a selector before it reaches the browser.

        This is a safety screen, not a CSS parser.

        Raises:
            InvalidSelector: If the selector is empty, too long or looks like
                a script injection attempt
        """
        if not selector or not selector.strip():
            raise InvalidSelector("Selector must not be empty", details={"selector": selector})

        if len(selector) > self._max_length:
            raise InvalidSelector(
                f"Selector is too long ({len(selector)} > {self._max_length} characters)",
                details={"selector": selector[:100], "length": len(selector)},
            )

        for pattern, label in _UNSAFE_PATTERNS:
            if pattern.search(selector):
                raise InvalidSelector(
                    f"Selector rejected: contains {label}",
                    details={"selector": selector[:100]},
                )

        return selector

    def generate_fallbacks(self, selector: str) -> list[str]:
        """Expand a selector into ordered fallback candidates."""
        candidates: list[str] = []

        components = _components(selector)
        if len(components) > 1:
            candidates.append(components[-1])

        lowered = selector.lower()
        for keyword, alternatives in self._policy.keyword_alternatives.items():
            if keyword.lower() in lowered:
                candidates.extend(alternatives)

        candidates.extend(self._policy.generic_ladder)
        return _dedupe(candidates, exclude=selector)

    def build_plan(
        self,
        raw: str,
        fallback_selectors: Sequence[str] = (),
    ) -> ResolutionPlan:
        """
        Build the resolution plan for an extraction.

        Order: normalized primary, caller fallbacks, generated fallbacks.
        Caller fallbacks that fail the safety screen are skipped.

        Raises:
            InvalidSelector: If the primary selector is rejected
        """
        primary = self.validate(self.normalize(raw))

        caller: list[str] = []
        for candidate in fallback_selectors:
            normalized = self.normalize(candidate)
            try:
                caller.append(self.validate(normalized))
            except InvalidSelector as e:
                self._log.warning(
                    "Skipping invalid fallback selector",
                    selector=candidate[:100],
                    reason=e.message,
                )

        fallbacks = _dedupe(
            [*caller, *self.generate_fallbacks(primary)],
            exclude=primary,
        )

        self._log.debug(
            "Built resolution plan",
            primary=primary,
            fallback_count=len(fallbacks),
        )
        return ResolutionPlan(primary=primary, fallbacks=tuple(fallbacks))
