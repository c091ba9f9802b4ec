"""
Caller-facing diagnostics for failed operations.

Suggestions are derived from the error text only, so they work the same for
backend errors and for errors raised inside webauto.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from webauto.errors import AutomationError

GENERIC_SUGGESTION = "Check the page state and retry the operation"

# (markers, suggestions) checked in order; every matching rule contributes.
_SUGGESTION_RULES: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (
        ("not found", "no node", "failed to find", "waiting for selector", "no element"),
        (
            "Try a broader selector such as a parent container",
            "Increase the wait time; the content may still be loading",
            "Supply fallback selectors for this page",
        ),
    ),
    (
        ("timeout", "timed out"),
        (
            "Simplify the selector",
            "Increase the timeout",
            "Disable wait_for_content if the element is static",
        ),
    ),
    (
        ("invalid", "syntax", "not a valid selector", "rejected"),
        (
            "Check the selector syntax",
            "Remove script or event handler fragments from the selector",
        ),
    ),
    (
        ("maximum number of clients", "capacity"),
        ("Release unused client sessions before opening new ones",),
    ),
    (
        ("target closed", "disconnected", "has been closed", "session closed"),
        ("Retry the operation; the browser session will be recreated",),
    ),
)


def suggest(error_text: str) -> list[str]:
    """Rank remediation suggestions for an error message."""
    lowered = error_text.lower()
    suggestions: list[str] = []
    for markers, advice in _SUGGESTION_RULES:
        if any(marker in lowered for marker in markers):
            suggestions.extend(a for a in advice if a not in suggestions)
    return suggestions or [GENERIC_SUGGESTION]


@dataclass(frozen=True)
class ErrorDiagnostics:
    """Context attached to every error surfaced by an extraction."""

    selector: str
    content_type: str
    message: str
    suggestions: tuple[str, ...]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "selector": self.selector,
            "type": self.content_type,
            "timestamp": self.timestamp.isoformat(),
            "suggestions": list(self.suggestions),
            "message": self.message,
        }


def enhance_error(error: AutomationError, selector: str, content_type: str) -> AutomationError:
    """Attach diagnostics to an error and return it for re-raising."""
    error.diagnostics = ErrorDiagnostics(
        selector=selector,
        content_type=content_type,
        message=error.message,
        suggestions=tuple(suggest(error.message)),
    )
    return error
