"""
Error taxonomy for webauto.

All errors raised by the session pool, the extraction engine and the action
operations derive from AutomationError so callers can catch a single base.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from webauto.extraction.diagnostics import ErrorDiagnostics


class AutomationError(Exception):
    """Base exception for page automation errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}
        self.diagnostics: ErrorDiagnostics | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for API responses."""
        payload: dict[str, Any] = {
            "error": self.message,
            "type": type(self).__name__,
        }
        details = dict(self.details)
        if self.diagnostics is not None:
            details.update(self.diagnostics.to_dict())
        if details:
            payload["details"] = details
        return payload


class CapacityExceeded(AutomationError):
    """Raised when a new client id is requested while the pool is full."""


class BackendInitFailed(AutomationError):
    """Raised when the browser backend cannot be launched."""


class SessionCreationFailed(AutomationError):
    """Raised when a page session cannot be opened on a live backend."""


class InvalidSelector(AutomationError):
    """Raised when a selector fails the safety screen."""


class OperationTimeout(AutomationError):
    """Raised when a backend call exceeds its timeout budget."""


class NavigationFailed(AutomationError):
    """Raised when page navigation fails."""


class ClickFailed(AutomationError):
    """Raised when clicking an element fails."""


class InputFailed(AutomationError):
    """Raised when typing into an element fails."""


class ScreenshotFailed(AutomationError):
    """Raised when a screenshot cannot be captured."""


class ElementNotFound(AutomationError):
    """Raised when a targeted element does not exist on the page."""


class ExtractionFailed(AutomationError):
    """Raised when every selector and the fallback synthesis failed."""
