"""
webauto: pooled browser sessions with resilient content extraction.

Serves page automation (navigate, extract, click, type, screenshot) to many
concurrent clients over one shared browser, with per-client sessions and an
extraction pipeline that retries, falls back and degrades gracefully.
"""

__version__ = "1.0.0"

from webauto.actions import (
    ActionRunner,
    ClickResult,
    InputResult,
    NavigationResult,
    ScreenshotResult,
)
from webauto.config import (
    ActionConfig,
    BrowserConfig,
    ExtractionConfig,
    PoolConfig,
    ServerConfig,
    WebAutoConfig,
    WebAutoSettings,
    load_config,
)
from webauto.errors import (
    AutomationError,
    BackendInitFailed,
    CapacityExceeded,
    ClickFailed,
    ElementNotFound,
    ExtractionFailed,
    InputFailed,
    InvalidSelector,
    NavigationFailed,
    OperationTimeout,
    ScreenshotFailed,
    SessionCreationFailed,
)
from webauto.extraction import (
    ContentType,
    ContentValidator,
    ExtractionEngine,
    ExtractionMethod,
    ExtractionRequest,
    ExtractionResult,
    FallbackPolicy,
    ResolutionPlan,
    SelectorResolver,
)
from webauto.pool import PoolStatus, Session, SessionPool, SessionStatus
from webauto.service import AutomationService

__all__ = [
    "ActionConfig",
    "ActionRunner",
    "AutomationError",
    "AutomationService",
    "BackendInitFailed",
    "BrowserConfig",
    "CapacityExceeded",
    "ClickFailed",
    "ClickResult",
    "ContentType",
    "ContentValidator",
    "ElementNotFound",
    "ExtractionConfig",
    "ExtractionEngine",
    "ExtractionFailed",
    "ExtractionMethod",
    "ExtractionRequest",
    "ExtractionResult",
    "FallbackPolicy",
    "InputFailed",
    "InputResult",
    "InvalidSelector",
    "NavigationFailed",
    "NavigationResult",
    "OperationTimeout",
    "PoolConfig",
    "PoolStatus",
    "ResolutionPlan",
    "ScreenshotFailed",
    "ScreenshotResult",
    "SelectorResolver",
    "ServerConfig",
    "Session",
    "SessionCreationFailed",
    "SessionPool",
    "SessionStatus",
    "WebAutoConfig",
    "WebAutoSettings",
    "load_config",
]
