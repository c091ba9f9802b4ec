"""
Browser backend layer.

Provides:
- Protocols the pool and engine depend on (PageHandle, BrowserHandle, BrowserBackend)
- bounded() for timeout-limited backend calls
- PlaywrightBackend, the Chromium adapter used in production
"""

from webauto.backend.base import (
    BrowserBackend,
    BrowserHandle,
    DisconnectListener,
    PageHandle,
    bounded,
)
from webauto.backend.playwright_backend import (
    PlaywrightBackend,
    PlaywrightBrowser,
    PlaywrightPage,
)

__all__ = [
    "BrowserBackend",
    "BrowserHandle",
    "DisconnectListener",
    "PageHandle",
    "PlaywrightBackend",
    "PlaywrightBrowser",
    "PlaywrightPage",
    "bounded",
]
