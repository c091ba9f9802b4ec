"""
FastAPI gateway for webauto.

Provides the REST API for navigation, extraction, page actions and sessions.
"""

from webauto.api.main import create_app, run_server

__all__ = [
    "create_app",
    "run_server",
]
