"""
Session pool module.

Provides:
- SessionPool for per-client page sessions over one shared backend
- Session, SessionStatus and PoolStatus records
"""

from webauto.pool.session_pool import (
    PoolStatus,
    Session,
    SessionPool,
    SessionStatus,
)

__all__ = [
    "PoolStatus",
    "Session",
    "SessionPool",
    "SessionStatus",
]
