"""
Validity scoring for extracted content.

A heuristic filter that rejects empty or boilerplate extractions; it makes no
claim about whether the content is semantically what the caller wanted.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

# Word of 3+ letters, 2+ CJK characters, or a digit run.
DEFAULT_MEANINGFUL_PATTERNS: tuple[str, ...] = (
    r"[^\W\d_]{3,}",
    r"[\u3040-\u30ff\u3400-\u9fff\uac00-\ud7af]{2,}",
    r"\d+",
)


class ContentValidator:
    """Decides whether an extraction result is worth returning."""

    def __init__(self, patterns: Sequence[str] = DEFAULT_MEANINGFUL_PATTERNS) -> None:
        if not patterns:
            raise ValueError("At least one meaningful-content pattern is required")
        self._patterns = tuple(re.compile(p) for p in patterns)

    def is_valid_content(self, content: str | None, min_length: int | None = None) -> bool:
        """
        Check extracted content.

        Structured results must be passed in their serialized form.
        """
        if content is None:
            return False

        trimmed = content.strip()
        if not trimmed:
            return False

        if min_length is not None and len(trimmed) < min_length:
            return False

        return any(p.search(trimmed) for p in self._patterns)
