"""
Content extraction pipeline.

Provides:
- SelectorResolver: normalization, safety screen and fallback plans
- ContentValidator: meaningful-content heuristics
- ExtractionEngine: retry/backoff state machine with fallback synthesis
- ErrorDiagnostics: suggestions attached to surfaced errors
"""

from webauto.extraction.diagnostics import ErrorDiagnostics, enhance_error, suggest
from webauto.extraction.engine import (
    AttemptRecord,
    ContentType,
    ExtractionEngine,
    ExtractionMethod,
    ExtractionRequest,
    ExtractionResult,
    Phase,
)
from webauto.extraction.selectors import FallbackPolicy, ResolutionPlan, SelectorResolver
from webauto.extraction.validation import ContentValidator

__all__ = [
    "AttemptRecord",
    "ContentType",
    "ContentValidator",
    "ErrorDiagnostics",
    "ExtractionEngine",
    "ExtractionMethod",
    "ExtractionRequest",
    "ExtractionResult",
    "FallbackPolicy",
    "Phase",
    "ResolutionPlan",
    "SelectorResolver",
    "enhance_error",
    "suggest",
]
