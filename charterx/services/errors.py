"""
Error taxonomy for the charter party pipeline.

Every failure carries the stage that raised it and enough context (which input,
which operation) for the caller to correct the input and retry. Nothing here
retries on its own.
"""
from typing import Any, Dict, List, Optional


class CharterPartyError(Exception):
    """Base class for all pipeline failures"""

    stage = "pipeline"

    def __init__(self, message: str, stage: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if stage:
            self.stage = stage
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "stage": self.stage,
            "detail": self.message,
            "context": self.context,
        }


class ValidationFailure(CharterPartyError):
    """Input rejected at the boundary, before any external call"""

    stage = "validation"

    def __init__(self, message: str, field: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(message, stage=stage, context={"field": field} if field else {})
        self.field = field


class GenerationFailure(CharterPartyError):
    """Upstream text generation unavailable, timed out, or returned unusable output"""

    stage = "generation"

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}", context={"operation": operation})
        self.operation = operation


class MergeFailure(CharterPartyError):
    """Merge produced an empty or unusable document"""

    stage = "merge"

    def __init__(self, message: str, warnings: Optional[List[Any]] = None):
        self.warnings = list(warnings or [])
        super().__init__(message, context={
            "warnings": [w.model_dump() if hasattr(w, "model_dump") else w for w in self.warnings]
        })


class ExtractionFailure(CharterPartyError):
    """File-to-text conversion failed"""

    stage = "extraction"


class UnsupportedMediaType(ExtractionFailure):
    """The declared media type cannot be extracted"""

    def __init__(self, media_type: str):
        super().__init__(f"Unsupported media type: {media_type}", context={"media_type": media_type})
        self.media_type = media_type


class RenderFailure(CharterPartyError):
    """Export to a print-ready artifact failed"""

    stage = "render"


class StaleRevisionError(CharterPartyError):
    """A mutation or analysis targeted a document revision that is no longer current"""

    stage = "revision"

    def __init__(self, expected: int, actual: int, operation: str = "mutation"):
        super().__init__(
            f"{operation} targeted revision {expected} but the document is at revision {actual}",
            context={"expected_revision": expected, "current_revision": actual, "operation": operation},
        )
        self.expected = expected
        self.actual = actual


class SessionNotFound(CharterPartyError):
    """Unknown or evicted session"""

    stage = "session"

    def __init__(self, session_id: str):
        super().__init__(f"Session '{session_id}' not found", context={"session_id": session_id})
        self.session_id = session_id
