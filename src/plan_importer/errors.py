"""Error taxonomy for the import pipeline.

Per-file errors (unsupported MIME types, extraction failures) are collected
into the import result and never abort a batch on their own. Run-fatal errors
(validation, credits, conversion, persistence) move the orchestrator into the
``error`` state.
"""

import math
from enum import StrEnum


class PlanImportError(Exception):
    """Base class for all import pipeline errors."""


class ValidationError(PlanImportError):
    """The batch shape is invalid (too many files, oversized, missing type)."""


class UnsupportedMimeTypeError(ValidationError):
    """No routing rule matched the declared MIME type and no fallback exists."""

    def __init__(self, mime_type: str) -> None:
        super().__init__(f"Unsupported MIME type: {mime_type or '<empty>'}")
        self.mime_type = mime_type


class ExtractionErrorKind(StrEnum):
    """Failure categories reported by the extraction boundary."""

    PROVIDER_FAILURE = "provider_failure"
    EMPTY_RESPONSE = "empty_response"
    SCHEMA_MISMATCH = "schema_mismatch"


class ExtractionError(PlanImportError):
    """AI extraction failed for a single file."""

    def __init__(self, kind: ExtractionErrorKind, message: str) -> None:
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind


class MatchingError(PlanImportError):
    """An entity reference could not be resolved or given a placeholder."""


class ConversionError(PlanImportError):
    """The resolved draft cannot be turned into a final plan."""


class PersistenceError(PlanImportError):
    """The final plan could not be committed."""


class InsufficientCreditsError(PlanImportError):
    """The user cannot afford the import."""

    def __init__(self, required: int) -> None:
        super().__init__(f"Insufficient credits: {required} required")
        self.required = required


class RateLimitExceededError(ValidationError):
    """The user started too many imports within the rate window."""

    def __init__(self, retry_after_seconds: float) -> None:
        minutes = max(1, math.ceil(retry_after_seconds / 60))
        super().__init__(f"Import limit reached, retry in {minutes} minute(s)")
        self.retry_after_seconds = retry_after_seconds
