"""
Failure taxonomy for the voice expense pipeline.

Each stage raises its own subclass so callers can tell a speech-to-text outage
from an unusable model reply or a half-written batch. The underlying provider or
database exception is always chained as ``__cause__``. Nothing here is retried.
"""

from __future__ import annotations


class ExpenseServiceError(Exception):
    """Base class for every error the expense pipeline surfaces to its caller."""

    error_code = "expense_service_error"


class ValidationFailed(ExpenseServiceError):
    """Caller-supplied input (e.g. purchased_at) was malformed; raised before any work starts."""

    error_code = "invalid_purchased_at"


class TranscriptionFailed(ExpenseServiceError):
    """The speech-to-text provider failed; no expense was persisted."""

    error_code = "transcription_failed"


class ExtractionFailed(ExpenseServiceError):
    """The extractor call failed or its reply did not match the expected JSON shape."""

    error_code = "extraction_failed"


class NoExpensesFound(ExpenseServiceError):
    """The extractor succeeded but found no purchase in the transcription."""

    error_code = "no_expenses_found"


class PersistenceFailed(ExpenseServiceError):
    """
    Writing the record at ``index`` (0-based, extraction order) failed.

    Records before ``index`` are already durable; they are not rolled back.
    """

    error_code = "persistence_failed"

    def __init__(self, index: int, message: str | None = None) -> None:
        self.index = index
        super().__init__(message or f"Failed to persist expense at index {index}")
