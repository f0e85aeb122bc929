"""Error taxonomy shared by ingestion, storage and summary generation.

Store misses and duplicate candidates are ordinary results (``None`` and
``CandidateOutcome.DUPLICATE``); only genuine failures are exceptions.
"""

from __future__ import annotations


class BookDigestError(Exception):
    """Base exception for all book-digest errors."""


class BookNotFoundError(BookDigestError):
    """Raised when an operation needs a catalog book that does not exist."""

    def __init__(self, book_id: str) -> None:
        super().__init__(f"Book not found: {book_id}")
        self.book_id = book_id


class ExternalServiceError(BookDigestError):
    """Failure talking to an external collaborator (catalog API, summarizer)."""


class CatalogRateLimited(ExternalServiceError):
    """The catalog source answered with a rate-limit signal (HTTP 429)."""

    def __init__(self, source_name: str, retry_after: float | None = None) -> None:
        message = f"Rate limited by {source_name}"
        if retry_after is not None:
            message += f" (retry after {retry_after:g}s)"
        super().__init__(message)
        self.source_name = source_name
        self.retry_after = retry_after


class ExternalUnavailable(ExternalServiceError):
    """Timeout, transport error or server error from an external service."""


class SummaryValidationError(BookDigestError):
    """Summarizer output could not be validated into a summary."""


class StoreWriteError(BookDigestError):
    """A write against the durable store failed."""


class ActiveJobConflict(StoreWriteError):
    """Inserting a job collided with another active job for the same book."""


__all__ = [
    "ActiveJobConflict",
    "BookDigestError",
    "BookNotFoundError",
    "CatalogRateLimited",
    "ExternalServiceError",
    "ExternalUnavailable",
    "StoreWriteError",
    "SummaryValidationError",
]
