"""Durable store contracts consumed by the catalog core."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from ..models import BookRecord, JobStatus, SummaryJob, SummaryRecord


class CatalogStore(ABC):
    """Books and summaries. Misses return ``None``; failed writes raise ``StoreWriteError``."""

    @abstractmethod
    def find_by_external_id(self, external_id: str) -> BookRecord | None:
        """Return the book carrying this external catalog id."""

    @abstractmethod
    def find_by_isbn13(self, isbn13: str) -> BookRecord | None:
        """Return the book carrying this ISBN-13."""

    @abstractmethod
    def find_by_isbn10(self, isbn10: str) -> BookRecord | None:
        """Return the book carrying this ISBN-10."""

    @abstractmethod
    def find_by_title_author(self, title: str, primary_author: str) -> BookRecord | None:
        """Case-insensitive exact match on title and primary author."""

    @abstractmethod
    def insert_book(self, book: BookRecord) -> BookRecord:
        """Persist a new book."""

    @abstractmethod
    def get_book(self, book_id: str) -> BookRecord | None:
        """Load a book by id."""

    @abstractmethod
    def delete_book(self, book_id: str) -> bool:
        """Delete a book together with the summary and jobs it owns."""

    @abstractmethod
    def update_book(self, book_id: str, changes: dict[str, Any]) -> BookRecord | None:
        """Apply enrichment fields (ratings, popularity, cover); ``None`` for an unknown book."""

    @abstractmethod
    def list_books(self, missing: str | None = None, limit: int | None = None) -> list[BookRecord]:
        """Books oldest first, optionally only those where ``missing`` is empty."""

    @abstractmethod
    def insert_summary(self, summary: SummaryRecord) -> SummaryRecord:
        """Persist the summary of a book."""

    @abstractmethod
    def update_summary(self, summary_id: str, changes: dict[str, Any]) -> SummaryRecord | None:
        """Apply field changes; ``None`` when the summary does not exist."""

    @abstractmethod
    def delete_summary(self, summary_id: str) -> SummaryRecord | None:
        """Delete a summary and return what was deleted."""

    @abstractmethod
    def get_summary(self, summary_id: str) -> SummaryRecord | None:
        """Load a summary by id."""

    @abstractmethod
    def find_completed_summary(self, book_id: str) -> SummaryRecord | None:
        """Return the summary written for a book, if any."""


class JobStore(ABC):
    """Summary job persistence: enqueue, claim and status updates."""

    @abstractmethod
    def insert_job(self, job: SummaryJob) -> SummaryJob:
        """Persist a job; raises ``ActiveJobConflict`` if the book already has an active job."""

    @abstractmethod
    def get_job(self, job_id: str) -> SummaryJob | None:
        """Load a job by id."""

    @abstractmethod
    def update_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error_message: str | None = None,
        increment_retry: bool = False,
    ) -> SummaryJob | None:
        """Move a job to ``status`` and return the updated job."""

    @abstractmethod
    def find_active_job_for_book(self, book_id: str) -> SummaryJob | None:
        """Return the pending or processing job of a book."""

    @abstractmethod
    def claim_next_pending(self) -> SummaryJob | None:
        """Atomically move the oldest pending job to processing and return it."""

    @abstractmethod
    def requeue_stale(self, older_than: datetime) -> int:
        """Put ``processing`` jobs untouched since ``older_than`` back to pending."""


__all__ = ["CatalogStore", "JobStore"]
