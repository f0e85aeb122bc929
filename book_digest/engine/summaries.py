"""Summary reads and writes with cache coherence."""

from __future__ import annotations

from typing import Any

import structlog
from pydantic import ValidationError

from ..errors import SummaryValidationError
from ..infra.base import CatalogStore
from ..models import CONTENT_FIELDS, SummaryJob, SummaryRecord, SummaryStyle
from .cache import SummaryCache
from .jobs import SummaryJobQueue

EDITABLE_FIELDS = CONTENT_FIELDS | {"extended_summary"}


class SummaryService:
    """Read-through summary access.

    Every write invalidates the book's cache entry after the store accepted
    it and before returning. A write that raises leaves the cache untouched.
    """

    def __init__(
        self,
        store: CatalogStore,
        cache: SummaryCache,
        queue: SummaryJobQueue,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.queue = queue
        self.logger = logger or structlog.get_logger("book_digest.summaries")

    def get_summary(self, book_id: str) -> SummaryRecord | None:
        cached = self.cache.get(book_id)
        if cached is not None:
            return cached
        record = self.store.find_completed_summary(book_id)
        if record is not None:
            self.cache.put(book_id, record)
        return record

    def update_summary(self, summary_id: str, **changes: Any) -> SummaryRecord | None:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        try:
            updated = self.store.update_summary(summary_id, changes)
        except ValidationError as exc:
            raise SummaryValidationError(f"Invalid summary update: {exc.error_count()} error(s)") from exc
        if updated is None:
            return None
        self.cache.invalidate(updated.book_id)
        self.logger.info("summary_updated", summary_id=summary_id, fields=sorted(changes))
        return updated

    def delete_summary(self, summary_id: str) -> bool:
        deleted = self.store.delete_summary(summary_id)
        if deleted is None:
            return False
        self.cache.invalidate(deleted.book_id)
        self.logger.info("summary_deleted", summary_id=summary_id, book_id=deleted.book_id)
        return True

    def delete_book(self, book_id: str) -> bool:
        deleted = self.store.delete_book(book_id)
        if deleted:
            self.cache.invalidate(book_id)
            self.logger.info("book_deleted", book_id=book_id)
        return deleted

    def request_summary(
        self, book_id: str, regenerate: bool = False, style: SummaryStyle = "full"
    ) -> SummaryJob:
        return self.queue.request_summary(book_id, regenerate=regenerate, style=style)

    def get_job(self, job_id: str) -> SummaryJob | None:
        return self.queue.get_job(job_id)


__all__ = ["EDITABLE_FIELDS", "SummaryService"]
