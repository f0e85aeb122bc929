"""Summary job queue and the worker that drains it."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from threading import Lock
from typing import Any, Mapping

import structlog
from pydantic import ValidationError

from ..clients.base import Summarizer
from ..errors import ActiveJobConflict, BookNotFoundError, SummaryValidationError
from ..infra.base import CatalogStore, JobStore
from ..models import (
    BookRecord,
    JobStatus,
    SummaryContent,
    SummaryJob,
    SummaryRecord,
    SummaryStyle,
    utcnow,
)
from .cache import SummaryCache


class SummaryJobQueue:
    """Create and transition summary jobs; at most one active job per book."""

    def __init__(
        self,
        store: CatalogStore,
        job_store: JobStore,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.job_store = job_store
        self.logger = logger or structlog.get_logger("book_digest.jobs")
        self._lock = Lock()

    def request_summary(
        self, book_id: str, regenerate: bool = False, style: SummaryStyle = "full"
    ) -> SummaryJob:
        """Return a job handle for ``book_id`` without generating anything.

        An existing summary short-circuits to an unsaved completed job unless
        ``regenerate`` is set; an active job for the book is returned as is.
        """

        if self.store.get_book(book_id) is None:
            raise BookNotFoundError(book_id)
        if not regenerate:
            existing = self.store.find_completed_summary(book_id)
            if existing is not None:
                self.logger.debug("summary_already_exists", book_id=book_id, summary_id=existing.id)
                return SummaryJob(
                    book_id=book_id,
                    status=JobStatus.COMPLETED,
                    style=existing.style,
                    summary_id=existing.id,
                )

        with self._lock:
            active = self.job_store.find_active_job_for_book(book_id)
            if active is not None:
                self.logger.debug("summary_job_active", book_id=book_id, job_id=active.id)
                return active
            job = SummaryJob(book_id=book_id, style=style)
            try:
                self.job_store.insert_job(job)
            except ActiveJobConflict:
                active = self.job_store.find_active_job_for_book(book_id)
                if active is None:
                    raise
                return active
        self.logger.info("summary_job_created", book_id=book_id, job_id=job.id, style=style)
        return job

    def dequeue_next(self) -> SummaryJob | None:
        return self.job_store.claim_next_pending()

    def get_job(self, job_id: str) -> SummaryJob | None:
        return self.job_store.get_job(job_id)

    def requeue_stale(self, older_than_seconds: float) -> int:
        """Return abandoned ``processing`` jobs to the queue.

        A worker that dies between claiming a job and recording its outcome
        leaves the job ``processing``, which also blocks new requests for the book.
        """

        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        requeued = self.job_store.requeue_stale(cutoff)
        if requeued:
            self.logger.warning("stale_summary_jobs_requeued", count=requeued, cutoff=cutoff.isoformat())
        return requeued

    def mark_completed(self, job: SummaryJob) -> SummaryJob:
        updated = self.job_store.update_job_status(job.id, JobStatus.COMPLETED)
        return updated or job.model_copy(update={"status": JobStatus.COMPLETED})

    def mark_failed(self, job: SummaryJob, message: str) -> SummaryJob:
        updated = self.job_store.update_job_status(
            job.id, JobStatus.FAILED, error_message=message, increment_retry=True
        )
        if updated is not None:
            return updated
        return job.model_copy(
            update={
                "status": JobStatus.FAILED,
                "error_message": message,
                "retry_count": job.retry_count + 1,
            }
        )


@dataclass(slots=True)
class WorkerStats:
    processed: int = 0
    completed: int = 0
    failed: int = 0
    extended_failures: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "completed": self.completed,
            "failed": self.failed,
            "extended_failures": self.extended_failures,
        }


class SummaryWorker:
    """Turn claimed jobs into persisted summaries.

    The primary summary decides the job's fate. The extended summary is a
    best-effort second step whose failure is only logged and counted.
    """

    def __init__(
        self,
        queue: SummaryJobQueue,
        store: CatalogStore,
        summarizer: Summarizer,
        cache: SummaryCache,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.queue = queue
        self.store = store
        self.summarizer = summarizer
        self.cache = cache
        self.logger = logger or structlog.get_logger("book_digest.worker")

    def process(self, job: SummaryJob, stats: WorkerStats | None = None) -> SummaryJob:
        stats = stats if stats is not None else WorkerStats()
        stats.processed += 1
        log = self.logger.bind(job_id=job.id, book_id=job.book_id)
        try:
            book = self.store.get_book(job.book_id)
            if book is None:
                raise BookNotFoundError(job.book_id)
            record = self._write_primary(book, job)
            if not self._attach_extended(book, record, log):
                stats.extended_failures += 1
            finished = self.queue.mark_completed(job)
        except Exception as exc:  # noqa: BLE001
            stats.failed += 1
            log.error("summary_job_failed", error=str(exc), error_type=type(exc).__name__)
            return self._record_failure(job, str(exc), log)
        stats.completed += 1
        log.info("summary_job_completed", summary_id=record.id)
        return finished

    def run_once(self, stats: WorkerStats | None = None) -> SummaryJob | None:
        job = self.queue.dequeue_next()
        if job is None:
            return None
        return self.process(job, stats)

    def drain(self, max_jobs: int | None = None) -> WorkerStats:
        stats = WorkerStats()
        while max_jobs is None or stats.processed < max_jobs:
            if self.run_once(stats) is None:
                break
        self.logger.info("summary_queue_drained", **stats.as_dict())
        return stats

    def _record_failure(self, job: SummaryJob, message: str, log: structlog.BoundLogger) -> SummaryJob:
        try:
            return self.queue.mark_failed(job, message)
        except Exception as exc:  # noqa: BLE001
            # left ``processing``; requeue_stale hands it back to a later drain
            log.error("summary_job_status_write_failed", error=str(exc))
            return job

    # ------------------------------------------------------------------
    def _write_primary(self, book: BookRecord, job: SummaryJob) -> SummaryRecord:
        raw = self.summarizer.generate_primary(
            book.title,
            list(book.authors),
            book.description or "",
            list(book.categories),
            job.style,
        )
        content = validate_summary_output(raw, job.style)
        existing = self.store.find_completed_summary(book.id)
        if existing is None:
            record = self.store.insert_summary(SummaryRecord.from_content(book.id, content))
        else:
            changes = content.model_dump()
            changes.update(extended_summary=None, generation_date=utcnow())
            record = self.store.update_summary(existing.id, changes) or self.store.insert_summary(
                SummaryRecord.from_content(book.id, content)
            )
        self.cache.invalidate(book.id)
        return record

    def _attach_extended(
        self, book: BookRecord, record: SummaryRecord, log: structlog.BoundLogger
    ) -> bool:
        try:
            extended = self.summarizer.generate_extended(
                book.title,
                list(book.authors),
                book.description or "",
                list(book.categories),
            )
            if not isinstance(extended, str) or not extended.strip():
                raise SummaryValidationError("Extended summary is empty")
            self.store.update_summary(record.id, {"extended_summary": extended.strip()})
        except Exception as exc:  # noqa: BLE001
            log.warning("extended_summary_failed", summary_id=record.id, error=str(exc))
            return False
        self.cache.invalidate(book.id)
        return True


def validate_summary_output(raw: Any, style: SummaryStyle) -> SummaryContent:
    """Validate summarizer output, whatever its shape, into ``SummaryContent``."""

    if isinstance(raw, SummaryContent):
        data: dict[str, Any] = raw.model_dump()
    elif isinstance(raw, Mapping):
        data = dict(raw)
    else:
        raise SummaryValidationError(f"Unexpected summarizer output: {type(raw).__name__}")
    data["style"] = style
    try:
        return SummaryContent.model_validate(data)
    except ValidationError as exc:
        raise SummaryValidationError(f"Malformed summary: {exc.error_count()} validation error(s)") from exc


__all__ = ["SummaryJobQueue", "SummaryWorker", "WorkerStats", "validate_summary_output"]
