"""Ingestion pipeline: pull candidates from one catalog source into the store."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, TypeVar

import structlog

from ..infra.base import CatalogStore
from ..models import BookRecord, Candidate, SummaryStyle
from .dedup import DeduplicationEngine
from .rate_limiter import RateLimiter

if TYPE_CHECKING:
    from ..clients.base import CatalogSource
    from .jobs import SummaryJobQueue

T = TypeVar("T")

MAX_SEARCH_RESULTS = 40
DEFAULT_COOLDOWN_SECONDS = 12.0

PriorityPredicate = Callable[[Candidate], bool]


class CandidateOutcome(str, Enum):
    ADDED = "added"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class IngestionRequest:
    """Plain parameters of one ingestion run against one source."""

    query: str | None = None
    external_ids: list[str] = field(default_factory=list)
    isbns: list[str] = field(default_factory=list)
    target_count: int = 10
    extra_categories: list[str] = field(default_factory=list)
    featured: bool = False
    bestseller: bool = False
    enqueue_summaries: bool = False
    label: str = ""

    def __post_init__(self) -> None:
        if self.target_count < 1:
            raise ValueError("target_count must be >= 1")
        if not (self.query or self.external_ids or self.isbns):
            raise ValueError("IngestionRequest needs a query, external_ids or isbns")


@dataclass(slots=True)
class IngestionReport:
    attempted: int = 0
    added: int = 0
    duplicate: int = 0
    failed: int = 0
    skipped: int = 0
    summaries_requested: int = 0
    summary_requests_failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)
    added_ids: list[str] = field(default_factory=list)

    def record_failure(self, label: str, reason: str) -> None:
        self.failed += 1
        self.failures.append((label, reason))

    def __add__(self, other: "IngestionReport") -> "IngestionReport":
        if not isinstance(other, IngestionReport):
            return NotImplemented
        return IngestionReport(
            attempted=self.attempted + other.attempted,
            added=self.added + other.added,
            duplicate=self.duplicate + other.duplicate,
            failed=self.failed + other.failed,
            skipped=self.skipped + other.skipped,
            summaries_requested=self.summaries_requested + other.summaries_requested,
            summary_requests_failed=self.summary_requests_failed + other.summary_requests_failed,
            failures=[*self.failures, *other.failures],
            added_ids=[*self.added_ids, *other.added_ids],
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "attempted": self.attempted,
            "added": self.added,
            "duplicate": self.duplicate,
            "failed": self.failed,
            "skipped": self.skipped,
            "summaries_requested": self.summaries_requested,
            "summary_requests_failed": self.summary_requests_failed,
        }


class IngestionPipeline:
    """Fetch, deduplicate and persist candidates from a single catalog source.

    Candidates are processed strictly one after another. Every outbound call
    goes through the rate limiter; a rate-limited call is retried exactly once
    after a cooldown, and any per-candidate failure is recorded without
    aborting the run.
    """

    def __init__(
        self,
        store: CatalogStore,
        dedup: DeduplicationEngine,
        limiter: RateLimiter,
        job_queue: "SummaryJobQueue | None" = None,
        logger: structlog.BoundLogger | None = None,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        summary_style: SummaryStyle = "full",
    ) -> None:
        self.store = store
        self.dedup = dedup
        self.limiter = limiter
        self.job_queue = job_queue
        self.logger = logger or structlog.get_logger("book_digest.pipeline")
        self.cooldown_seconds = cooldown_seconds
        self.summary_style = summary_style

    def run(
        self,
        source: "CatalogSource",
        request: IngestionRequest,
        priority: PriorityPredicate | None = None,
    ) -> IngestionReport:
        report = IngestionReport()
        seen: set[str] = set()
        log = self.logger.bind(source=source.name, label=request.label or request.query)
        log.info("ingestion_started", target_count=request.target_count)

        if request.query:
            max_results = min(request.target_count * 2, MAX_SEARCH_RESULTS)
            try:
                candidates = self._call(log, lambda: source.search(request.query, max_results))
            except Exception as exc:  # noqa: BLE001
                log.error("catalog_search_failed", query=request.query, error=str(exc))
                report.record_failure(f"search:{request.query}", str(exc))
                candidates = []
            for candidate in candidates:
                if report.added >= request.target_count:
                    break
                self._ingest(candidate, source, request, priority, seen, report, log)

        lookups: list[tuple[str, Callable[[], Candidate | None]]] = []
        for external_id in request.external_ids:
            lookups.append((external_id, lambda value=external_id: source.fetch_by_id(value)))
        for isbn in request.isbns:
            lookups.append((isbn, lambda value=isbn: source.fetch_by_isbn(value)))
        for label, lookup in lookups:
            if report.added >= request.target_count:
                break
            try:
                candidate = self._call(log, lookup)
            except Exception as exc:  # noqa: BLE001
                report.attempted += 1
                report.record_failure(label, str(exc))
                log.warning("candidate_fetch_failed", identifier=label, error=str(exc))
                continue
            if candidate is None:
                report.attempted += 1
                report.record_failure(label, "not_found")
                log.info("candidate_not_found", identifier=label)
                continue
            self._ingest(candidate, source, request, priority, seen, report, log)

        log.info("ingestion_finished", **report.as_dict())
        return report

    # ------------------------------------------------------------------
    def _ingest(
        self,
        candidate: Candidate,
        source: "CatalogSource",
        request: IngestionRequest,
        priority: PriorityPredicate | None,
        seen: set[str],
        report: IngestionReport,
        log: structlog.BoundLogger,
    ) -> CandidateOutcome:
        if priority is not None and not priority(candidate):
            report.skipped += 1
            log.debug("candidate_skipped", candidate=candidate.label)
            return CandidateOutcome.SKIPPED

        report.attempted += 1
        keys = list(candidate.identifiers())
        if any(key in seen for key in keys):
            report.duplicate += 1
            log.debug("candidate_seen_in_run", candidate=candidate.label)
            return CandidateOutcome.DUPLICATE

        if not candidate.title.strip():
            return self._fail(report, log, candidate, "missing_title")
        if not candidate.authors:
            return self._fail(report, log, candidate, "missing_authors")

        try:
            with self.dedup.lock:
                match = self.dedup.check(candidate)
                if not match.is_duplicate:
                    book = BookRecord.from_candidate(
                        candidate,
                        extra_categories=request.extra_categories,
                        attribution=self._attribution(source, request),
                        featured=request.featured,
                        bestseller=request.bestseller,
                    )
                    self.store.insert_book(book)
        except Exception as exc:  # noqa: BLE001
            return self._fail(report, log, candidate, str(exc))
        # only resolved candidates short-circuit later ones in this run
        seen.update(keys)

        if match.is_duplicate:
            report.duplicate += 1
            log.info(
                "candidate_duplicate",
                candidate=candidate.label,
                matched_by=match.matched_by,
                book_id=match.record.id if match.record else None,
            )
            return CandidateOutcome.DUPLICATE

        report.added += 1
        report.added_ids.append(book.id)
        log.info("candidate_added", candidate=candidate.label, book_id=book.id)
        if request.enqueue_summaries and self.job_queue is not None:
            self._request_summary(book, report, log)
        return CandidateOutcome.ADDED

    def _request_summary(
        self, book: BookRecord, report: IngestionReport, log: structlog.BoundLogger
    ) -> None:
        try:
            self.job_queue.request_summary(book.id, style=self.summary_style)  # type: ignore[union-attr]
        except Exception as exc:  # noqa: BLE001
            report.summary_requests_failed += 1
            log.warning("summary_request_failed", book_id=book.id, error=str(exc))
            return
        report.summaries_requested += 1

    def _call(self, log: structlog.BoundLogger, operation: Callable[[], T]) -> T:
        return self.limiter.call(operation, self.cooldown_seconds, log)

    @staticmethod
    def _fail(
        report: IngestionReport,
        log: structlog.BoundLogger,
        candidate: Candidate,
        reason: str,
    ) -> CandidateOutcome:
        report.record_failure(candidate.label, reason)
        log.warning("candidate_failed", candidate=candidate.label, reason=reason)
        return CandidateOutcome.FAILED

    @staticmethod
    def _attribution(source: "CatalogSource", request: IngestionRequest) -> list[str]:
        attribution = [source.display_name]
        if request.query:
            attribution.append(f"Query: {request.query}")
        return attribution


__all__ = [
    "CandidateOutcome",
    "IngestionPipeline",
    "IngestionReport",
    "IngestionRequest",
    "MAX_SEARCH_RESULTS",
]
