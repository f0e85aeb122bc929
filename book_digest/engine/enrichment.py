"""Refresh ratings, popularity and covers of books already in the catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

import structlog

from ..infra.base import CatalogStore
from ..models import BookRecord, Candidate, popularity_score
from .pipeline import DEFAULT_COOLDOWN_SECONDS
from .rate_limiter import RateLimiter

if TYPE_CHECKING:
    from ..clients.base import CatalogSource


@dataclass(slots=True)
class EnrichmentReport:
    examined: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    def record_failure(self, label: str, reason: str) -> None:
        self.failed += 1
        self.failures.append((label, reason))

    def as_dict(self) -> dict[str, int]:
        return {
            "examined": self.examined,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class _LookupFailed(Exception):
    pass


class CatalogEnricher:
    """Look stored books up again in a catalog source and fill in missing data.

    A book is looked up by its external id when the id came from the same
    source, then by ISBN-13, then by ISBN-10. Every call goes through the
    shared rate limiter with the same single retry after a cooldown as
    ingestion. One book failing never stops the pass.
    """

    def __init__(
        self,
        store: CatalogStore,
        limiter: RateLimiter,
        logger: structlog.BoundLogger | None = None,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    ) -> None:
        self.store = store
        self.limiter = limiter
        self.logger = logger or structlog.get_logger("book_digest.enrichment")
        self.cooldown_seconds = cooldown_seconds

    def refresh_popularity(self, source: "CatalogSource", limit: int | None = None) -> EnrichmentReport:
        """Score books without a popularity rank from the source's rating data."""

        def changes(book: BookRecord, candidate: Candidate) -> dict[str, Any] | None:
            if not candidate.average_rating and not candidate.ratings_count:
                return None
            return {
                "average_rating": candidate.average_rating,
                "ratings_count": candidate.ratings_count,
                "popularity_rank": popularity_score(candidate.average_rating, candidate.ratings_count),
            }

        books = self.store.list_books(missing="popularity_rank", limit=limit)
        return self._run("popularity", source, books, changes)

    def refresh_covers(
        self, source: "CatalogSource", limit: int | None = None, force: bool = False
    ) -> EnrichmentReport:
        """Fill in cover URLs; ``force`` also revisits books that already have one."""

        def changes(book: BookRecord, candidate: Candidate) -> dict[str, Any] | None:
            if not candidate.cover_url or candidate.cover_url == book.cover_url:
                return None
            return {"cover_url": candidate.cover_url}

        books = self.store.list_books(missing=None if force else "cover_url", limit=limit)
        return self._run("covers", source, books, changes)

    # ------------------------------------------------------------------
    def _run(
        self,
        kind: str,
        source: "CatalogSource",
        books: list[BookRecord],
        changes_for: Callable[[BookRecord, Candidate], dict[str, Any] | None],
    ) -> EnrichmentReport:
        report = EnrichmentReport()
        log = self.logger.bind(source=source.name, enrichment=kind)
        log.info("enrichment_started", books=len(books))
        for book in books:
            report.examined += 1
            try:
                candidate = self._lookup(source, book, log)
            except _LookupFailed as exc:
                report.record_failure(book.title, str(exc))
                log.warning("enrichment_lookup_failed", book_id=book.id, error=str(exc))
                continue
            changes = changes_for(book, candidate) if candidate is not None else None
            if not changes:
                report.skipped += 1
                log.debug("enrichment_no_data", book_id=book.id, found=candidate is not None)
                continue
            try:
                self.store.update_book(book.id, changes)
            except Exception as exc:  # noqa: BLE001
                report.record_failure(book.title, str(exc))
                log.warning("enrichment_write_failed", book_id=book.id, error=str(exc))
                continue
            report.updated += 1
            log.info("book_enriched", book_id=book.id, **changes)
        log.info("enrichment_finished", **report.as_dict())
        return report

    def _lookup(
        self, source: "CatalogSource", book: BookRecord, log: structlog.BoundLogger
    ) -> Candidate | None:
        steps: list[Callable[[], Candidate | None]] = []
        if book.external_id and source.display_name in book.source_attribution:
            steps.append(lambda: source.fetch_by_id(book.external_id))
        for isbn in (book.isbn13, book.isbn10):
            if isbn:
                steps.append(lambda isbn=isbn: source.fetch_by_isbn(isbn))

        last_error: Exception | None = None
        for step in steps:
            try:
                candidate = self.limiter.call(step, self.cooldown_seconds, log)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                continue
            if candidate is not None:
                return candidate
        if last_error is not None:
            raise _LookupFailed(str(last_error)) from last_error
        return None


__all__ = ["CatalogEnricher", "EnrichmentReport"]
