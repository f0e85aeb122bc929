"""Catalog deduplication through an ordered chain of matcher strategies."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Protocol, Sequence

from ..infra.base import CatalogStore
from ..models import BookRecord, Candidate


class Matcher(Protocol):
    """One identifier step of the deduplication chain."""

    name: str

    def try_match(self, store: CatalogStore, candidate: Candidate) -> BookRecord | None:
        """Return the existing record matching ``candidate`` on this key, if any."""


class ExternalIdMatcher:
    name = "external_id"

    def try_match(self, store: CatalogStore, candidate: Candidate) -> BookRecord | None:
        if not candidate.external_id:
            return None
        return store.find_by_external_id(candidate.external_id)


class Isbn13Matcher:
    name = "isbn13"

    def try_match(self, store: CatalogStore, candidate: Candidate) -> BookRecord | None:
        if not candidate.isbn13:
            return None
        return store.find_by_isbn13(candidate.isbn13)


class Isbn10Matcher:
    name = "isbn10"

    def try_match(self, store: CatalogStore, candidate: Candidate) -> BookRecord | None:
        if not candidate.isbn10:
            return None
        return store.find_by_isbn10(candidate.isbn10)


class TitleAuthorMatcher:
    """Last resort: case-insensitive exact title plus primary author."""

    name = "title_author"

    def try_match(self, store: CatalogStore, candidate: Candidate) -> BookRecord | None:
        title = candidate.title.strip()
        author = candidate.primary_author
        if not title or not author:
            return None
        return store.find_by_title_author(title, author)


DEFAULT_MATCHERS: tuple[Matcher, ...] = (
    ExternalIdMatcher(),
    Isbn13Matcher(),
    Isbn10Matcher(),
    TitleAuthorMatcher(),
)


@dataclass(slots=True)
class DeduplicationResult:
    record: BookRecord | None = None
    matched_by: str | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.record is not None


class DeduplicationEngine:
    """Match candidates against the catalog, first hit wins.

    Callers that insert on a miss hold ``lock`` across check and insert so
    concurrent runs sharing the engine cannot both add the same book.
    """

    def __init__(self, store: CatalogStore, matchers: Sequence[Matcher] | None = None) -> None:
        self.store = store
        self.matchers = list(matchers) if matchers is not None else list(DEFAULT_MATCHERS)
        self.lock = Lock()

    def check(self, candidate: Candidate) -> DeduplicationResult:
        for matcher in self.matchers:
            record = matcher.try_match(self.store, candidate)
            if record is not None:
                return DeduplicationResult(record=record, matched_by=matcher.name)
        return DeduplicationResult()

    def match(self, candidate: Candidate) -> BookRecord | None:
        return self.check(candidate).record


__all__ = [
    "DEFAULT_MATCHERS",
    "DeduplicationEngine",
    "DeduplicationResult",
    "ExternalIdMatcher",
    "Isbn10Matcher",
    "Isbn13Matcher",
    "Matcher",
    "TitleAuthorMatcher",
]
