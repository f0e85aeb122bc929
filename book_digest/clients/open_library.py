"""Open Library search and books APIs as a catalog source.

External ids are edition OLIDs (``OL7353617M``) so that search hits and
id/ISBN lookups refer to the same kind of record.
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from ..models import Candidate
from .base import HTTPCatalogSource

OPEN_LIBRARY_BASE = "https://openlibrary.org"
COVERS_BASE = "https://covers.openlibrary.org/b/id"
SEARCH_FIELDS = (
    "key,title,subtitle,author_name,isbn,subject,publisher,"
    "first_publish_year,cover_i,cover_edition_key,edition_key"
)
_YEAR = re.compile(r"\b(\d{4})\b")


class OpenLibrarySource(HTTPCatalogSource):
    name = "open_library"
    display_name = "Open Library"

    def __init__(
        self,
        base_url: str = OPEN_LIBRARY_BASE,
        timeout: float = 15.0,
        max_subjects: int = 5,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, logger=logger)
        self.max_subjects = max_subjects

    def search(self, query: str, max_results: int) -> list[Candidate]:
        payload = self._get_json(
            "/search.json",
            {"q": query, "limit": max(1, max_results), "fields": SEARCH_FIELDS},
        )
        docs = (payload or {}).get("docs") or []
        return [self._doc_to_candidate(doc) for doc in docs]

    def fetch_by_id(self, external_id: str) -> Candidate | None:
        return self._lookup(f"OLID:{external_id}", fallback_id=external_id)

    def fetch_by_isbn(self, isbn: str) -> Candidate | None:
        return self._lookup(f"ISBN:{isbn}")

    def _lookup(self, bibkey: str, fallback_id: str | None = None) -> Candidate | None:
        payload = self._get_json(
            "/api/books", {"bibkeys": bibkey, "format": "json", "jscmd": "data"}
        )
        entry = (payload or {}).get(bibkey)
        if not entry:
            return None
        return self._book_to_candidate(entry, fallback_id)

    def _doc_to_candidate(self, doc: dict[str, Any]) -> Candidate:
        isbns = [str(value) for value in doc.get("isbn") or []]
        editions = doc.get("edition_key") or []
        external_id = doc.get("cover_edition_key") or (editions[0] if editions else None)
        if external_id is None and doc.get("key"):
            external_id = str(doc["key"]).rsplit("/", 1)[-1]
        cover_id = doc.get("cover_i")
        publishers = doc.get("publisher") or []
        return Candidate(
            title=doc.get("title") or "",
            subtitle=doc.get("subtitle"),
            authors=doc.get("author_name") or [],
            isbn13=next((value for value in isbns if len(value) == 13), None),
            isbn10=next((value for value in isbns if len(value) == 10), None),
            external_id=external_id,
            categories=(doc.get("subject") or [])[: self.max_subjects],
            publisher=publishers[0] if publishers else None,
            published_year=doc.get("first_publish_year"),
            cover_url=f"{COVERS_BASE}/{cover_id}-L.jpg" if cover_id else None,
            source_name=self.name,
        )

    def _book_to_candidate(self, entry: dict[str, Any], fallback_id: str | None) -> Candidate:
        identifiers = entry.get("identifiers") or {}
        olids = identifiers.get("openlibrary") or []
        year_match = _YEAR.search(str(entry.get("publish_date") or ""))
        cover = entry.get("cover") or {}
        publishers = entry.get("publishers") or []
        return Candidate(
            title=entry.get("title") or "",
            subtitle=entry.get("subtitle"),
            authors=[author.get("name") for author in entry.get("authors") or [] if author.get("name")],
            isbn13=next(iter(identifiers.get("isbn_13") or []), None),
            isbn10=next(iter(identifiers.get("isbn_10") or []), None),
            external_id=olids[0] if olids else fallback_id,
            categories=[
                subject.get("name")
                for subject in (entry.get("subjects") or [])[: self.max_subjects]
                if isinstance(subject, dict) and subject.get("name")
            ],
            description=entry.get("notes") if isinstance(entry.get("notes"), str) else None,
            publisher=publishers[0].get("name") if publishers and isinstance(publishers[0], dict) else None,
            published_year=int(year_match.group(1)) if year_match else None,
            cover_url=cover.get("large") or cover.get("medium") or cover.get("small"),
            source_name=self.name,
        )


__all__ = ["OpenLibrarySource", "OPEN_LIBRARY_BASE"]
