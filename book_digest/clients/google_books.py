"""Google Books volumes API as a catalog source."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import structlog

from ..models import Candidate
from .base import HTTPCatalogSource

GOOGLE_BOOKS_API_BASE = "https://www.googleapis.com/books/v1"
# Google caps maxResults per request
MAX_PAGE_SIZE = 40


class GoogleBooksSource(HTTPCatalogSource):
    name = "google_books"
    display_name = "Google Books API"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = GOOGLE_BOOKS_API_BASE,
        timeout: float = 15.0,
        lang_restrict: str | None = "en",
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, logger=logger)
        self.api_key = api_key
        self.lang_restrict = lang_restrict

    def search(self, query: str, max_results: int) -> list[Candidate]:
        params: dict[str, Any] = {
            "q": query,
            "maxResults": max(1, min(max_results, MAX_PAGE_SIZE)),
            "orderBy": "relevance",
            "printType": "books",
        }
        if self.lang_restrict:
            params["langRestrict"] = self.lang_restrict
        payload = self._get_json("/volumes", self._with_key(params))
        items = (payload or {}).get("items") or []
        return [self.to_candidate(item) for item in items]

    def fetch_by_id(self, external_id: str) -> Candidate | None:
        payload = self._get_json(f"/volumes/{quote(external_id, safe='')}", self._with_key({}))
        if not payload:
            return None
        return self.to_candidate(payload)

    def fetch_by_isbn(self, isbn: str) -> Candidate | None:
        payload = self._get_json("/volumes", self._with_key({"q": f"isbn:{isbn}", "maxResults": 1}))
        items = (payload or {}).get("items") or []
        if not items:
            return None
        return self.to_candidate(items[0])

    def _with_key(self, params: dict[str, Any]) -> dict[str, Any]:
        if self.api_key:
            params["key"] = self.api_key
        return params

    def to_candidate(self, volume: dict[str, Any]) -> Candidate:
        info = volume.get("volumeInfo") or {}
        identifiers = {
            entry.get("type"): entry.get("identifier")
            for entry in info.get("industryIdentifiers") or []
            if isinstance(entry, dict)
        }
        published_year = None
        published = str(info.get("publishedDate") or "")
        if published[:4].isdigit():
            published_year = int(published[:4])
        images = info.get("imageLinks") or {}
        cover_url = next(
            (images[size] for size in ("large", "medium", "thumbnail", "smallThumbnail") if images.get(size)),
            None,
        )
        return Candidate(
            title=info.get("title") or "",
            subtitle=info.get("subtitle"),
            authors=info.get("authors") or [],
            isbn10=identifiers.get("ISBN_10"),
            isbn13=identifiers.get("ISBN_13"),
            external_id=volume.get("id"),
            categories=info.get("categories") or [],
            description=info.get("description"),
            publisher=info.get("publisher"),
            published_year=published_year,
            cover_url=cover_url,
            average_rating=info.get("averageRating"),
            ratings_count=info.get("ratingsCount"),
            source_name=self.name,
        )


__all__ = ["GoogleBooksSource", "GOOGLE_BOOKS_API_BASE"]
