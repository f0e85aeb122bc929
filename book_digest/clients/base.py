"""Contracts for external collaborators: catalog sources and the summarizer."""

from __future__ import annotations

from abc import ABC, abstractmethod
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol

import httpx
import structlog

from ..errors import CatalogRateLimited, ExternalUnavailable
from ..models import Candidate, SummaryContent


class CatalogSource(ABC):
    """External book catalog queried by the ingestion pipeline."""

    name: str = "catalog"
    display_name: str = "Catalog"

    @abstractmethod
    def search(self, query: str, max_results: int) -> list[Candidate]:
        """Free-text search."""

    @abstractmethod
    def fetch_by_id(self, external_id: str) -> Candidate | None:
        """Look up one record by the source's own id."""

    @abstractmethod
    def fetch_by_isbn(self, isbn: str) -> Candidate | None:
        """Look up one record by ISBN-10 or ISBN-13."""

    def close(self) -> None:
        return


class Summarizer(Protocol):
    """AI summarizer. May be slow, may return malformed content."""

    def generate_primary(
        self,
        title: str,
        authors: list[str],
        description: str,
        categories: list[str],
        style: str,
    ) -> SummaryContent | Mapping[str, Any]:
        """Produce the structured primary summary."""

    def generate_extended(
        self,
        title: str,
        authors: list[str],
        description: str,
        categories: list[str],
    ) -> str:
        """Produce the long narrative summary."""


class HTTPCatalogSource(CatalogSource):
    """Shared httpx plumbing and error mapping for JSON catalog APIs."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.logger = logger or structlog.get_logger(f"book_digest.clients.{self.name}")
        self._client = httpx.Client(
            follow_redirects=True,
            timeout=timeout,
            headers={"User-Agent": "book-digest/0.1 (+catalog ingestion)"},
        )

    def close(self) -> None:
        self._client.close()

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any | None:
        url = f"{self.base_url}{path}"
        try:
            response = self._client.request(method="GET", url=url, params=params)
        except httpx.TimeoutException as exc:
            raise ExternalUnavailable(f"{self.display_name} timed out: {url}") from exc
        except httpx.HTTPError as exc:
            raise ExternalUnavailable(f"{self.display_name} request failed: {exc}") from exc

        if response.status_code == 429:
            retry_after = _retry_after_seconds(response.headers.get("Retry-After"))
            self.logger.warning("catalog_rate_limited", url=url, retry_after=retry_after)
            raise CatalogRateLimited(self.display_name, retry_after)
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ExternalUnavailable(
                f"{self.display_name} returned status {response.status_code} for {url}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ExternalUnavailable(f"{self.display_name} returned invalid JSON for {url}") from exc


def _retry_after_seconds(value: str | None) -> float | None:
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        moment = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return max((moment - datetime.now(timezone.utc)).total_seconds(), 0.0)


__all__ = ["CatalogSource", "HTTPCatalogSource", "Summarizer"]
