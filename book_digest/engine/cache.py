"""Expiring key-value cache contract and the summary cache built on it."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Callable

import structlog

from ..models import SummaryRecord

MIN_SUMMARY_TTL = 15 * 60
MAX_SUMMARY_TTL = 30 * 60


class ExpiringCache(ABC):
    """Generic key-value cache whose entries expire after a ttl."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the live value for ``key`` or ``None``."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float) -> None:
        """Store ``value`` for ``ttl`` seconds."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Drop ``key`` if present."""


class MemoryTTLCache(ExpiringCache):
    """In-process cache with lazy expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SummaryCache:
    """Read-through cache of summaries keyed by book id.

    The cache is advisory. Backend errors turn into misses, and a failed
    invalidation disables the cache so a stale snapshot is never served.
    """

    def __init__(
        self,
        backend: ExpiringCache | None,
        ttl_seconds: float = MAX_SUMMARY_TTL,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if not MIN_SUMMARY_TTL <= ttl_seconds <= MAX_SUMMARY_TTL:
            raise ValueError(
                f"Summary cache ttl must be between {MIN_SUMMARY_TTL} and {MAX_SUMMARY_TTL} seconds"
            )
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self.logger = logger or structlog.get_logger("book_digest.cache")
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(book_id: str) -> str:
        return f"summary:book:{book_id}"

    @property
    def available(self) -> bool:
        return self.backend is not None

    def get(self, book_id: str) -> SummaryRecord | None:
        if self.backend is None:
            self.misses += 1
            return None
        try:
            value = self.backend.get(self.key(book_id))
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("cache_get_failed", book_id=book_id, error=str(exc))
            value = None
        if not isinstance(value, SummaryRecord):
            self.misses += 1
            return None
        self.hits += 1
        return value.model_copy(deep=True)

    def put(self, book_id: str, record: SummaryRecord) -> None:
        if self.backend is None:
            return
        try:
            self.backend.set(self.key(book_id), record.model_copy(deep=True), self.ttl_seconds)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("cache_put_failed", book_id=book_id, error=str(exc))

    def invalidate(self, book_id: str) -> None:
        if self.backend is None:
            return
        try:
            self.backend.delete(self.key(book_id))
        except Exception as exc:  # noqa: BLE001
            self.logger.error("cache_invalidate_failed_disabling", book_id=book_id, error=str(exc))
            self.backend = None


__all__ = [
    "ExpiringCache",
    "MAX_SUMMARY_TTL",
    "MIN_SUMMARY_TTL",
    "MemoryTTLCache",
    "SummaryCache",
]
