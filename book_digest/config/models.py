"""Pydantic models used across the book-digest configuration flow."""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

GOOGLE_BOOKS_API_KEY_ENV = "GOOGLE_BOOKS_API_KEY"
MIN_CACHE_TTL = 900
MAX_CACHE_TTL = 1800


class ScheduleType(str, Enum):
    """Scheduler modes."""

    CRON = "cron"
    INTERVAL = "interval"
    ONCE = "once"


class CatalogProvider(str, Enum):
    GOOGLE_BOOKS = "google_books"
    OPEN_LIBRARY = "open_library"


class SourcePriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ScheduleConfig(BaseModel):
    """When a source runs: a crontab line, an interval, or a single date.

    ``once`` with no value runs as soon as the scheduler starts.
    """

    type: ScheduleType = Field(default=ScheduleType.ONCE)
    value: Any = None

    @model_validator(mode="after")
    def _check_value_shape(self) -> "ScheduleConfig":
        value = self.value
        if self.type is ScheduleType.CRON:
            ok = isinstance(value, str) and bool(value.strip())
        elif self.type is ScheduleType.INTERVAL:
            ok = isinstance(value, dict) or (
                isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0
            )
        else:
            ok = value is None or isinstance(value, str)
        if not ok:
            raise ValueError(f"invalid value {value!r} for a {self.type.value} schedule")
        return self


class SourceConfig(BaseModel):
    """One ingestion source: which catalog to ask, what to ask for, how to tag results."""

    source_name: str = Field(min_length=1)
    provider: CatalogProvider = CatalogProvider.GOOGLE_BOOKS
    query: str | None = None
    external_ids: list[str] = Field(default_factory=list)
    isbns: list[str] = Field(default_factory=list)
    target_count: int = Field(default=10, ge=1)
    extra_categories: list[str] = Field(default_factory=list)
    priority: SourcePriority = SourcePriority.MEDIUM
    featured: bool = False
    bestseller: bool = False
    enqueue_summaries: bool = True
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    @field_validator("query", mode="before")
    @classmethod
    def _blank_query(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("external_ids", "isbns", "extra_categories", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list[str]:
        if value in (None, ""):
            return []
        if isinstance(value, str):
            value = [value]
        return [str(item).strip() for item in value if str(item).strip()]

    @model_validator(mode="after")
    def _require_target(self) -> "SourceConfig":
        if not (self.query or self.external_ids or self.isbns):
            raise ValueError("Source needs a query, external_ids or isbns")
        return self


class GlobalConfig(BaseModel):
    """Global controls shared across sources."""

    store_path: Path = Field(default=Path("data/catalog.db"))
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    rate_limit_max_calls: int = Field(default=100, ge=1)
    request_delay_seconds: float = Field(default=1.5, ge=0, le=10)
    rate_limit_cooldown_seconds: float = Field(default=12.0, ge=0)
    summary_cache_ttl_seconds: int = MAX_CACHE_TTL
    summary_style: Literal["brief", "full"] = "full"
    thread_pool_workers: int = Field(default=4, ge=1)
    summary_workers: int = Field(default=2, ge=1)
    summary_drain_interval_seconds: int | None = Field(default=300, ge=1)
    stale_job_seconds: int = Field(default=1800, ge=60)
    google_books_api_key: str | None = None
    summarizer: str | None = Field(
        default=None,
        description="Import path of a Summarizer factory, as `package.module:callable`.",
    )

    @field_validator("store_path", mode="before")
    @classmethod
    def _coerce_paths(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("summary_cache_ttl_seconds")
    @classmethod
    def _ttl_in_range(cls, value: int) -> int:
        if not MIN_CACHE_TTL <= value <= MAX_CACHE_TTL:
            raise ValueError(
                f"summary_cache_ttl_seconds must be between {MIN_CACHE_TTL} and {MAX_CACHE_TTL}"
            )
        return value

    def resolved_store_path(self, base_dir: Path) -> Path:
        """Return the catalog database path relative to the project root."""

        if not self.store_path.is_absolute():
            return (base_dir / self.store_path).resolve()
        return self.store_path

    def effective_google_books_api_key(self) -> str | None:
        return self.google_books_api_key or os.environ.get(GOOGLE_BOOKS_API_KEY_ENV) or None


__all__ = [
    "CatalogProvider",
    "GlobalConfig",
    "GOOGLE_BOOKS_API_KEY_ENV",
    "ScheduleConfig",
    "ScheduleType",
    "SourceConfig",
    "SourcePriority",
]
