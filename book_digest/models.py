"""Pydantic models for catalog books, summaries and summary jobs."""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ISBN_STRIP = re.compile(r"[^0-9Xx]")
_SPACES = re.compile(r"\s+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


def normalise_text(value: str) -> str:
    """Case-folded, whitespace-collapsed form used for title/author matching."""

    return _SPACES.sub(" ", value).strip().casefold()


def normalise_isbn(value: Any, length: int) -> str | None:
    if value in (None, ""):
        return None
    cleaned = _ISBN_STRIP.sub("", str(value)).upper()
    if len(cleaned) != length:
        return None
    return cleaned


def popularity_score(average_rating: float | None, ratings_count: int | None) -> float:
    """Rating weighted by review volume: ``average_rating * log10(ratings_count + 1)``."""

    if not average_rating or average_rating <= 0:
        return 0.0
    return average_rating * math.log10((ratings_count or 0) + 1)


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        text = str(value).strip()
        key = text.casefold()
        if text and key not in seen:
            seen.add(key)
            result.append(text)
    return result


class Candidate(BaseModel):
    """Unvalidated book metadata returned by an external catalog source."""

    title: str = ""
    subtitle: str | None = None
    authors: list[str] = Field(default_factory=list)
    isbn10: str | None = None
    isbn13: str | None = None
    external_id: str | None = None
    categories: list[str] = Field(default_factory=list)
    description: str | None = None
    publisher: str | None = None
    published_year: int | None = None
    cover_url: str | None = None
    average_rating: float | None = None
    ratings_count: int | None = None
    source_name: str = ""

    @field_validator("isbn10", mode="before")
    @classmethod
    def _clean_isbn10(cls, value: Any) -> str | None:
        return normalise_isbn(value, 10)

    @field_validator("isbn13", mode="before")
    @classmethod
    def _clean_isbn13(cls, value: Any) -> str | None:
        return normalise_isbn(value, 13)

    @field_validator("authors", "categories", mode="before")
    @classmethod
    def _clean_names(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(item).strip() for item in value if item and str(item).strip()]

    @property
    def primary_author(self) -> str | None:
        return self.authors[0] if self.authors else None

    @property
    def label(self) -> str:
        return self.title or self.external_id or self.isbn13 or self.isbn10 or "<untitled>"

    def identifiers(self) -> Iterator[str]:
        """Yield namespaced identifier keys for the per-run seen set."""

        if self.external_id:
            yield f"ext:{self.external_id}"
        if self.isbn13:
            yield f"isbn13:{self.isbn13}"
        if self.isbn10:
            yield f"isbn10:{self.isbn10}"


class BookRecord(BaseModel):
    """Canonical catalog entry."""

    id: str = Field(default_factory=new_id)
    title: str = Field(min_length=1)
    subtitle: str | None = None
    authors: list[str] = Field(min_length=1)
    isbn10: str | None = None
    isbn13: str | None = None
    external_id: str | None = None
    categories: list[str] = Field(default_factory=list)
    description: str | None = None
    publisher: str | None = None
    published_year: int | None = None
    cover_url: str | None = None
    source_attribution: list[str] = Field(default_factory=list)
    average_rating: float | None = None
    ratings_count: int | None = None
    popularity_rank: float | None = None
    is_featured: bool = False
    is_bestseller: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        return value.strip()

    @field_validator("categories", "source_attribution")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return _unique(value)

    @property
    def primary_author(self) -> str:
        return self.authors[0]

    @classmethod
    def from_candidate(
        cls,
        candidate: Candidate,
        *,
        extra_categories: list[str] | None = None,
        attribution: list[str] | None = None,
        featured: bool = False,
        bestseller: bool = False,
    ) -> "BookRecord":
        return cls(
            title=candidate.title,
            subtitle=candidate.subtitle,
            authors=candidate.authors,
            isbn10=candidate.isbn10,
            isbn13=candidate.isbn13,
            external_id=candidate.external_id,
            categories=[*candidate.categories, *(extra_categories or [])],
            description=candidate.description,
            publisher=candidate.publisher,
            published_year=candidate.published_year,
            cover_url=candidate.cover_url,
            average_rating=candidate.average_rating,
            ratings_count=candidate.ratings_count,
            popularity_rank=(
                popularity_score(candidate.average_rating, candidate.ratings_count)
                if candidate.average_rating
                else None
            ),
            source_attribution=attribution or [],
            is_featured=featured,
            is_bestseller=bestseller,
        )


class KeyIdea(BaseModel):
    id: str = Field(default_factory=new_id)
    idea: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)
    confidence: Literal["high", "medium", "low"] = "medium"
    sources: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> str:
        if value in (None, ""):
            return "medium"
        return str(value).strip().lower()

    @field_validator("tags", "sources", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value


class ApplicationPoint(BaseModel):
    id: str = Field(default_factory=new_id)
    action: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def _none_to_list(cls, value: Any) -> Any:
        return [] if value is None else value


class Citation(BaseModel):
    source: str = Field(min_length=1)
    url: str | None = None


SummaryStyle = Literal["brief", "full"]


class SummaryContent(BaseModel):
    """Validated primary summary as produced by the summarizer.

    Accepts the camelCase keys of the summarizer's JSON answer as well as the
    snake_case field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    one_sentence_hook: str = Field(alias="oneSentenceHook", min_length=1)
    key_ideas: list[KeyIdea] = Field(alias="keyIdeas", min_length=1)
    how_to_apply: list[ApplicationPoint] = Field(alias="howToApply", min_length=1)
    common_pitfalls: list[str] = Field(default_factory=list, alias="commonPitfalls")
    critiques: list[str] = Field(default_factory=list)
    who_should_read: str = Field(default="", alias="whoShouldRead")
    limitations: str = ""
    citations: list[Citation] = Field(default_factory=list)
    read_time_minutes: int = Field(default=15, alias="readTimeMinutes", ge=1)
    style: SummaryStyle = "full"
    llm_model: str | None = Field(default=None, alias="llmModel")
    llm_version: str | None = Field(default=None, alias="llmVersion")

    @field_validator(
        "common_pitfalls", "critiques", "citations", "who_should_read", "limitations", mode="before"
    )
    @classmethod
    def _none_to_default(cls, value: Any, info) -> Any:
        if value is None:
            return "" if info.field_name in ("who_should_read", "limitations") else []
        return value


CONTENT_FIELDS = frozenset(SummaryContent.model_fields)


class SummaryRecord(SummaryContent):
    """Persisted summary, owned by exactly one book."""

    id: str = Field(default_factory=new_id)
    book_id: str
    extended_summary: str | None = None
    generation_date: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_content(cls, book_id: str, content: SummaryContent) -> "SummaryRecord":
        return cls(book_id=book_id, **content.model_dump())

    def content(self) -> SummaryContent:
        return SummaryContent.model_validate(self.model_dump(include=set(CONTENT_FIELDS)))


class JobStatus(str, Enum):
    """Summary job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class SummaryJob(BaseModel):
    """One summary-generation attempt for one book."""

    id: str = Field(default_factory=new_id)
    book_id: str
    status: JobStatus = JobStatus.PENDING
    style: SummaryStyle = "full"
    error_message: str | None = None
    retry_count: int = Field(default=0, ge=0)
    summary_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


__all__ = [
    "ACTIVE_STATUSES",
    "ApplicationPoint",
    "BookRecord",
    "Candidate",
    "Citation",
    "CONTENT_FIELDS",
    "JobStatus",
    "KeyIdea",
    "SummaryContent",
    "SummaryJob",
    "SummaryRecord",
    "SummaryStyle",
    "new_id",
    "normalise_isbn",
    "normalise_text",
    "popularity_score",
    "utcnow",
]
