"""Shared fixtures: config builders, a temporary store and fake collaborators."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

import pytest

from book_digest.clients.base import CatalogSource
from book_digest.config import (
    ConfigLocator,
    ConfigRepository,
    GlobalConfig,
    ScheduleConfig,
    SourceConfig,
)
from book_digest.infra import SQLiteCatalogStore, SQLiteManager
from book_digest.models import BookRecord, Candidate


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("BOOK_DIGEST_HOME", str(tmp_path))
    monkeypatch.delenv("GOOGLE_BOOKS_API_KEY", raising=False)
    return tmp_path


@pytest.fixture
def sample_global_config(tmp_path: Path) -> GlobalConfig:
    return GlobalConfig(
        store_path=tmp_path / "catalog.db",
        request_delay_seconds=0,
        rate_limit_cooldown_seconds=0,
        summary_drain_interval_seconds=None,
    )


@pytest.fixture
def sample_source_config() -> Callable[..., SourceConfig]:
    def _builder(**overrides: Any) -> SourceConfig:
        base: dict[str, Any] = {
            "source_name": "Example",
            "provider": "google_books",
            "query": "subject:psychology",
            "target_count": 5,
            "extra_categories": ["Nonfiction"],
            "schedule": ScheduleConfig(),
        }
        base.update(overrides)
        return SourceConfig(**base)

    return _builder


@pytest.fixture
def temp_config_repository(tmp_path: Path) -> Iterable[ConfigRepository]:
    locator = ConfigLocator(project_root=tmp_path)
    yield ConfigRepository(locator)


@pytest.fixture
def store(tmp_path: Path) -> Iterable[SQLiteCatalogStore]:
    manager = SQLiteManager()
    yield SQLiteCatalogStore(manager, tmp_path / "catalog.db")
    manager.close_all()


@pytest.fixture
def make_book(store: SQLiteCatalogStore) -> Callable[..., BookRecord]:
    def _builder(**overrides: Any) -> BookRecord:
        data: dict[str, Any] = {
            "title": "Atomic Habits",
            "authors": ["James Clear"],
            "isbn13": "9780735211292",
            "external_id": "lFhbDwAAQBAJ",
            "description": "Tiny changes, remarkable results.",
            "categories": ["Self-Help"],
        }
        data.update(overrides)
        return store.insert_book(BookRecord(**data))

    return _builder


def make_candidate(**overrides: Any) -> Candidate:
    data: dict[str, Any] = {
        "title": "Deep Work",
        "authors": ["Cal Newport"],
        "source_name": "fake",
    }
    data.update(overrides)
    return Candidate(**data)


def summary_payload(**overrides: Any) -> dict[str, Any]:
    """Summarizer answer in the camelCase shape the prompt asks for."""

    payload: dict[str, Any] = {
        "oneSentenceHook": "Small habits compound into remarkable results.",
        "keyIdeas": [
            {"idea": "Habits are the compound interest of self-improvement.", "confidence": "High"},
            {"idea": "Focus on systems instead of goals.", "tags": ["systems"]},
        ],
        "howToApply": [{"action": "Stack a new habit onto an existing one."}],
        "commonPitfalls": ["Relying on motivation"],
        "critiques": ["Anecdotal evidence"],
        "whoShouldRead": "Anyone building routines.",
        "limitations": "Light on research detail.",
        "citations": [{"source": "Atomic Habits, ch. 1"}],
        "readTimeMinutes": 12,
    }
    payload.update(overrides)
    return payload


class ManualClock:
    """Deterministic clock whose ``sleep`` only advances time."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCatalogSource(CatalogSource):
    """In-memory catalog. ``errors`` maps an operation key to exceptions raised in order."""

    name = "fake"
    display_name = "Fake Catalog"

    def __init__(
        self,
        search_results: list[Candidate] | None = None,
        by_id: dict[str, Candidate] | None = None,
        by_isbn: dict[str, Candidate] | None = None,
        errors: dict[str, list[Exception]] | None = None,
    ) -> None:
        self.search_results = list(search_results or [])
        self.by_id = dict(by_id or {})
        self.by_isbn = dict(by_isbn or {})
        self.errors = {key: list(value) for key, value in (errors or {}).items()}
        self.calls: list[tuple[str, Any]] = []
        self.closed = False

    def _maybe_raise(self, key: str) -> None:
        pending = self.errors.get(key)
        if pending:
            raise pending.pop(0)

    def search(self, query: str, max_results: int) -> list[Candidate]:
        self.calls.append(("search", (query, max_results)))
        self._maybe_raise(f"search:{query}")
        return self.search_results[:max_results]

    def fetch_by_id(self, external_id: str) -> Candidate | None:
        self.calls.append(("fetch_by_id", external_id))
        self._maybe_raise(f"id:{external_id}")
        return self.by_id.get(external_id)

    def fetch_by_isbn(self, isbn: str) -> Candidate | None:
        self.calls.append(("fetch_by_isbn", isbn))
        self._maybe_raise(f"isbn:{isbn}")
        return self.by_isbn.get(isbn)

    def close(self) -> None:
        self.closed = True


class FakeSummarizer:
    def __init__(
        self,
        primary: Any = None,
        primary_error: Exception | None = None,
        extended: str | None = "A long narrative walk through the book.",
        extended_error: Exception | None = None,
    ) -> None:
        self.primary = primary if primary is not None else summary_payload()
        self.primary_error = primary_error
        self.extended = extended
        self.extended_error = extended_error
        self.primary_calls: list[tuple[Any, ...]] = []
        self.extended_calls: list[tuple[Any, ...]] = []

    def generate_primary(self, title, authors, description, categories, style):  # noqa: ANN001
        self.primary_calls.append((title, tuple(authors), description, tuple(categories), style))
        if self.primary_error is not None:
            raise self.primary_error
        return self.primary

    def generate_extended(self, title, authors, description, categories):  # noqa: ANN001
        self.extended_calls.append((title, tuple(authors), description, tuple(categories)))
        if self.extended_error is not None:
            raise self.extended_error
        return self.extended


class RecordingLogger:
    """Minimal bound-logger stand-in that keeps every event."""

    def __init__(self, events: list[tuple[str, str, dict[str, Any]]] | None = None, **context: Any) -> None:
        self.events = events if events is not None else []
        self.context = context

    def bind(self, **context: Any) -> "RecordingLogger":
        return RecordingLogger(self.events, **{**self.context, **context})

    def _record(self, level: str, event: str, **kwargs: Any) -> None:
        self.events.append((level, event, {**self.context, **kwargs}))

    def debug(self, event: str, **kwargs: Any) -> None:
        self._record("debug", event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._record("error", event, **kwargs)

    def names(self, level: str | None = None) -> list[str]:
        return [event for lvl, event, _ in self.events if level is None or lvl == level]


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def candidate_factory() -> Callable[..., Candidate]:
    return make_candidate


@pytest.fixture
def summary_payload_factory() -> Callable[..., dict[str, Any]]:
    return summary_payload


@pytest.fixture
def fake_source_cls() -> type[FakeCatalogSource]:
    return FakeCatalogSource


@pytest.fixture
def fake_summarizer_cls() -> type[FakeSummarizer]:
    return FakeSummarizer
