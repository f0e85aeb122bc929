from __future__ import annotations

import pytest

from book_digest.engine import (
    DeduplicationEngine,
    IngestionPipeline,
    IngestionReport,
    IngestionRequest,
    RateLimiter,
    SummaryJobQueue,
)
from book_digest.errors import CatalogRateLimited, ExternalUnavailable, StoreWriteError
from book_digest.models import JobStatus

SHARED_ISBN = "9780735211292"


class CountingDedup(DeduplicationEngine):
    def __init__(self, store) -> None:  # noqa: ANN001
        super().__init__(store)
        self.checked: list[str] = []

    def check(self, candidate):  # noqa: ANN001
        self.checked.append(candidate.label)
        return super().check(candidate)


@pytest.fixture
def build_pipeline(store, manual_clock, recording_logger):
    def _builder(**kwargs):
        limiter = RateLimiter(min_interval=1.5, clock=manual_clock, sleep=manual_clock.sleep)
        kwargs.setdefault("logger", recording_logger)
        kwargs.setdefault("cooldown_seconds", 12.0)
        return IngestionPipeline(store, kwargs.pop("dedup", DeduplicationEngine(store)), limiter, **kwargs)

    return _builder


def _numbered(candidate_factory, count: int):
    return {
        f"id{n}": candidate_factory(title=f"Book {n}", authors=[f"Author {n}"], external_id=f"id{n}")
        for n in range(1, count + 1)
    }


def test_request_requires_something_to_fetch() -> None:
    with pytest.raises(ValueError):
        IngestionRequest()
    with pytest.raises(ValueError):
        IngestionRequest(query="x", target_count=0)


@pytest.mark.parametrize(("target", "expected"), [(5, 10), (30, 40)])
def test_search_asks_for_twice_the_target(build_pipeline, fake_source_cls, target, expected) -> None:
    source = fake_source_cls()
    build_pipeline().run(source, IngestionRequest(query="habits", target_count=target))
    assert source.calls == [("search", ("habits", expected))]


def test_search_adds_records_with_attribution(build_pipeline, fake_source_cls, candidate_factory, store) -> None:
    source = fake_source_cls(
        search_results=[
            candidate_factory(title="Atomic Habits", authors=["James Clear"], categories=["Self-Help"], isbn13=SHARED_ISBN),
            candidate_factory(title="Deep Work", authors=["Cal Newport"], external_id="dw"),
        ]
    )
    request = IngestionRequest(
        query="productivity",
        target_count=5,
        extra_categories=["Nonfiction", "Productivity"],
        featured=True,
    )
    report = build_pipeline().run(source, request)
    assert report.as_dict()["added"] == 2
    assert report.attempted == 2
    book = store.get_book(report.added_ids[0])
    assert book.categories == ["Self-Help", "Nonfiction", "Productivity"]
    assert book.source_attribution == ["Fake Catalog", "Query: productivity"]
    assert book.is_featured


def test_stops_adding_at_target(build_pipeline, fake_source_cls, candidate_factory) -> None:
    source = fake_source_cls(search_results=list(_numbered(candidate_factory, 5).values()))
    report = build_pipeline().run(source, IngestionRequest(query="q", target_count=2))
    assert report.added == 2
    assert report.attempted == 2


def test_seen_set_short_circuits_store_lookups(build_pipeline, fake_source_cls, candidate_factory, store) -> None:
    dedup = CountingDedup(store)
    source = fake_source_cls(
        search_results=[
            candidate_factory(title="Atomic Habits", authors=["James Clear"], isbn13=SHARED_ISBN),
            candidate_factory(title="Atomic Habits (Large Print)", authors=["James Clear"], isbn13=SHARED_ISBN),
        ]
    )
    report = build_pipeline(dedup=dedup).run(source, IngestionRequest(query="q"))
    assert (report.added, report.duplicate) == (1, 1)
    assert dedup.checked == ["Atomic Habits"]


def test_seen_set_is_local_to_a_run(build_pipeline, fake_source_cls, candidate_factory, store) -> None:
    dedup = CountingDedup(store)
    pipeline = build_pipeline(dedup=dedup)
    source = fake_source_cls(search_results=[candidate_factory(external_id="vol")])
    pipeline.run(source, IngestionRequest(query="q"))
    second = pipeline.run(source, IngestionRequest(query="q"))
    assert second.duplicate == 1
    assert len(dedup.checked) == 2


def test_shared_isbn_across_sources_creates_one_record(build_pipeline, fake_source_cls, candidate_factory, store) -> None:
    pipeline = build_pipeline()
    google = fake_source_cls(
        search_results=[candidate_factory(title="Atomic Habits", authors=["James Clear"], external_id="g-1", isbn13=SHARED_ISBN)]
    )
    open_library = fake_source_cls(
        search_results=[candidate_factory(title="Atomic habits", authors=["Clear, James"], external_id="OL1M", isbn13=SHARED_ISBN)]
    )
    first = pipeline.run(google, IngestionRequest(query="habits"))
    second = pipeline.run(open_library, IngestionRequest(query="habits"))
    assert (first.added, first.duplicate) == (1, 0)
    assert (second.added, second.duplicate) == (0, 1)
    assert store.count_books() == 1


def test_rate_limited_candidate_is_retried_once(build_pipeline, fake_source_cls, candidate_factory, manual_clock) -> None:
    source = fake_source_cls(
        by_id=_numbered(candidate_factory, 5),
        errors={"id:id3": [CatalogRateLimited("Fake Catalog")]},
    )
    request = IngestionRequest(external_ids=["id1", "id2", "id3", "id4", "id5"])
    report = build_pipeline().run(source, request)

    assert report.attempted == 5
    assert report.added == 5
    assert [call for call in source.calls if call == ("fetch_by_id", "id3")] == [("fetch_by_id", "id3")] * 2
    assert [call[1] for call in source.calls][-2:] == ["id4", "id5"]
    assert manual_clock.sleeps == [1.5, 1.5, 12.0, 1.5, 1.5]


def test_rate_limited_twice_fails_only_that_candidate(
    build_pipeline, fake_source_cls, candidate_factory, recording_logger
) -> None:
    source = fake_source_cls(
        by_id=_numbered(candidate_factory, 5),
        errors={"id:id3": [CatalogRateLimited("Fake Catalog"), CatalogRateLimited("Fake Catalog")]},
    )
    report = build_pipeline().run(source, IngestionRequest(external_ids=["id1", "id2", "id3", "id4", "id5"]))
    assert report.attempted == 5
    assert (report.added, report.failed) == (4, 1)
    assert report.failures[0][0] == "id3"
    assert "rate_limited_backoff" in recording_logger.names("warning")


def test_retry_after_longer_than_cooldown_is_honoured(build_pipeline, fake_source_cls, candidate_factory, manual_clock) -> None:
    source = fake_source_cls(
        by_isbn={SHARED_ISBN: candidate_factory(isbn13=SHARED_ISBN)},
        errors={f"isbn:{SHARED_ISBN}": [CatalogRateLimited("Fake Catalog", retry_after=30)]},
    )
    report = build_pipeline().run(source, IngestionRequest(isbns=[SHARED_ISBN]))
    assert report.added == 1
    assert 30 in manual_clock.sleeps


def test_bad_candidates_never_abort_the_batch(build_pipeline, fake_source_cls, candidate_factory) -> None:
    candidates = _numbered(candidate_factory, 3)
    candidates["id2"] = candidate_factory(title="No Author", authors=[], external_id="id2")
    source = fake_source_cls(
        by_id=candidates,
        errors={"id:boom": [ExternalUnavailable("timed out")]},
    )
    request = IngestionRequest(external_ids=["id1", "id2", "boom", "missing", "id3"])
    report = build_pipeline().run(source, request)
    assert report.attempted == 5
    assert report.added == 2
    assert report.failed == 3
    assert dict(report.failures) == {
        "No Author": "missing_authors",
        "boom": "timed out",
        "missing": "not_found",
    }


def test_priority_predicate_skips_without_attempting(build_pipeline, fake_source_cls, candidate_factory) -> None:
    source = fake_source_cls(
        search_results=[
            candidate_factory(title="With ISBN", isbn13=SHARED_ISBN),
            candidate_factory(title="Without ISBN", authors=["Someone"]),
        ]
    )
    report = build_pipeline().run(
        source, IngestionRequest(query="q"), priority=lambda candidate: bool(candidate.isbn13)
    )
    assert (report.attempted, report.added, report.skipped) == (1, 1, 1)


def test_search_failure_is_reported(build_pipeline, fake_source_cls) -> None:
    source = fake_source_cls(errors={"search:q": [ExternalUnavailable("503")]})
    report = build_pipeline().run(source, IngestionRequest(query="q"))
    assert report.failed == 1
    assert report.attempted == 0
    assert report.failures == [("search:q", "503")]


def test_new_books_enqueue_summaries(build_pipeline, fake_source_cls, candidate_factory, store) -> None:
    queue = SummaryJobQueue(store, store)
    source = fake_source_cls(search_results=[candidate_factory()])
    report = build_pipeline(job_queue=queue, summary_style="brief").run(
        source, IngestionRequest(query="q", enqueue_summaries=True)
    )
    assert report.summaries_requested == 1
    job = store.find_active_job_for_book(report.added_ids[0])
    assert job.status is JobStatus.PENDING
    assert job.style == "brief"


def test_summary_request_failure_keeps_the_book(build_pipeline, fake_source_cls, candidate_factory, store) -> None:
    class BrokenQueue:
        def request_summary(self, book_id, style="full"):  # noqa: ANN001
            raise RuntimeError("queue offline")

    source = fake_source_cls(search_results=[candidate_factory()])
    report = build_pipeline(job_queue=BrokenQueue()).run(
        source, IngestionRequest(query="q", enqueue_summaries=True)
    )
    assert (report.added, report.failed) == (1, 0)
    assert report.summary_requests_failed == 1
    assert store.get_book(report.added_ids[0]) is not None


def test_reports_combine() -> None:
    first = IngestionReport(attempted=2, added=1, duplicate=1, added_ids=["a"])
    second = IngestionReport(attempted=3, failed=1, failures=[("x", "boom")])
    total = sum([first, second], IngestionReport())
    assert total.as_dict()["attempted"] == 5
    assert total.added_ids == ["a"]
    assert total.failures == [("x", "boom")]


def test_failed_candidate_does_not_shadow_a_valid_one(build_pipeline, fake_source_cls, candidate_factory, store) -> None:
    source = fake_source_cls(
        search_results=[
            candidate_factory(title="Atomic Habits", authors=[], isbn13=SHARED_ISBN, external_id="a"),
            candidate_factory(title="Atomic Habits", authors=["James Clear"], isbn13=SHARED_ISBN, external_id="b"),
        ]
    )
    report = build_pipeline().run(source, IngestionRequest(query="habits", target_count=5))

    assert (report.added, report.duplicate, report.failed) == (1, 0, 1)
    assert report.failures == [("Atomic Habits", "missing_authors")]
    assert store.count_books() == 1
    assert store.find_by_isbn13(SHARED_ISBN).external_id == "b"


def test_failed_insert_leaves_identifiers_retryable(build_pipeline, fake_source_cls, candidate_factory, store, monkeypatch) -> None:
    original_insert = store.insert_book
    attempts: list[str] = []

    def flaky_insert(book):  # noqa: ANN001
        attempts.append(book.external_id)
        if len(attempts) == 1:
            raise StoreWriteError("insert_book failed: database is locked")
        return original_insert(book)

    monkeypatch.setattr(store, "insert_book", flaky_insert)
    source = fake_source_cls(
        search_results=[
            candidate_factory(external_id="first", isbn13=SHARED_ISBN),
            candidate_factory(external_id="second", isbn13=SHARED_ISBN),
        ]
    )
    report = build_pipeline().run(source, IngestionRequest(query="q", target_count=5))

    assert attempts == ["first", "second"]
    assert (report.added, report.duplicate, report.failed) == (1, 0, 1)
    assert store.count_books() == 1
