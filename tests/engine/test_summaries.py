from __future__ import annotations

import pytest

from book_digest.engine import MemoryTTLCache, SummaryCache, SummaryJobQueue, SummaryService
from book_digest.errors import StoreWriteError, SummaryValidationError
from book_digest.models import JobStatus, SummaryContent, SummaryRecord


class CountingBackend(MemoryTTLCache):
    def __init__(self) -> None:
        super().__init__()
        self.deletes: list[str] = []

    def delete(self, key: str) -> None:
        self.deletes.append(key)
        super().delete(key)


@pytest.fixture
def backend() -> CountingBackend:
    return CountingBackend()


@pytest.fixture
def service(store, backend) -> SummaryService:
    cache = SummaryCache(backend, ttl_seconds=900)
    return SummaryService(store, cache, SummaryJobQueue(store, store))


@pytest.fixture
def stored_summary(store, make_book, summary_payload_factory) -> SummaryRecord:
    book = make_book()
    content = SummaryContent.model_validate(summary_payload_factory())
    return store.insert_summary(SummaryRecord.from_content(book.id, content))


def test_get_summary_reads_through(service, store, stored_summary, monkeypatch) -> None:
    first = service.get_summary(stored_summary.book_id)
    assert first.id == stored_summary.id

    def fail(book_id):  # noqa: ANN001
        raise AssertionError("store should not be hit on a cache hit")

    monkeypatch.setattr(store, "find_completed_summary", fail)
    second = service.get_summary(stored_summary.book_id)
    assert second == first
    assert service.cache.hits == 1


def test_missing_summary_is_none(service, make_book) -> None:
    book = make_book()
    assert service.get_summary(book.id) is None


def test_update_is_visible_on_next_read(service, stored_summary, backend) -> None:
    service.get_summary(stored_summary.book_id)
    updated = service.update_summary(stored_summary.id, one_sentence_hook="Edited hook.")
    assert updated.one_sentence_hook == "Edited hook."
    assert backend.deletes == [SummaryCache.key(stored_summary.book_id)]
    assert service.get_summary(stored_summary.book_id).one_sentence_hook == "Edited hook."


def test_update_unknown_summary_returns_none(service) -> None:
    assert service.update_summary("missing", limitations="none") is None


def test_update_rejects_unknown_fields(service, stored_summary) -> None:
    with pytest.raises(ValueError):
        service.update_summary(stored_summary.id, book_id="other")


def test_invalid_update_raises_validation_error(service, stored_summary) -> None:
    with pytest.raises(SummaryValidationError):
        service.update_summary(stored_summary.id, read_time_minutes=0)


def test_failed_write_leaves_cache_untouched(service, store, stored_summary, backend, monkeypatch) -> None:
    service.get_summary(stored_summary.book_id)

    def broken(summary_id, changes):  # noqa: ANN001
        raise StoreWriteError("update_summary failed: disk I/O error")

    monkeypatch.setattr(store, "update_summary", broken)
    with pytest.raises(StoreWriteError):
        service.update_summary(stored_summary.id, limitations="none")
    assert backend.deletes == []
    assert service.get_summary(stored_summary.book_id).limitations == stored_summary.limitations


def test_delete_summary_invalidates(service, stored_summary, backend) -> None:
    service.get_summary(stored_summary.book_id)
    assert service.delete_summary(stored_summary.id)
    assert service.get_summary(stored_summary.book_id) is None
    assert not service.delete_summary(stored_summary.id)


def test_delete_book_drops_cached_summary(service, stored_summary) -> None:
    service.get_summary(stored_summary.book_id)
    assert service.delete_book(stored_summary.book_id)
    assert service.get_summary(stored_summary.book_id) is None


def test_request_and_status_delegate_to_queue(service, make_book) -> None:
    book = make_book(title="Deep Work", authors=["Cal Newport"], isbn13=None, external_id="dw")
    job = service.request_summary(book.id, style="brief")
    assert service.get_job(job.id).status is JobStatus.PENDING
