from __future__ import annotations

import httpx
import pytest

from book_digest.clients import OpenLibrarySource
from book_digest.errors import CatalogRateLimited, ExternalUnavailable

SEARCH_DOC = {
    "key": "/works/OL17930368W",
    "title": "Atomic Habits",
    "author_name": ["James Clear"],
    "isbn": ["0735211299", "9780735211292"],
    "subject": ["Habit", "Self-help", "Success", "Behavior modification", "Psychology", "Extra"],
    "publisher": ["Avery"],
    "first_publish_year": 2016,
    "cover_i": 12539702,
    "cover_edition_key": "OL27918581M",
    "edition_key": ["OL27918581M", "OL28000000M"],
}

BOOK_DATA = {
    "title": "Atomic Habits",
    "authors": [{"name": "James Clear", "url": "https://openlibrary.org/authors/OL7422948A"}],
    "identifiers": {
        "openlibrary": ["OL27918581M"],
        "isbn_13": ["9780735211292"],
        "isbn_10": ["0735211299"],
    },
    "publishers": [{"name": "Avery"}],
    "publish_date": "Oct 16, 2018",
    "subjects": [{"name": "Habit"}, {"name": "Self-help"}],
    "cover": {"medium": "https://covers.openlibrary.org/b/id/12539702-M.jpg"},
    "notes": "Includes bibliographical references.",
}


def _install(monkeypatch, source, status=200, json=None, headers=None, error=None):  # noqa: ANN001
    calls: list[dict] = []

    def fake_request(method, url, params=None):  # noqa: ANN001
        calls.append({"url": url, "params": dict(params or {})})
        if error is not None:
            raise error
        return httpx.Response(status, json=json, headers=headers, request=httpx.Request(method, url))

    monkeypatch.setattr(source._client, "request", fake_request)
    return calls


@pytest.fixture
def source():
    catalog = OpenLibrarySource()
    yield catalog
    catalog.close()


def test_search_maps_docs(monkeypatch, source) -> None:
    calls = _install(monkeypatch, source, json={"numFound": 1, "docs": [SEARCH_DOC]})
    [candidate] = source.search("atomic habits", 10)
    assert calls[0]["url"] == "https://openlibrary.org/search.json"
    assert calls[0]["params"]["limit"] == 10
    assert candidate.external_id == "OL27918581M"
    assert candidate.isbn13 == "9780735211292"
    assert candidate.isbn10 == "0735211299"
    assert len(candidate.categories) == 5
    assert candidate.publisher == "Avery"
    assert candidate.cover_url == "https://covers.openlibrary.org/b/id/12539702-L.jpg"
    assert candidate.source_name == "open_library"


def test_search_falls_back_to_work_key(monkeypatch, source) -> None:
    doc = {"key": "/works/OL1W", "title": "Obscure", "author_name": ["Anon"]}
    _install(monkeypatch, source, json={"docs": [doc]})
    [candidate] = source.search("obscure", 2)
    assert candidate.external_id == "OL1W"
    assert candidate.cover_url is None


def test_fetch_by_isbn_uses_books_api(monkeypatch, source) -> None:
    calls = _install(monkeypatch, source, json={"ISBN:9780735211292": BOOK_DATA})
    candidate = source.fetch_by_isbn("9780735211292")
    assert calls[0]["params"] == {"bibkeys": "ISBN:9780735211292", "format": "json", "jscmd": "data"}
    assert candidate.external_id == "OL27918581M"
    assert candidate.authors == ["James Clear"]
    assert candidate.published_year == 2018
    assert candidate.categories == ["Habit", "Self-help"]
    assert candidate.cover_url.endswith("-M.jpg")
    assert candidate.description == "Includes bibliographical references."


def test_fetch_by_id_missing_entry_is_none(monkeypatch, source) -> None:
    _install(monkeypatch, source, json={})
    assert source.fetch_by_id("OL0M") is None


def test_fetch_by_id_keeps_requested_id(monkeypatch, source) -> None:
    data = {key: value for key, value in BOOK_DATA.items() if key != "identifiers"}
    _install(monkeypatch, source, json={"OLID:OL27918581M": data})
    assert source.fetch_by_id("OL27918581M").external_id == "OL27918581M"


def test_rate_limit_and_outage(monkeypatch, source) -> None:
    _install(monkeypatch, source, status=429, json={}, headers={"Retry-After": "5"})
    with pytest.raises(CatalogRateLimited) as excinfo:
        source.search("habits", 4)
    assert excinfo.value.retry_after == 5

    _install(monkeypatch, source, status=500, json={})
    with pytest.raises(ExternalUnavailable):
        source.fetch_by_isbn("9780735211292")


def test_invalid_json_is_unavailable(monkeypatch, source) -> None:
    def fake_request(method, url, params=None):  # noqa: ANN001
        return httpx.Response(200, content=b"<html>", request=httpx.Request(method, url))

    monkeypatch.setattr(source._client, "request", fake_request)
    with pytest.raises(ExternalUnavailable):
        source.search("habits", 4)
