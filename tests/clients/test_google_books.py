from __future__ import annotations

import httpx
import pytest

from book_digest.clients import GoogleBooksSource
from book_digest.errors import CatalogRateLimited, ExternalUnavailable

VOLUME = {
    "id": "lFhbDwAAQBAJ",
    "volumeInfo": {
        "title": "Atomic Habits",
        "subtitle": "An Easy & Proven Way to Build Good Habits & Break Bad Ones",
        "authors": ["James Clear"],
        "publisher": "Penguin",
        "publishedDate": "2018-10-16",
        "description": "Tiny changes, remarkable results.",
        "categories": ["Self-Help"],
        "industryIdentifiers": [
            {"type": "ISBN_10", "identifier": "0735211299"},
            {"type": "ISBN_13", "identifier": "9780735211292"},
        ],
        "imageLinks": {"smallThumbnail": "http://example/s.jpg", "thumbnail": "http://example/t.jpg"},
    },
}


def _install(monkeypatch, source, status=200, json=None, headers=None, error=None):  # noqa: ANN001
    calls: list[dict] = []

    def fake_request(method, url, params=None):  # noqa: ANN001
        calls.append({"method": method, "url": url, "params": dict(params or {})})
        if error is not None:
            raise error
        return httpx.Response(status, json=json, headers=headers, request=httpx.Request(method, url))

    monkeypatch.setattr(source._client, "request", fake_request)
    return calls


@pytest.fixture
def source():
    catalog = GoogleBooksSource(api_key="secret")
    yield catalog
    catalog.close()


def test_search_maps_volumes(monkeypatch, source) -> None:
    calls = _install(monkeypatch, source, json={"items": [VOLUME]})
    results = source.search("atomic habits", 10)
    assert calls[0]["url"] == "https://www.googleapis.com/books/v1/volumes"
    assert calls[0]["params"]["q"] == "atomic habits"
    assert calls[0]["params"]["maxResults"] == 10
    assert calls[0]["params"]["key"] == "secret"
    candidate = results[0]
    assert candidate.external_id == "lFhbDwAAQBAJ"
    assert candidate.isbn13 == "9780735211292"
    assert candidate.isbn10 == "0735211299"
    assert candidate.published_year == 2018
    assert candidate.cover_url == "http://example/t.jpg"
    assert candidate.source_name == "google_books"


def test_search_caps_page_size_and_handles_no_items(monkeypatch, source) -> None:
    calls = _install(monkeypatch, source, json={"totalItems": 0})
    assert source.search("nothing", 100) == []
    assert calls[0]["params"]["maxResults"] == 40


def test_fetch_by_id_and_isbn(monkeypatch, source) -> None:
    calls = _install(monkeypatch, source, json=VOLUME)
    assert source.fetch_by_id("lFhbDwAAQBAJ").title == "Atomic Habits"
    assert calls[0]["url"].endswith("/volumes/lFhbDwAAQBAJ")

    calls = _install(monkeypatch, source, json={"items": [VOLUME]})
    assert source.fetch_by_isbn("9780735211292").isbn13 == "9780735211292"
    assert calls[0]["params"]["q"] == "isbn:9780735211292"

    _install(monkeypatch, source, json={"totalItems": 0})
    assert source.fetch_by_isbn("0000000000") is None


def test_not_found_is_none(monkeypatch, source) -> None:
    _install(monkeypatch, source, status=404, json={"error": {"code": 404}})
    assert source.fetch_by_id("missing") is None


def test_rate_limit_carries_retry_after(monkeypatch, source) -> None:
    _install(monkeypatch, source, status=429, json={}, headers={"Retry-After": "30"})
    with pytest.raises(CatalogRateLimited) as excinfo:
        source.search("habits", 10)
    assert excinfo.value.retry_after == 30
    assert excinfo.value.source_name == "Google Books API"


def test_rate_limit_without_header(monkeypatch, source) -> None:
    _install(monkeypatch, source, status=429, json={})
    with pytest.raises(CatalogRateLimited) as excinfo:
        source.fetch_by_id("x")
    assert excinfo.value.retry_after is None


@pytest.mark.parametrize(
    "kwargs",
    [
        {"status": 503, "json": {}},
        {"error": httpx.ReadTimeout("slow")},
        {"error": httpx.ConnectError("refused")},
    ],
)
def test_transport_and_server_errors_are_unavailable(monkeypatch, source, kwargs) -> None:
    _install(monkeypatch, source, **kwargs)
    with pytest.raises(ExternalUnavailable):
        source.search("habits", 10)


def test_no_key_param_without_api_key(monkeypatch) -> None:
    catalog = GoogleBooksSource()
    calls = _install(monkeypatch, catalog, json={"items": []})
    catalog.search("habits", 5)
    assert "key" not in calls[0]["params"]
    catalog.close()


def test_ratings_are_mapped(monkeypatch, source) -> None:
    rated = {"id": VOLUME["id"], "volumeInfo": {**VOLUME["volumeInfo"], "averageRating": 4.5, "ratingsCount": 2140}}
    _install(monkeypatch, source, json=rated)
    candidate = source.fetch_by_id("lFhbDwAAQBAJ")
    assert candidate.average_rating == 4.5
    assert candidate.ratings_count == 2140

    _install(monkeypatch, source, json=VOLUME)
    unrated = source.fetch_by_id("lFhbDwAAQBAJ")
    assert unrated.average_rating is None
    assert unrated.ratings_count is None
