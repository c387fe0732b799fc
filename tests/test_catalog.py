"""Tests for the Google Books, Open Library and NYT clients (httpx.MockTransport)."""

import httpx
import pytest

from booknook.infrastructure.catalog.composite import CompositeCatalog
from booknook.infrastructure.catalog.google_books import GoogleBooksClient, build_query
from booknook.infrastructure.catalog.nyt import NYTBestsellerClient
from booknook.infrastructure.catalog.open_library import OpenLibraryClient

GOOGLE_VOLUME = {
    "totalItems": 1,
    "items": [
        {
            "id": "vol-1",
            "volumeInfo": {
                "title": "The Quiet Harbor",
                "authors": ["Mara Linde"],
                "description": "A harbor town story.",
                "categories": ["Fiction"],
                "publisher": "Tidewater",
                "publishedDate": "2021-04-01",
                "imageLinks": {"thumbnail": "http://img/harbor.jpg"},
                "language": "en",
                "pageCount": 312,
                "industryIdentifiers": [{"type": "ISBN_13", "identifier": "9780316769488"}],
            },
        }
    ],
}


def recording_transport(handler_response):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler_response(request)

    return httpx.MockTransport(handler), requests


def test_build_query_precedence():
    assert build_query(isbn="123", title="T", author="A") == "isbn:123"
    assert build_query(title="T", author="A") == 'intitle:"T" inauthor:"A"'
    assert build_query(title="T") == 'intitle:"T"'
    assert build_query(author="A") == 'inauthor:"A"'
    assert build_query() is None


async def test_google_isbn_lookup():
    transport, requests = recording_transport(lambda r: httpx.Response(200, json=GOOGLE_VOLUME))
    client = GoogleBooksClient(api_key="k", transport=transport)
    record = await client.lookup_by_isbn("9780316769488")

    assert len(requests) == 1
    params = requests[0].url.params
    assert params["q"] == "isbn:9780316769488"
    assert params["maxResults"] == "1"
    assert params["key"] == "k"
    assert record.source == "google_books"
    assert record.title == "The Quiet Harbor"
    assert record.authors == ["Mara Linde"]
    assert record.page_count == 312
    assert record.thumbnail == "http://img/harbor.jpg"


async def test_google_no_results_and_errors_return_none():
    empty, _ = recording_transport(lambda r: httpx.Response(200, json={"totalItems": 0}))
    assert await GoogleBooksClient(transport=empty).lookup_by_title_author("Nothing") is None

    failing, _ = recording_transport(lambda r: httpx.Response(500))
    assert await GoogleBooksClient(transport=failing).lookup_by_isbn("9780316769488") is None

    not_json, _ = recording_transport(lambda r: httpx.Response(200, content=b"<html>"))
    assert await GoogleBooksClient(transport=not_json).lookup_by_isbn("9780316769488") is None


@pytest.mark.parametrize(
    "payload",
    [
        {"totalItems": 1, "items": ["oops"]},
        {"totalItems": 1, "items": [{"id": "v", "volumeInfo": "oops"}]},
        {"totalItems": 1, "items": {"not": "a list"}},
        ["not", "an", "object"],
    ],
)
async def test_google_malformed_payload_returns_none(payload):
    transport, _ = recording_transport(lambda r: httpx.Response(200, json=payload))
    client = GoogleBooksClient(transport=transport)

    assert await client.lookup_by_isbn("9780316769488") is None
    assert await client.lookup_by_title_author("The Quiet Harbor", "Mara Linde") is None


@pytest.mark.parametrize(
    "payload",
    [
        {"ISBN:9780316769488": "oops", "numFound": 1, "docs": ["oops"]},
        {"ISBN:9780316769488": {"authors": ["Mara Linde"]}, "numFound": 1, "docs": [{"cover_i": 7, "publisher": 3}]},
        ["not", "an", "object"],
    ],
)
async def test_open_library_malformed_payload_returns_none(payload):
    transport, _ = recording_transport(lambda r: httpx.Response(200, json=payload))
    client = OpenLibraryClient(transport=transport)

    assert await client.lookup_by_isbn("9780316769488") is None
    assert await client.lookup_by_title_author("The Quiet Harbor") is None


async def test_google_without_parameters_makes_no_request():
    transport, requests = recording_transport(lambda r: httpx.Response(200, json=GOOGLE_VOLUME))
    assert await GoogleBooksClient(transport=transport).lookup_by_title_author("", None) is None
    assert requests == []


async def test_open_library_isbn_lookup():
    payload = {
        "ISBN:9780316769488": {
            "title": "The Quiet Harbor",
            "authors": [{"name": "Mara Linde"}],
            "publishers": [{"name": "Tidewater"}],
            "publish_date": "2021",
            "number_of_pages": 300,
        }
    }
    transport, requests = recording_transport(lambda r: httpx.Response(200, json=payload))
    record = await OpenLibraryClient(transport=transport).lookup_by_isbn("9780316769488")
    assert requests[0].url.path == "/api/books"
    assert requests[0].url.params["bibkeys"] == "ISBN:9780316769488"
    assert record.source == "open_library"
    assert record.publisher == "Tidewater"
    assert record.page_count == 300


async def test_open_library_search():
    payload = {
        "numFound": 1,
        "docs": [{"title": "The Quiet Harbor", "author_name": ["Mara Linde"], "first_publish_year": 2021, "cover_i": 7}],
    }
    transport, requests = recording_transport(lambda r: httpx.Response(200, json=payload))
    record = await OpenLibraryClient(transport=transport).lookup_by_title_author("The Quiet Harbor", "Mara Linde")
    assert requests[0].url.params["q"] == "title:The Quiet Harbor author:Mara Linde"
    assert record.published_date == "2021"
    assert record.thumbnail.endswith("/7-M.jpg")


async def test_composite_falls_back_to_second_catalog():
    google, google_requests = recording_transport(lambda r: httpx.Response(200, json={"totalItems": 0}))
    payload = {"numFound": 1, "docs": [{"title": "The Quiet Harbor", "author_name": ["Mara Linde"]}]}
    library, library_requests = recording_transport(lambda r: httpx.Response(200, json=payload))
    catalog = CompositeCatalog([GoogleBooksClient(transport=google), OpenLibraryClient(transport=library)])

    record = await catalog.lookup_by_title_author("The Quiet Harbor", "Mara Linde")
    assert record.source == "open_library"
    assert len(google_requests) == 1
    assert len(library_requests) == 1


async def test_composite_swallows_client_exceptions():
    class Exploding:
        source = "exploding"

        async def lookup_by_isbn(self, isbn):
            raise RuntimeError("down")

        async def lookup_by_title_author(self, title, author=None):
            raise RuntimeError("down")

    google, _ = recording_transport(lambda r: httpx.Response(200, json=GOOGLE_VOLUME))
    catalog = CompositeCatalog([Exploding(), GoogleBooksClient(transport=google)])
    record = await catalog.lookup_by_isbn("9780316769488")
    assert record.source == "google_books"


async def test_nyt_requires_api_key():
    transport, requests = recording_transport(lambda r: httpx.Response(200, json={}))
    assert await NYTBestsellerClient(api_key="", transport=transport).fetch_bestsellers() == []
    assert requests == []


async def test_nyt_marks_new_releases_by_weeks_on_list():
    payload = {
        "results": {
            "books": [
                {"title": "FRESH", "author": "A. Writer", "rank": 1, "weeks_on_list": 2},
                {"title": "STAPLE", "author": "B. Writer", "rank": 2, "weeks_on_list": 40},
            ]
        }
    }
    transport, _ = recording_transport(lambda r: httpx.Response(200, json=payload))
    releases = await NYTBestsellerClient(api_key="k", transport=transport).fetch_bestsellers()
    assert [r.title for r in releases] == ["FRESH", "STAPLE"]
    assert [r.is_new_release for r in releases] == [True, False]
    assert releases[0].source == "nyt_bestseller"


async def test_nyt_malformed_list_returns_empty():
    transport, _ = recording_transport(lambda r: httpx.Response(200, json={"results": {"books": ["oops"]}}))
    assert await NYTBestsellerClient(api_key="k", transport=transport).fetch_bestsellers() == []
