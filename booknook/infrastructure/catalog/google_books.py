"""Google Books catalog client."""

import logging
from datetime import date, timedelta
from typing import Optional

import httpx

from booknook.domain.entities import CatalogRecord, NewRelease
from booknook.domain.repositories import ICatalogClient
from booknook.infrastructure.catalog.http import MALFORMED_PAYLOAD_ERRORS, JsonHttpClient

logger = logging.getLogger(__name__)

API_URL = "https://www.googleapis.com/books/v1/volumes"


def build_query(
    isbn: Optional[str] = None,
    title: Optional[str] = None,
    author: Optional[str] = None,
) -> Optional[str]:
    """ISBN beats title+author beats title beats author. No inputs, no query."""
    if isbn:
        return f"isbn:{isbn}"
    if title and author:
        return f'intitle:"{title}" inauthor:"{author}"'
    if title:
        return f'intitle:"{title}"'
    if author:
        return f'inauthor:"{author}"'
    return None


def _isbn_from(volume_info: dict) -> Optional[str]:
    for identifier in volume_info.get("industryIdentifiers") or []:
        if identifier.get("type") in ("ISBN_13", "ISBN_10"):
            return identifier.get("identifier")
    return None


class GoogleBooksClient(JsonHttpClient, ICatalogClient):

    source = "google_books"

    def __init__(
        self,
        api_key: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.api_key = api_key

    async def lookup_by_isbn(self, isbn: str) -> Optional[CatalogRecord]:
        record = await self._search(build_query(isbn=isbn))
        if record and not record.isbn:
            record.isbn = isbn
        return record

    async def lookup_by_title_author(
        self, title: str, author: Optional[str] = None,
    ) -> Optional[CatalogRecord]:
        return await self._search(build_query(title=title, author=author))

    async def _search(self, query: Optional[str]) -> Optional[CatalogRecord]:
        if not query:
            return None
        params = {"q": query, "maxResults": 1}
        if self.api_key:
            params["key"] = self.api_key
        logger.info("Google Books: searching with query %s", query)
        data = await self._get_json(API_URL, params)
        try:
            if not data or not data.get("totalItems") or not data.get("items"):
                logger.info("Google Books: no results for %s", query)
                return None
            return self._to_record(data["items"][0])
        except MALFORMED_PAYLOAD_ERRORS as exc:
            logger.warning("Google Books: unreadable response for %s: %r", query, exc)
            return None

    @classmethod
    def _to_record(cls, item: dict) -> CatalogRecord:
        info = item.get("volumeInfo") or {}
        return CatalogRecord(
            source=cls.source,
            title=info.get("title"),
            authors=list(info.get("authors") or []),
            description=info.get("description") or "",
            categories=list(info.get("categories") or []),
            publisher=info.get("publisher"),
            published_date=info.get("publishedDate"),
            thumbnail=(info.get("imageLinks") or {}).get("thumbnail"),
            language=info.get("language"),
            isbn=_isbn_from(info),
            page_count=info.get("pageCount"),
            external_id=item.get("id"),
            average_rating=info.get("averageRating"),
            ratings_count=info.get("ratingsCount"),
        )

    async def fetch_recent(self, months: int = 3, max_results: int = 40) -> list[NewRelease]:
        """Newest-published volumes from the last *months* months."""
        since = (date.today() - timedelta(days=30 * months)).isoformat()
        params = {"q": f"publishedDate:>{since}", "orderBy": "newest", "maxResults": max_results}
        if self.api_key:
            params["key"] = self.api_key
        data = await self._get_json(API_URL, params)
        if not data:
            return []
        try:
            return self._to_releases(data.get("items") or [])
        except MALFORMED_PAYLOAD_ERRORS as exc:
            logger.warning("Google Books: unreadable recent-titles response: %r", exc)
            return []

    def _to_releases(self, items: list) -> list[NewRelease]:
        releases = []
        for item in items:
            info = item.get("volumeInfo") or {}
            if not info.get("title"):
                continue
            identifiers = info.get("industryIdentifiers") or []
            releases.append(
                NewRelease(
                    title=info["title"],
                    author=", ".join(info.get("authors") or []) or "Unknown",
                    source=self.source,
                    description=info.get("description") or "",
                    cover_url=(info.get("imageLinks") or {}).get("thumbnail"),
                    publisher=info.get("publisher"),
                    isbn=identifiers[0].get("identifier") if identifiers else None,
                    publication_date=info.get("publishedDate"),
                )
            )
        return releases
