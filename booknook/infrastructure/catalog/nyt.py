"""New York Times best-seller list client."""

import logging
from typing import Optional

import httpx

from booknook.domain.entities import NewRelease
from booknook.infrastructure.catalog.http import MALFORMED_PAYLOAD_ERRORS, JsonHttpClient

logger = logging.getLogger(__name__)

LIST_URL = "https://api.nytimes.com/svc/books/v3/lists/current/{list_name}.json"
DEFAULT_LIST = "combined-print-and-e-book-fiction"
# On the list for at most this many weeks counts as a new release.
NEW_RELEASE_WEEKS = 4


class NYTBestsellerClient(JsonHttpClient):

    source = "nyt_bestseller"

    def __init__(
        self,
        api_key: str = "",
        list_name: str = DEFAULT_LIST,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout, transport=transport)
        self.api_key = api_key
        self.list_name = list_name

    async def fetch_bestsellers(self) -> list[NewRelease]:
        if not self.api_key:
            logger.info("NYT API key not configured; skipping best-seller list")
            return []
        data = await self._get_json(LIST_URL.format(list_name=self.list_name), {"api-key": self.api_key})
        if not data:
            return []
        try:
            return self._to_releases((data.get("results") or {}).get("books") or [])
        except MALFORMED_PAYLOAD_ERRORS as exc:
            logger.warning("NYT: unreadable best-seller response: %r", exc)
            return []

    def _to_releases(self, books: list) -> list[NewRelease]:
        return [
            NewRelease(
                title=book.get("title") or "",
                author=book.get("author") or "Unknown",
                source=self.source,
                description=book.get("description") or "",
                cover_url=book.get("book_image"),
                publisher=book.get("publisher"),
                isbn=book.get("primary_isbn13"),
                rank=book.get("rank"),
                weeks_on_list=book.get("weeks_on_list"),
                is_new_release=(book.get("weeks_on_list") or 0) <= NEW_RELEASE_WEEKS,
            )
            for book in books
            if book.get("title")
        ]
