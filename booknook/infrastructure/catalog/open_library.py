"""Open Library catalog client, used when Google Books has nothing."""

import logging
from typing import Optional

from booknook.domain.entities import CatalogRecord
from booknook.domain.repositories import ICatalogClient
from booknook.infrastructure.catalog.http import MALFORMED_PAYLOAD_ERRORS, JsonHttpClient

logger = logging.getLogger(__name__)

BASE_URL = "https://openlibrary.org"
COVER_URL = "https://covers.openlibrary.org/b/id/{cover_id}-M.jpg"


class OpenLibraryClient(JsonHttpClient, ICatalogClient):

    source = "open_library"

    async def lookup_by_isbn(self, isbn: str) -> Optional[CatalogRecord]:
        if not isbn:
            return None
        key = f"ISBN:{isbn}"
        data = await self._get_json(
            f"{BASE_URL}/api/books", {"bibkeys": key, "format": "json", "jscmd": "data"}
        )
        try:
            if not data or key not in data:
                return None
            return self._from_edition(data[key], isbn)
        except MALFORMED_PAYLOAD_ERRORS as exc:
            logger.warning("Open Library: unreadable response for %s: %r", key, exc)
            return None

    async def lookup_by_title_author(
        self, title: str, author: Optional[str] = None,
    ) -> Optional[CatalogRecord]:
        if title and author:
            query = f"title:{title} author:{author}"
        elif title:
            query = f"title:{title}"
        elif author:
            query = f"author:{author}"
        else:
            return None
        data = await self._get_json(f"{BASE_URL}/search.json", {"q": query, "limit": 1})
        try:
            if not data or not data.get("numFound") or not data.get("docs"):
                return None
            return self._from_search_doc(data["docs"][0])
        except MALFORMED_PAYLOAD_ERRORS as exc:
            logger.warning("Open Library: unreadable search response for %s: %r", query, exc)
            return None

    @classmethod
    def _from_edition(cls, book: dict, isbn: str) -> CatalogRecord:
        publishers = book.get("publishers") or []
        return CatalogRecord(
            source=cls.source,
            title=book.get("title"),
            authors=[a.get("name") for a in book.get("authors") or [] if a.get("name")],
            publisher=publishers[0].get("name") if publishers else None,
            published_date=book.get("publish_date"),
            thumbnail=(book.get("cover") or {}).get("medium"),
            isbn=isbn,
            page_count=book.get("number_of_pages"),
        )

    @classmethod
    def _from_search_doc(cls, doc: dict) -> CatalogRecord:
        publishers = doc.get("publisher") or []
        isbns = doc.get("isbn") or []
        return CatalogRecord(
            source=cls.source,
            title=doc.get("title"),
            authors=list(doc.get("author_name") or []),
            publisher=publishers[0] if publishers else None,
            published_date=str(doc["first_publish_year"]) if doc.get("first_publish_year") else None,
            thumbnail=COVER_URL.format(cover_id=doc["cover_i"]) if doc.get("cover_i") else None,
            isbn=isbns[0] if isbns else None,
            page_count=doc.get("number_of_pages_median"),
        )
