"""Catalog client that tries several catalogs in order."""

import logging
from typing import Optional

from booknook.domain.entities import CatalogRecord
from booknook.domain.repositories import ICatalogClient

logger = logging.getLogger(__name__)


class CompositeCatalog(ICatalogClient):
    """Returns the first hit; the record's ``source`` tells which catalog answered."""

    source = "composite"

    def __init__(self, clients: list[ICatalogClient]):
        self.clients = clients

    async def lookup_by_isbn(self, isbn: str) -> Optional[CatalogRecord]:
        for client in self.clients:
            record = await self._safe(client.lookup_by_isbn(isbn), client)
            if record:
                return record
        return None

    async def lookup_by_title_author(
        self, title: str, author: Optional[str] = None,
    ) -> Optional[CatalogRecord]:
        for client in self.clients:
            record = await self._safe(client.lookup_by_title_author(title, author), client)
            if record:
                return record
        return None

    @staticmethod
    async def _safe(lookup, client: ICatalogClient) -> Optional[CatalogRecord]:
        try:
            return await lookup
        except Exception as exc:
            logger.warning("Catalog %s lookup failed: %s", client.source, exc)
            return None
