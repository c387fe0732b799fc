"""New-release listing: NYT best-sellers merged with recent Google Books titles."""

import asyncio
import logging
from typing import Optional

from booknook.domain.entities import NewRelease
from booknook.domain.services import INewReleaseService
from booknook.infrastructure.cache import TTLCache
from booknook.infrastructure.catalog.google_books import GoogleBooksClient
from booknook.infrastructure.catalog.nyt import NYTBestsellerClient

logger = logging.getLogger(__name__)

CACHE_KEY = "new_releases"


def release_key(release: NewRelease) -> str:
    return f"{release.title}-{release.author}".lower()


def merge_releases(*sources: list[NewRelease]) -> list[NewRelease]:
    """Concatenate in source order, dropping later duplicates of the same title-author."""
    seen: set[str] = set()
    merged: list[NewRelease] = []
    for releases in sources:
        for release in releases:
            key = release_key(release)
            if key in seen:
                continue
            seen.add(key)
            merged.append(release)
    return merged


class NewReleaseService(INewReleaseService):

    def __init__(
        self,
        nyt_client: NYTBestsellerClient,
        google_client: GoogleBooksClient,
        cache: Optional[TTLCache[list[NewRelease]]] = None,
    ):
        self.nyt_client = nyt_client
        self.google_client = google_client
        self.cache = cache if cache is not None else TTLCache(ttl_seconds=24 * 3600)

    async def fetch_new_releases(self, max_results: int = 20) -> list[NewRelease]:
        cached = self.cache.get(CACHE_KEY)
        if cached is not None:
            logger.debug("Serving %d new releases from cache", len(cached))
            return cached[:max_results]

        releases = await self._refresh()
        if releases:
            self.cache.set(CACHE_KEY, releases)
            return releases[:max_results]

        stale = self.cache.get_stale(CACHE_KEY)
        if stale:
            logger.warning("New-release refresh came back empty; serving %d stale entries", len(stale))
            return stale[:max_results]
        return []

    async def _refresh(self) -> list[NewRelease]:
        results = await asyncio.gather(
            self.nyt_client.fetch_bestsellers(),
            self.google_client.fetch_recent(),
            return_exceptions=True,
        )
        sources = []
        for name, result in zip(("nyt", "google_books"), results):
            if isinstance(result, Exception):
                logger.warning("New-release source %s failed: %s", name, result)
                sources.append([])
            else:
                sources.append(result)
        merged = merge_releases(*sources)
        logger.info(
            "Fetched %d new releases (%d NYT, %d Google Books)",
            len(merged), len(sources[0]), len(sources[1]),
        )
        return merged
