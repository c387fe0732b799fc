"""Shared HTTP plumbing for third-party catalog clients."""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

# Raised by dict-walking code when a payload does not have the documented shape.
MALFORMED_PAYLOAD_ERRORS = (AttributeError, KeyError, IndexError, TypeError, ValueError)


class JsonHttpClient:
    """One bounded GET per call; every failure collapses to ``None``.

    *transport* is passed straight to :class:`httpx.AsyncClient` (tests hand
    in an :class:`httpx.MockTransport`).
    """

    source = "http"

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def _get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Optional[Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.get(url, params=params)
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("%s request to %s failed: %s", self.source, url, exc)
            return None
