"""Content-analysis classifiers.

Each classifier reports a title/author guess with a self-assessed confidence.
The metadata pipeline only lets a guess override earlier results when the
confidence clears its threshold.
"""

import json
import logging
import re
from typing import Optional

import httpx

from booknook.domain.entities import ContentClassification
from booknook.domain.services import IContentClassifier
from booknook.infrastructure.llm.prompts import CONTENT_IDENTIFICATION_PROMPT
from booknook.services.signatures import SignatureRegistry, default_registry

logger = logging.getLogger(__name__)

PROMPT_TEXT_CHARS = 4000


# ---------------------------------------------------------------------------
# Heuristic (default / offline)
# ---------------------------------------------------------------------------
class HeuristicContentClassifier(IContentClassifier):
    """Evaluates each registered signature's classifier rule against the text."""

    def __init__(self, registry: Optional[SignatureRegistry] = None):
        self.registry = registry if registry is not None else default_registry()

    async def classify(self, text: str) -> Optional[ContentClassification]:
        if not text:
            return None
        text_lower = text.lower()
        for signature in self.registry:
            rule = signature.classifier_rule
            if rule is not None and rule.matches(text_lower):
                logger.debug("Heuristic classifier matched %s", signature.key)
                return ContentClassification(
                    title=signature.metadata.title,
                    author=signature.metadata.author,
                    confidence=signature.classifier_confidence,
                    description=signature.classifier_description,
                    tags=list(signature.classifier_tags),
                )
        return None


# ---------------------------------------------------------------------------
# Llama 3 (local / Ollama)
# ---------------------------------------------------------------------------
class LlamaContentClassifier(IContentClassifier):
    """Classifier backed by `Ollama <https://ollama.com>`_ over **httpx**.

    Falls back to :class:`HeuristicContentClassifier` when Ollama is
    unreachable or its answer cannot be parsed.

    Constructor args:
        base_url:  Ollama server URL (default ``http://localhost:11434``).
        model:     Model tag pulled into Ollama (default ``llama3``).
        timeout:   Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3",
        timeout: float = 45.0,
        fallback: Optional[IContentClassifier] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.transport = transport
        self._fallback = fallback or HeuristicContentClassifier()

    # -- internal helpers ---------------------------------------------------

    async def _chat(self, messages: list[dict[str, str]]) -> str:
        """Call ``POST /api/chat`` (non-streaming) and return the response text."""
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.1},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(f"{self.base_url}/api/chat", json=payload)
                resp.raise_for_status()
                data = resp.json()
                return data.get("message", {}).get("content", "")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Ollama /api/chat failed (%s); falling back to heuristics", exc)
            return ""

    @staticmethod
    def _parse(raw: str) -> Optional[ContentClassification]:
        # Models sometimes wrap the object in prose or code fences.
        match = re.search(r"\{.*\}", raw, re.DOTALL)
        if not match:
            return None
        try:
            data = json.loads(match.group(0))
            title = str(data.get("title") or "").strip()
            author = str(data.get("author") or "").strip()
            confidence = float(data.get("confidence") or 0)
        except (ValueError, TypeError, AttributeError):
            return None
        if not title or not author:
            return None
        tags = data.get("tags") or []
        return ContentClassification(
            title=title,
            author=author,
            confidence=max(0.0, min(confidence, 1.0)),
            description=(data.get("description") or None),
            tags=[str(tag) for tag in tags] if isinstance(tags, list) else [],
        )

    # -- IContentClassifier interface --------------------------------------

    async def classify(self, text: str) -> Optional[ContentClassification]:
        if not text:
            return None
        messages = CONTENT_IDENTIFICATION_PROMPT.render(text=text[:PROMPT_TEXT_CHARS])
        logger.info("LlamaClassifier: requesting identification from %s (model=%s)", self.base_url, self.model)
        result = self._parse(await self._chat(messages))
        if result is None:
            logger.info("LlamaClassifier: no usable answer; using heuristics")
            return await self._fallback.classify(text)
        return result
