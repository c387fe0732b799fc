"""Keyword / category / sentiment features from raw book text.

Tokenisation is deliberately naive: lower-case, split on runs of non-word
characters. Equal-frequency keywords keep first-seen order.
"""

import re
from collections import Counter
from typing import Any, Optional

from booknook.domain.entities import ContentFeatures
from booknook.services.signatures import SignatureRegistry, augmentations_for, default_registry

NON_WORD = re.compile(r"\W+")

STOP_WORDS = frozenset({
    "this", "that", "these", "those", "and", "but", "for", "with", "about",
    "from", "have", "has", "had", "were", "will", "would", "could", "should",
    "what", "when", "where", "who", "whom", "whose", "which", "why", "how",
})

CATEGORY_INDICATORS: dict[str, tuple[str, ...]] = {
    "fiction": ("novel", "story", "character", "plot"),
    "business": ("business", "management", "leadership", "strategy", "company"),
    "self-help": ("self", "improvement", "happiness", "success", "goal"),
    "psychology": ("psychology", "mind", "behavior", "personality", "mental"),
    "science": ("science", "research", "experiment", "theory", "discovery"),
    "biography": ("life", "born", "died", "biography", "memoir"),
    "history": ("history", "century", "war", "ancient", "historical"),
    "technology": ("technology", "computer", "software", "digital", "internet"),
    "philosophy": ("philosophy", "philosopher", "ethics", "moral", "existence"),
    "romance": ("love", "romance", "relationship", "kiss", "passion"),
}

POSITIVE_WORDS = ("good", "great", "happy", "love", "excellent", "wonderful", "best", "joy")
NEGATIVE_WORDS = ("bad", "terrible", "awful", "hate", "worst", "horrible", "sad", "angry")

MIN_KEYWORD_LENGTH = 4


def tokenize(text: str) -> list[str]:
    return [token for token in NON_WORD.split(text.lower()) if token]


class TextFeatureExtractor:
    """Derives :class:`ContentFeatures` from plain text. Never raises."""

    def __init__(
        self,
        registry: Optional[SignatureRegistry] = None,
        keyword_cap: int = 30,
        category_threshold: int = 5,
    ):
        self.registry = registry if registry is not None else default_registry()
        self.keyword_cap = keyword_cap
        self.category_threshold = category_threshold

    def extract(self, text: Any) -> ContentFeatures:
        if not text or not isinstance(text, str):
            return ContentFeatures()

        text_lower = text.lower()
        tokens = tokenize(text_lower)
        # Whole-word occurrence counts; splitting on \W+ yields exactly the
        # tokens a \bword\b search would find.
        occurrences = Counter(tokens)

        keywords = self._keywords(tokens)
        categories = [
            category
            for category, indicators in CATEGORY_INDICATORS.items()
            if sum(occurrences[word] for word in indicators) > self.category_threshold
        ]
        sentiment = sum(occurrences[w] for w in POSITIVE_WORDS) - sum(occurrences[w] for w in NEGATIVE_WORDS)

        for signature in augmentations_for(text_lower, self.registry):
            # Forced entries go first so truncation never drops them.
            keywords = list(dict.fromkeys([*signature.feature_keywords, *keywords]))
            categories = list(dict.fromkeys([*categories, *signature.feature_categories]))

        return ContentFeatures(
            keywords=keywords[:self.keyword_cap],
            categories=categories,
            sentiment_score=sentiment,
        )

    def _keywords(self, tokens: list[str]) -> list[str]:
        counts = Counter(
            token for token in tokens
            if len(token) >= MIN_KEYWORD_LENGTH and token not in STOP_WORDS
        )
        # most_common() is a stable sort, so ties stay in first-seen order.
        return [word for word, _ in counts.most_common(self.keyword_cap)]


def extract_features(text: Any) -> ContentFeatures:
    return TextFeatureExtractor().extract(text)
