"""Content similarity between two feature sets. Pure, no I/O."""

import math
import re
from typing import Iterable

from booknook.domain.entities import Book, ContentFeatures

SENTIMENT_SCALE = 100


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


class ContentSimilarity:
    """Weighted blend of keyword Jaccard, category Jaccard and sentiment closeness.

    Weights default to 0.4 / 0.5 / 0.1, favouring category agreement. The
    sentiment term only counts once the keyword or category sets share
    something; fully disjoint feature sets score 0.
    """

    def __init__(
        self,
        keyword_weight: float = 0.4,
        category_weight: float = 0.5,
        sentiment_weight: float = 0.1,
    ):
        self.keyword_weight = keyword_weight
        self.category_weight = category_weight
        self.sentiment_weight = sentiment_weight

    def score(self, a: ContentFeatures, b: ContentFeatures) -> float:
        if a is None or b is None:
            return 0.0
        keyword_sim = jaccard(a.keywords, b.keywords)
        category_sim = jaccard(a.categories, b.categories)
        if keyword_sim == 0 and category_sim == 0:
            # Sentiment closeness alone does not make two books similar.
            return 0.0
        delta = abs(a.sentiment_score - b.sentiment_score)
        sentiment_sim = 1 - min(delta / SENTIMENT_SCALE, 1)
        score = (
            self.keyword_weight * keyword_sim
            + self.category_weight * category_sim
            + self.sentiment_weight * sentiment_sim
        )
        # Guard against float drift on the weighted sum (0.4 + 0.5 + 0.1).
        if math.isclose(score, 1.0):
            return 1.0
        if math.isclose(score, 0.0, abs_tol=1e-12):
            return 0.0
        return max(0.0, min(score, 1.0))


def similarity(a: ContentFeatures, b: ContentFeatures) -> float:
    return ContentSimilarity().score(a, b)


def minimal_features(book: Book) -> ContentFeatures:
    """Features for a book that has none stored: its tags plus description words."""
    words = [w for w in re.split(r"\W+", (book.description or "").lower()) if len(w) > 3]
    keywords = list(dict.fromkeys([tag.lower() for tag in book.tags] + words))
    return ContentFeatures(
        keywords=keywords,
        categories=list(book.categories),
        sentiment_score=0,
    )


def features_for(book: Book) -> ContentFeatures:
    return book.content_features or minimal_features(book)
