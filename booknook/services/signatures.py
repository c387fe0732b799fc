"""Registry of known-book signatures.

A signature is data describing how to recognise one cataloged book from a
sample of its text, together with the canonical metadata to adopt when it
is recognised. The same registry drives:

- signature matching in the metadata pipeline (:func:`match_signature`),
- the forced keyword/category injection in feature extraction
  (:func:`augmentations_for`),
- the heuristic content classifier (``classifier_rule``).

Matching is plain lower-cased substring search, the same way the rest of the
text heuristics work.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

TITLE_POINTS = 25
AUTHOR_POINTS = 25
PHRASE_POINTS = 10
COMBINATION_POINTS = 15
FINGERPRINT_POINTS = 5
MAX_SCORE = 100

FINGERPRINT_SIZE = 50
FINGERPRINT_MIN_LENGTH = 5
NON_WORD = re.compile(r"\W+")


@dataclass(frozen=True)
class PhraseRule:
    """Matches when every ``all_of`` phrase and at least one ``any_of`` phrase occur."""

    all_of: tuple[str, ...] = ()
    any_of: tuple[str, ...] = ()

    def matches(self, text_lower: str) -> bool:
        if not self.all_of and not self.any_of:
            return False
        if not all(phrase in text_lower for phrase in self.all_of):
            return False
        return not self.any_of or any(phrase in text_lower for phrase in self.any_of)


@dataclass(frozen=True)
class CanonicalMetadata:
    title: str
    author: str
    description: str = ""
    isbn: Optional[str] = None
    publisher: Optional[str] = None
    publication_date: Optional[str] = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class BookSignature:
    key: str
    metadata: CanonicalMetadata
    title_patterns: tuple[str, ...] = ()
    author_patterns: tuple[str, ...] = ()
    unique_phrases: tuple[str, ...] = ()
    word_combinations: tuple[tuple[str, ...], ...] = ()

    # Forced feature injection.
    feature_rules: tuple[PhraseRule, ...] = ()
    feature_keywords: tuple[str, ...] = ()
    feature_categories: tuple[str, ...] = ()

    # Heuristic classifier output.
    classifier_rule: Optional[PhraseRule] = None
    classifier_confidence: float = 0.95
    classifier_description: Optional[str] = None
    classifier_tags: tuple[str, ...] = ()


@dataclass
class SignatureMatch:
    signature: BookSignature
    score: int
    confidence: float


@dataclass
class SignatureRegistry:
    signatures: list[BookSignature] = field(default_factory=list)

    def register(self, signature: BookSignature) -> None:
        self.signatures.append(signature)

    def __iter__(self):
        return iter(self.signatures)

    def __len__(self) -> int:
        return len(self.signatures)


SURROUNDED_BY_IDIOTS = BookSignature(
    key="surrounded-by-idiots",
    metadata=CanonicalMetadata(
        title="Surrounded by Idiots",
        author="Thomas Erikson",
        description=(
            "A revolutionary method for understanding yourself and others by "
            "learning to identify the four main personality types."
        ),
        isbn="9781250179944",
        publisher="St. Martin's Essentials",
        publication_date="2019-07-30",
        tags=("psychology", "personality", "communication", "self-help", "business"),
    ),
    title_patterns=("surrounded by idiots",),
    author_patterns=("thomas erikson",),
    unique_phrases=(
        "disc",
        "personality type",
        "red personality",
        "blue personality",
        "yellow personality",
        "green personality",
        "communication",
    ),
    word_combinations=(
        ("red", "blue", "green", "yellow", "personality"),
        ("dominance", "influence", "steadiness", "compliance"),
    ),
    feature_rules=(
        PhraseRule(all_of=("surrounded by idiots",)),
        PhraseRule(
            all_of=("disc", "personality"),
            any_of=("red personality", "blue personality", "yellow personality", "green personality"),
        ),
    ),
    feature_keywords=("disc", "personality-types", "communication-styles"),
    feature_categories=("psychology", "self-help", "business-communication"),
    classifier_rule=PhraseRule(
        all_of=("surrounded by idiots", "red", "blue", "green", "yellow", "personality", "disc"),
    ),
    classifier_confidence=0.95,
    classifier_description="A book about understanding the four main personality types.",
    classifier_tags=("psychology", "self-help", "business", "communication"),
)


def default_registry() -> SignatureRegistry:
    return SignatureRegistry([SURROUNDED_BY_IDIOTS])


def fingerprint(text: str, size: int = FINGERPRINT_SIZE) -> list[str]:
    """Most frequent words longer than four characters, most frequent first."""
    if not text or not isinstance(text, str):
        return []
    counts = Counter(word for word in NON_WORD.split(text.lower()) if len(word) >= FINGERPRINT_MIN_LENGTH)
    return [word for word, _ in counts.most_common(size)]


def score_signature(signature: BookSignature, text_lower: str, prints: list[str]) -> int:
    score = 0
    score += TITLE_POINTS * sum(1 for pattern in signature.title_patterns if pattern in text_lower)
    score += AUTHOR_POINTS * sum(1 for pattern in signature.author_patterns if pattern in text_lower)
    score += PHRASE_POINTS * sum(1 for phrase in signature.unique_phrases if phrase in text_lower)
    score += COMBINATION_POINTS * sum(
        1 for words in signature.word_combinations if all(word in text_lower for word in words)
    )
    if prints:
        printed = set(prints)
        score += FINGERPRINT_POINTS * sum(
            1 for phrase in signature.unique_phrases if phrase.replace(" ", "") in printed
        )
    return score


def match_signature(
    text: str,
    registry: SignatureRegistry,
    threshold: int = 50,
    prints: Optional[list[str]] = None,
) -> Optional[SignatureMatch]:
    """Return the first signature whose score reaches *threshold*.

    Confidence is ``score / 100`` capped at 1.0.
    """
    if not text or not isinstance(text, str):
        return None
    text_lower = text.lower()
    if prints is None:
        prints = fingerprint(text)
    for signature in registry:
        score = score_signature(signature, text_lower, prints)
        logger.debug("Signature %s scored %d", signature.key, score)
        if score >= threshold:
            return SignatureMatch(
                signature=signature,
                score=score,
                confidence=min(score / MAX_SCORE, 1.0),
            )
    return None


def augmentations_for(text_lower: str, registry: SignatureRegistry) -> list[BookSignature]:
    """Signatures whose feature rules fire on *text_lower*."""
    return [
        signature
        for signature in registry
        if any(rule.matches(text_lower) for rule in signature.feature_rules)
    ]
