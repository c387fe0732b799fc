"""Tests for the known-book signature registry."""

from booknook.services.signatures import (
    BookSignature,
    CanonicalMetadata,
    PhraseRule,
    SignatureRegistry,
    default_registry,
    fingerprint,
    match_signature,
)


def test_title_and_author_mentions_reach_threshold():
    text = "An introduction to Surrounded by Idiots, written by Thomas Erikson."
    match = match_signature(text, default_registry())
    assert match is not None
    assert match.confidence >= 0.5
    assert match.signature.metadata.title == "Surrounded by Idiots"
    assert match.signature.metadata.author == "Thomas Erikson"


def test_title_alone_is_not_enough():
    assert match_signature("I felt surrounded by idiots at work.", default_registry()) is None


def test_confidence_is_capped_at_one():
    text = (
        "Surrounded by Idiots by Thomas Erikson. The DISC model: red personality, "
        "blue personality, yellow personality, green personality. Every personality type "
        "affects communication. Dominance, influence, steadiness and compliance."
    )
    match = match_signature(text, default_registry())
    assert match.score > 100
    assert match.confidence == 1.0


def test_unrelated_text_and_empty_input():
    assert match_signature("A quiet harbor town.", default_registry()) is None
    assert match_signature("", default_registry()) is None
    assert match_signature(None, default_registry()) is None


def test_registry_is_pluggable():
    registry = SignatureRegistry()
    registry.register(
        BookSignature(
            key="harbor",
            metadata=CanonicalMetadata(title="The Quiet Harbor", author="Mara Linde"),
            title_patterns=("quiet harbor",),
            author_patterns=("mara linde",),
        )
    )
    match = match_signature("the quiet harbor, a novel by mara linde", registry)
    assert match.signature.key == "harbor"
    assert match.score == 50
    assert match_signature("Surrounded by Idiots by Thomas Erikson", registry) is None


def test_fingerprint_counts_long_words_only():
    prints = fingerprint("Personality personality types are fun. DISC helps.")
    assert prints[0] == "personality"
    assert "types" in prints
    assert "disc" not in prints
    assert "fun" not in prints


def test_phrase_rule():
    rule = PhraseRule(all_of=("disc",), any_of=("red personality", "blue personality"))
    assert rule.matches("disc and the red personality")
    assert not rule.matches("disc alone")
    assert not rule.matches("red personality alone")
    assert not PhraseRule().matches("anything")
