"""Tests for the content similarity engine."""

import pytest

from booknook.domain.entities import ContentFeatures
from booknook.services.similarity import ContentSimilarity, features_for, jaccard, minimal_features, similarity
from conftest import make_book

A = ContentFeatures(keywords=["harbor", "storm", "ship"], categories=["fiction"], sentiment_score=3)
B = ContentFeatures(keywords=["storm", "ship", "captain"], categories=["fiction", "history"], sentiment_score=-5)


def test_jaccard():
    assert jaccard(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)
    assert jaccard([], []) == 0.0


def test_self_similarity_is_one():
    assert similarity(A, A) == 1.0
    assert similarity(B, B) == 1.0


def test_symmetric():
    assert similarity(A, B) == similarity(B, A)


def test_weighted_blend():
    # keywords 2/4, categories 1/2, sentiment delta 8 -> 0.92
    expected = 0.4 * 0.5 + 0.5 * 0.5 + 0.1 * 0.92
    assert similarity(A, B) == pytest.approx(expected)


def test_disjoint_with_equal_sentiment_scores_zero():
    a = ContentFeatures(keywords=["harbor"], categories=["fiction"], sentiment_score=0)
    b = ContentFeatures(keywords=["rocket"], categories=["science"], sentiment_score=0)
    assert similarity(a, b) == 0.0


def test_missing_features_score_zero():
    assert similarity(A, None) == 0.0
    assert similarity(None, None) == 0.0


def test_sentiment_difference_is_capped():
    a = ContentFeatures(keywords=["harbor"], categories=["fiction"], sentiment_score=500)
    b = ContentFeatures(keywords=["harbor"], categories=["fiction"], sentiment_score=-500)
    assert similarity(a, b) == pytest.approx(0.9)


def test_custom_weights():
    engine = ContentSimilarity(keyword_weight=1.0, category_weight=0.0, sentiment_weight=0.0)
    assert engine.score(A, B) == pytest.approx(0.5)


def test_minimal_features_from_tags_and_description():
    book = make_book(tags=["Sea", "Adventure"], description="A long voyage across the cold ocean")
    features = minimal_features(book)
    assert features.keywords == ["sea", "adventure", "long", "voyage", "across", "cold", "ocean"]
    assert features.sentiment_score == 0


def test_features_for_prefers_stored_features():
    assert features_for(make_book(features=A)) is A
    assert features_for(make_book(tags=["sea"])).keywords == ["sea"]
