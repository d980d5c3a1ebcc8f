import pytest

from studybuddy_brain.scoring import (
    ScoreWeights,
    composite_score,
    cosine_similarity,
    importance_score,
    keyword_overlap,
    passes_gate,
    recency_decay,
    tokenize,
)


def test_default_weights_favor_similarity():
    w = ScoreWeights().normalized()
    assert w.similarity >= 0.5
    assert w.similarity + w.keyword + w.recency + w.importance == pytest.approx(1.0)


def test_weights_from_env(monkeypatch):
    monkeypatch.setenv("STUDYBUDDY_MEMORY_WEIGHTS", '{"similarity": 2, "keyword": 1, "recency": 1, "importance": 0}')
    w = ScoreWeights.from_env().normalized()
    assert w.similarity == pytest.approx(0.5)
    assert w.importance == 0
    monkeypatch.setenv("STUDYBUDDY_MEMORY_WEIGHTS", "0.7,0.1,0.1,0.1")
    assert ScoreWeights.from_env().similarity == pytest.approx(0.7)
    monkeypatch.setenv("STUDYBUDDY_MEMORY_WEIGHTS", "garbage")
    assert ScoreWeights.from_env() == ScoreWeights()


def test_cosine_similarity_edges():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [-1, 0]) == 0.0
    assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0
    assert cosine_similarity(None, [1, 0]) == 0.0
    assert cosine_similarity([0, 0], [1, 0]) == 0.0


def test_keyword_overlap_ignores_stopwords():
    assert tokenize("Do you know my name?", drop_stopwords=True) == ["know", "name"]
    assert keyword_overlap("Do you know my name?", "User: My name is Kunal") == pytest.approx(0.5)
    assert keyword_overlap("the of and", "anything") == 0.0


def test_recency_decay_is_monotonic():
    day = 86400.0
    values = [recency_decay(age * day, 30 * day) for age in (0, 1, 30, 90)]
    assert values[0] == 1.0
    assert values[2] == pytest.approx(0.5)
    assert values == sorted(values, reverse=True)


def test_importance_score_range():
    assert importance_score(1) == 0.0
    assert importance_score(5) == 1.0
    assert importance_score(9) == 1.0


def test_gate_requires_similarity_or_keywords():
    assert passes_gate(0.65, 0.0, 0.6, 0.3)
    assert passes_gate(0.1, 0.5, 0.6, 0.3)
    assert not passes_gate(0.1, 0.2, 0.6, 0.3)
    assert not passes_gate(0.1, 0.0, 0.6, 0.0)


def test_composite_score_weighting():
    w = ScoreWeights()
    high = composite_score(0.9, 0.0, 0.0, 0.0, w)
    low = composite_score(0.0, 0.0, 1.0, 1.0, w)
    assert high > low
