from .hybrid_score import (
    STOPWORDS,
    ScoreWeights,
    composite_score,
    cosine_similarity,
    importance_score,
    keyword_overlap,
    passes_gate,
    recency_decay,
    tokenize,
)

__all__ = [
    "STOPWORDS",
    "ScoreWeights",
    "composite_score",
    "cosine_similarity",
    "importance_score",
    "keyword_overlap",
    "passes_gate",
    "recency_decay",
    "tokenize",
]
