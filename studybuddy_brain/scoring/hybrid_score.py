"""Composite relevance scoring for retrieved memories."""

from __future__ import annotations

import json
import math
import os
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

_TOKEN_RE = re.compile(r"[a-z0-9']+")

STOPWORDS = frozenset(
    {
        "a", "an", "the", "and", "or", "but", "if", "of", "to", "in", "on", "at", "for",
        "with", "is", "are", "was", "were", "be", "been", "am", "do", "does", "did",
        "you", "your", "i", "me", "my", "we", "our", "it", "its", "this", "that",
        "what", "who", "how", "can", "could", "would", "should", "will", "please",
        "about", "from", "as", "by", "so", "not", "no", "yes", "have", "has", "had",
        "user", "assistant",
    }
)


def tokenize(text: str, *, drop_stopwords: bool = False) -> List[str]:
    tokens = _TOKEN_RE.findall(text.lower())
    if drop_stopwords:
        tokens = [t for t in tokens if t not in STOPWORDS]
    return tokens


@dataclass
class ScoreWeights:
    similarity: float = 0.55
    keyword: float = 0.2
    recency: float = 0.15
    importance: float = 0.1

    @classmethod
    def from_env(cls, default: "ScoreWeights | None" = None) -> "ScoreWeights":
        base = default or cls()
        env = os.getenv("STUDYBUDDY_MEMORY_WEIGHTS")
        if not env:
            return base
        try:
            if env.strip().startswith("{"):
                data = json.loads(env)
                return cls(
                    similarity=float(data.get("similarity", base.similarity)),
                    keyword=float(data.get("keyword", base.keyword)),
                    recency=float(data.get("recency", base.recency)),
                    importance=float(data.get("importance", base.importance)),
                )
            parts = [float(x) for x in env.split(",")]
            return cls(*parts[:4])
        except (ValueError, TypeError):
            return base

    def normalized(self) -> "ScoreWeights":
        total = self.similarity + self.keyword + self.recency + self.importance
        if total <= 0:
            return ScoreWeights()
        return ScoreWeights(
            similarity=self.similarity / total,
            keyword=self.keyword / total,
            recency=self.recency / total,
            importance=self.importance / total,
        )


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    if a is None or b is None:
        return 0.0
    va = np.asarray(a, dtype="float32")
    vb = np.asarray(b, dtype="float32")
    if va.shape != vb.shape or not va.size:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return max(0.0, min(1.0, float(np.dot(va, vb)) / denom))


def keyword_overlap(query: str, text: str) -> float:
    """Fraction of the query's content words that occur in ``text``."""
    q = set(tokenize(query, drop_stopwords=True))
    if not q:
        return 0.0
    t = set(tokenize(text, drop_stopwords=True))
    return len(q & t) / len(q)


def recency_decay(age_s: float, half_life_s: float) -> float:
    """Exponential half-life decay in [0, 1]; 1.0 for a brand-new record."""
    if half_life_s <= 0:
        return 0.0
    return math.pow(0.5, max(age_s, 0.0) / half_life_s)


def importance_score(importance: int) -> float:
    """Map caller importance 1-5 onto [0, 1]."""
    return (min(max(importance, 1), 5) - 1) / 4.0


def passes_gate(similarity: float, overlap: float, min_similarity: float, min_overlap: float) -> bool:
    """A record must be either semantically or lexically on topic."""
    return similarity >= min_similarity or (overlap > 0 and overlap >= min_overlap)


def composite_score(
    similarity: float,
    overlap: float,
    recency: float,
    importance: float,
    weights: ScoreWeights,
) -> float:
    w = weights.normalized()
    return (
        similarity * w.similarity
        + overlap * w.keyword
        + recency * w.recency
        + importance * w.importance
    )
