"""Local echo fetcher used as the default provider and in development."""

from __future__ import annotations

import hashlib
from typing import List

import numpy as np

from studybuddy_brain.config import settings
from studybuddy_brain.model_fetchers.base_fetcher import BaseFetcher
from studybuddy_brain.scoring import tokenize


def hash_embed(text: str, dims: int) -> np.ndarray:
    """Return a deterministic bag-of-words embedding for ``text``.

    Each token is hashed to a bucket with a signed weight, so texts sharing
    vocabulary land close together under cosine similarity.
    """
    vec = np.zeros(dims, dtype="float32")
    for token in tokenize(text, drop_stopwords=True):
        digest = hashlib.sha256(token.encode()).digest()
        idx = int.from_bytes(digest[:4], "little") % dims
        vec[idx] += 1.0 if digest[4] & 1 else -1.0
    norm = float(np.linalg.norm(vec))
    return vec / norm if norm else vec


class LocalFetcher(BaseFetcher):
    async def generate_completion(self, prompt: str, context: str, timeout: float) -> str:
        return f"{prompt} [local:{self.name}]"

    async def embed_text(self, text: str, timeout: float) -> List[float]:
        self._require_embedding()
        dims = int(self.descriptor.extras.get("dims", settings.embedding_dims))
        return hash_embed(text, dims).tolist()
