"""HuggingFace inference API fetcher."""

from __future__ import annotations

from typing import Any, List

import numpy as np

from studybuddy_brain.errors import IncompleteResponse, ProviderRejected
from studybuddy_brain.model_fetchers.base_fetcher import BaseFetcher

HF_BASE = "https://api-inference.huggingface.co"


class HuggingFaceFetcher(BaseFetcher):
    default_api_key_env = "HF_API_TOKEN"

    def _headers(self) -> dict[str, str]:
        token = self._api_key()
        if not token:
            raise ProviderRejected(self.name, "missing_api_token")
        return {"Authorization": f"Bearer {token}"}

    async def generate_completion(self, prompt: str, context: str, timeout: float) -> str:
        model = self.descriptor.extras.get("model") or "google/flan-t5-small"
        inputs = f"{context}\n\n{prompt}" if context else prompt
        data = await self._post_json(f"{HF_BASE}/models/{model}", {"inputs": inputs}, self._headers(), timeout)
        if isinstance(data, list) and data:
            content = data[0].get("generated_text", "")
        elif isinstance(data, dict):
            content = data.get("generated_text", "")
        else:
            content = ""
        if not content.strip():
            raise IncompleteResponse(self.name, "empty completion")
        return content

    async def embed_text(self, text: str, timeout: float) -> List[float]:
        self._require_embedding()
        model = self.descriptor.extras.get("embedding_model", "sentence-transformers/all-MiniLM-L6-v2")
        data: Any = await self._post_json(
            f"{HF_BASE}/pipeline/feature-extraction/{model}", {"inputs": text}, self._headers(), timeout
        )
        try:
            arr = np.asarray(data, dtype="float32")
        except (TypeError, ValueError) as exc:
            raise IncompleteResponse(self.name, "malformed embedding response") from exc
        if arr.ndim == 0 or arr.size == 0:
            raise IncompleteResponse(self.name, "empty embedding")
        # token-level output: mean-pool down to one vector
        while arr.ndim > 1:
            arr = arr.mean(axis=0)
        return arr.tolist()
