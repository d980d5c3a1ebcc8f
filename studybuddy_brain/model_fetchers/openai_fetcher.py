"""OpenAI-compatible fetcher (OpenAI, Groq, Cerebras, custom gateways)."""

from __future__ import annotations

import os
from typing import Any, Dict, List

from studybuddy_brain.errors import IncompleteResponse, ProviderRejected
from studybuddy_brain.model_fetchers.base_fetcher import BaseFetcher


class OpenAIFetcher(BaseFetcher):
    default_api_key_env = "OPENAI_API_KEY"
    default_base = "https://api.openai.com/v1"

    def _base(self) -> str:
        base = self.descriptor.extras.get("endpoint") or os.getenv("OPENAI_API_BASE", self.default_base)
        for suffix in ("/chat/completions", "/embeddings"):
            if base.endswith(suffix):
                base = base[: -len(suffix)]
        return base.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        api_key = self._api_key()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        elif not self.descriptor.extras.get("allow_unauthenticated", False):
            raise ProviderRejected(self.name, "missing_api_key")
        return headers

    async def generate_completion(self, prompt: str, context: str, timeout: float) -> str:
        payload: Dict[str, Any] = {
            "model": self.descriptor.extras.get("model") or self.name,
            "messages": self._messages(prompt, context),
            "stream": False,
        }
        data = await self._post_json(f"{self._base()}/chat/completions", payload, self._headers(), timeout)
        choices = (data.get("choices") or []) if isinstance(data, dict) else []
        if not choices:
            raise IncompleteResponse(self.name, "no choices in response")
        choice = choices[0]
        if choice.get("finish_reason") == "length":
            raise IncompleteResponse(self.name, "completion truncated")
        content = (choice.get("message") or {}).get("content") or ""
        if not content.strip():
            raise IncompleteResponse(self.name, "empty completion")
        return content

    async def embed_text(self, text: str, timeout: float) -> List[float]:
        self._require_embedding()
        payload = {
            "model": self.descriptor.extras.get("embedding_model", "text-embedding-3-small"),
            "input": text,
        }
        data = await self._post_json(f"{self._base()}/embeddings", payload, self._headers(), timeout)
        try:
            return [float(x) for x in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError) as exc:
            raise IncompleteResponse(self.name, "malformed embedding response") from exc
