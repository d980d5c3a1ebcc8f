"""OpenRouter fetcher implementation."""

from __future__ import annotations

from typing import Dict

from studybuddy_brain.model_fetchers.openai_fetcher import OpenAIFetcher


class OpenRouterFetcher(OpenAIFetcher):
    default_api_key_env = "OPENROUTER_API_KEY"
    default_base = "https://openrouter.ai/api/v1"

    def _base(self) -> str:
        endpoint = self.descriptor.extras.get("endpoint") or self.default_base
        if endpoint.endswith("/chat/completions"):
            endpoint = endpoint[: -len("/chat/completions")]
        return endpoint.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["HTTP-Referer"] = self.descriptor.extras.get("referer", "https://studybuddy.local")
        headers["X-Title"] = "StudyBuddyBrain"
        return headers
