"""Base fetcher interface for provider-specific implementations.

Every backend satisfies the same capability contract:

    generate_completion(prompt, context, timeout) -> str
    embed_text(text, timeout) -> list[float]
    health_probe(timeout) -> True

Failures are raised as :class:`~studybuddy_brain.errors.ProviderError`
subclasses so the router can tell timeouts, network blips, rate limits and
server errors apart.
"""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

import httpx

from studybuddy_brain.errors import (
    IncompleteResponse,
    ProviderRateLimited,
    ProviderRejected,
    ProviderServerError,
    ProviderTimeout,
    ProviderTransientError,
)
from studybuddy_brain.model.descriptor import EMBEDDING, ProviderDescriptor


class BaseFetcher:
    default_api_key_env: Optional[str] = None

    def __init__(self, descriptor: ProviderDescriptor) -> None:
        self.descriptor = descriptor
        self.name = descriptor.id

    def _api_key(self) -> Optional[str]:
        env_name = self.descriptor.extras.get("api_key_env") or self.default_api_key_env
        return self.descriptor.extras.get("api_key") or (os.getenv(env_name) if env_name else None)

    @staticmethod
    def _messages(prompt: str, context: str) -> List[Dict[str, str]]:
        messages: List[Dict[str, str]] = []
        if context:
            messages.append({"role": "system", "content": context})
        messages.append({"role": "user", "content": prompt})
        return messages

    def _require_embedding(self) -> None:
        if not self.descriptor.supports(EMBEDDING):
            raise ProviderRejected(self.name, "embedding capability not declared")

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        timeout: float,
    ) -> Any:
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(self.name, str(exc) or "request timed out") from exc
        except httpx.TransportError as exc:
            raise ProviderTransientError(self.name, str(exc) or type(exc).__name__) from exc
        if resp.status_code == 429:
            retry_after = resp.headers.get("retry-after")
            try:
                wait = float(retry_after) if retry_after else None
            except ValueError:
                wait = None
            raise ProviderRateLimited(self.name, "rate limited", retry_after=wait)
        if resp.status_code >= 500:
            raise ProviderServerError(self.name, f"HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise ProviderRejected(self.name, f"HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise IncompleteResponse(self.name, "response body is not JSON") from exc

    async def generate_completion(self, prompt: str, context: str, timeout: float) -> str:
        raise NotImplementedError

    async def embed_text(self, text: str, timeout: float) -> List[float]:
        raise NotImplementedError

    async def health_probe(self, timeout: float) -> bool:
        """Minimal synthetic request independent of user traffic."""
        content = await self.generate_completion("ping", "", timeout)
        if not content:
            raise IncompleteResponse(self.name, "empty probe response")
        return True
