"""Turn query and turn text into vectors through embedding-capable providers."""

from __future__ import annotations

import asyncio
import time
from typing import List

from studybuddy_brain.errors import EmbeddingError, ProviderError, ProviderRateLimited
from studybuddy_brain.model.descriptor import EMBEDDING
from studybuddy_brain.model.registry import ProviderRegistry
from studybuddy_brain.utils.logging import logger


class QueryEmbedder:
    def __init__(self, registry: ProviderRegistry, timeout_s: float | None = None) -> None:
        self.registry = registry
        self.timeout_s = timeout_s or registry.settings.embedding_timeout_s

    async def embed(self, text: str) -> List[float]:
        """Embed ``text`` with the first healthy embedding provider.

        Raises :class:`EmbeddingError` when no provider can vectorize it.
        """
        errors: List[str] = []
        for descriptor in self.registry.candidates(EMBEDDING):
            fetcher = self.registry.fetcher(descriptor.id)
            start = time.monotonic()
            try:
                vector = await asyncio.wait_for(fetcher.embed_text(text, self.timeout_s), self.timeout_s)
            except asyncio.TimeoutError:
                self._report(descriptor.id, start, False)
                errors.append(f"{descriptor.id}=timeout")
                continue
            except ProviderRateLimited as exc:
                self._report(descriptor.id, start, False, rate_limited=True, retry_after=exc.retry_after)
                errors.append(f"{descriptor.id}={exc.kind}")
                continue
            except ProviderError as exc:
                self._report(descriptor.id, start, False)
                errors.append(f"{descriptor.id}={exc.kind}")
                continue
            except Exception as exc:  # noqa: BLE001 - third-party backend code
                self._report(descriptor.id, start, False)
                logger.error("embedding_backend_crashed", provider=descriptor.id, error=str(exc))
                errors.append(f"{descriptor.id}=unexpected")
                continue
            if not vector:
                self._report(descriptor.id, start, False)
                errors.append(f"{descriptor.id}=empty")
                continue
            self._report(descriptor.id, start, True)
            return list(vector)
        logger.warning("embedding_failed", errors=errors)
        raise EmbeddingError("could not embed text: " + (", ".join(errors) or "no embedding providers"))

    def _report(self, provider_id: str, start: float, success: bool, **kwargs) -> None:
        latency_ms = int((time.monotonic() - start) * 1000)
        self.registry.report_outcome(provider_id, success, latency_ms, **kwargs)


__all__ = ["QueryEmbedder"]
