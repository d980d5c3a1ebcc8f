"""Fallback router.

Executes a completion against an ordered candidate list, strictly one
provider at a time. Each attempt gets a share of the remaining deadline,
floored at ``min_attempt_timeout_s`` but never past the deadline itself. A
network blip earns one retry on the same provider before moving on. Every
attempt outcome is reported to the registry.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Sequence

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from studybuddy_brain.config import Settings
from studybuddy_brain.errors import (
    AttemptFailure,
    DeadlineExceeded,
    ProviderError,
    ProviderRateLimited,
    ProviderTransientError,
    ProviderUnavailable,
)
from studybuddy_brain.model.descriptor import ProviderDescriptor
from studybuddy_brain.model.registry import ProviderRegistry
from studybuddy_brain.utils.logging import logger
from studybuddy_brain.utils.tracing import async_span, tracer

# below this much remaining time an attempt is not worth starting
_DEADLINE_EPSILON_S = 0.01


@dataclass
class CompletionRequest:
    prompt: str
    context: str = ""
    session_id: str = "default"


@dataclass
class RouteResult:
    content: str
    provider_used: str
    fallback_used: bool
    attempts: int
    latency_ms: int
    failures: List[AttemptFailure] = field(default_factory=list)


def deadline_in(seconds: float) -> float:
    """Absolute deadline ``seconds`` from now on the router's clock."""
    return time.monotonic() + seconds


class FallbackRouter:
    def __init__(self, registry: ProviderRegistry, settings: Settings | None = None) -> None:
        self.registry = registry
        self.settings = settings or registry.settings

    @staticmethod
    def _remaining(deadline: float) -> float:
        return deadline - time.monotonic()

    async def _call(self, descriptor: ProviderDescriptor, request: CompletionRequest, timeout: float) -> str:
        fetcher = self.registry.fetcher(descriptor.id)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(2),
            wait=wait_fixed(self.settings.transient_retry_backoff_s),
            retry=retry_if_exception_type(ProviderTransientError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info("router_transient_retry", provider=descriptor.id, session=request.session_id)
                return await fetcher.generate_completion(request.prompt, request.context, timeout)
        raise AssertionError("unreachable")  # pragma: no cover

    async def execute(
        self,
        request: CompletionRequest,
        candidates: Sequence[ProviderDescriptor],
        deadline: float,
    ) -> RouteResult:
        """Return the first complete answer, or raise a terminal error."""
        failures: List[AttemptFailure] = []
        started = time.monotonic()
        if not candidates:
            raise ProviderUnavailable("no providers available for completion", failures)

        async with async_span("route", tracer, attributes={"candidates": len(candidates)}):
            for index, descriptor in enumerate(candidates):
                remaining = self._remaining(deadline)
                if remaining <= _DEADLINE_EPSILON_S:
                    raise DeadlineExceeded("request deadline exceeded during fallback", failures)
                share = remaining / (len(candidates) - index)
                timeout = min(max(share, self.settings.min_attempt_timeout_s), remaining)
                bounded_by_deadline = timeout >= remaining

                attempt_start = time.monotonic()
                try:
                    content = await asyncio.wait_for(self._call(descriptor, request, timeout), timeout=timeout)
                except asyncio.TimeoutError:
                    latency_ms = int((time.monotonic() - attempt_start) * 1000)
                    self.registry.report_outcome(descriptor.id, False, latency_ms)
                    failures.append(AttemptFailure(descriptor.id, "timeout", f"no answer within {timeout:.2f}s", latency_ms))
                    logger.warning("router_attempt_timeout", provider=descriptor.id, timeout_s=round(timeout, 3))
                    if bounded_by_deadline or self._remaining(deadline) <= _DEADLINE_EPSILON_S:
                        raise DeadlineExceeded("request deadline exceeded during fallback", failures)
                    continue
                except ProviderRateLimited as exc:
                    latency_ms = int((time.monotonic() - attempt_start) * 1000)
                    self.registry.report_outcome(
                        descriptor.id, False, latency_ms, rate_limited=True, retry_after=exc.retry_after
                    )
                    failures.append(AttemptFailure(descriptor.id, exc.kind, str(exc), latency_ms))
                    logger.warning("router_rate_limited", provider=descriptor.id)
                    continue
                except ProviderError as exc:
                    latency_ms = int((time.monotonic() - attempt_start) * 1000)
                    self.registry.report_outcome(descriptor.id, False, latency_ms)
                    failures.append(AttemptFailure(descriptor.id, exc.kind, str(exc), latency_ms))
                    logger.warning("router_attempt_failed", provider=descriptor.id, kind=exc.kind, error=str(exc))
                    continue
                except Exception as exc:  # noqa: BLE001 - third-party backend code
                    latency_ms = int((time.monotonic() - attempt_start) * 1000)
                    self.registry.report_outcome(descriptor.id, False, latency_ms)
                    failures.append(AttemptFailure(descriptor.id, "unexpected", str(exc), latency_ms))
                    logger.error("router_attempt_crashed", provider=descriptor.id, error=str(exc))
                    continue

                latency_ms = int((time.monotonic() - attempt_start) * 1000)
                self.registry.report_outcome(descriptor.id, True, latency_ms)
                return RouteResult(
                    content=content,
                    provider_used=descriptor.id,
                    fallback_used=index > 0,
                    attempts=index + 1,
                    latency_ms=int((time.monotonic() - started) * 1000),
                    failures=failures,
                )

        raise ProviderUnavailable(
            "all providers failed: " + ", ".join(f"{f.provider_id}={f.error_kind}" for f in failures),
            failures,
        )


__all__ = ["CompletionRequest", "FallbackRouter", "RouteResult", "deadline_in"]
