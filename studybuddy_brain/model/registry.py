"""Provider registry with live health tracking.

The registry is the single owner of every provider's :class:`HealthStatus`.
Candidate selection takes the read side of a read-mostly lock so concurrent
requests never block each other; outcome reports and probes take the write
side so two attempts can never apply conflicting transitions.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from prometheus_client import Counter, Gauge

from studybuddy_brain.config import Settings, load_provider_config, settings as default_settings
from studybuddy_brain.errors import ProviderError
from studybuddy_brain.model.descriptor import COMPLETION, EMBEDDING, ProviderDescriptor
from studybuddy_brain.model.health import HealthState, HealthStatus
from studybuddy_brain.model_fetchers import BaseFetcher, build_fetcher
from studybuddy_brain.utils.locks import ReadWriteLock
from studybuddy_brain.utils.logging import logger

PROVIDER_OUTCOMES = Counter(
    "provider_outcomes_total",
    "Provider attempt and probe outcomes",
    ["provider", "outcome"],
)
PROVIDER_STATE = Gauge(
    "provider_health_state",
    "Provider health state (0 healthy, 1 degraded, 2 open)",
    ["provider"],
)


class ProviderRegistry:
    """Holds configured providers and their health state."""

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or default_settings
        self.clock = clock
        self._descriptors: Dict[str, ProviderDescriptor] = {}
        self._fetchers: Dict[str, BaseFetcher] = {}
        self._health: Dict[str, HealthStatus] = {}
        self._order: Dict[str, int] = {}
        self._lock = ReadWriteLock()

    # ---------- registration ----------
    def register(self, descriptor: ProviderDescriptor, fetcher: BaseFetcher | None = None) -> None:
        if not descriptor.id:
            raise ValueError("provider descriptor requires an id")
        with self._lock.write():
            if descriptor.id in self._descriptors:
                raise ValueError(f"provider {descriptor.id!r} already registered")
            self._descriptors[descriptor.id] = descriptor
            self._fetchers[descriptor.id] = fetcher or build_fetcher(descriptor)
            self._health[descriptor.id] = HealthStatus()
            self._order[descriptor.id] = len(self._order)
        PROVIDER_STATE.labels(descriptor.id).set(HealthState.HEALTHY.value)
        logger.info("provider_registered", provider=descriptor.id, type=descriptor.provider_type)

    @classmethod
    def from_config(cls, config: Dict[str, Any] | None = None, settings: Settings | None = None) -> "ProviderRegistry":
        registry = cls(settings=settings)
        data = config if config is not None else load_provider_config(registry.settings.provider_config_path)
        for item in data.get("providers") or []:
            if isinstance(item, str):
                item = {"id": item, "type": item}
            descriptor = ProviderDescriptor.from_dict(item)
            if not descriptor.id:
                continue
            registry.register(descriptor)
        if not registry._descriptors:
            registry.register(
                ProviderDescriptor(id="local", provider_type="local", capabilities=frozenset({COMPLETION, EMBEDDING}))
            )
        return registry

    def descriptor(self, provider_id: str) -> ProviderDescriptor:
        return self._descriptors[provider_id]

    def fetcher(self, provider_id: str) -> BaseFetcher:
        return self._fetchers[provider_id]

    def provider_ids(self) -> List[str]:
        return list(self._descriptors)

    def status(self, provider_id: str) -> HealthStatus:
        with self._lock.read():
            return self._health[provider_id]

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock.read():
            return {pid: status.snapshot() for pid, status in self._health.items()}

    # ---------- selection ----------
    def _effective_priority(self, descriptor: ProviderDescriptor, status: HealthStatus, now: float) -> float:
        if status.rate_limited(now):
            return descriptor.priority * self.settings.rate_limit_penalty
        return descriptor.priority

    def candidates(self, capability: str = COMPLETION, exclude_open: bool = True) -> List[ProviderDescriptor]:
        """Return providers for ``capability`` in fallback order.

        Order is health state (least severe first), then effective priority
        weight, then rate-limit headroom, then registration order. Open
        providers are dropped unless nothing else is available, in which case
        the least-recently-opened one is offered alone as a forced probe.
        """
        now = self.clock()
        with self._lock.read():
            rows = [
                (d, self._health[pid])
                for pid, d in self._descriptors.items()
                if d.supports(capability)
            ]
            rows.sort(
                key=lambda row: (
                    row[1].state.value,
                    -self._effective_priority(row[0], row[1], now),
                    -row[1].headroom(row[0].rate_limit_per_minute, now),
                    self._order[row[0].id],
                )
            )
            if not exclude_open:
                return [d for d, _ in rows]
            available = [d for d, s in rows if s.state is not HealthState.OPEN]
            if available:
                return available
            opened = [(s.opened_at or 0.0, self._order[d.id], d) for d, s in rows]
        if not opened:
            return []
        opened.sort(key=lambda item: (item[0], item[1]))
        forced = opened[0][2]
        logger.warning("forced_probe_candidate", provider=forced.id, capability=capability)
        return [forced]

    # ---------- outcomes ----------
    def report_outcome(
        self,
        provider_id: str,
        success: bool,
        latency_ms: float,
        *,
        rate_limited: bool = False,
        retry_after: float | None = None,
    ) -> HealthState:
        """Apply one attempt outcome and return the resulting state."""
        now = self.clock()
        with self._lock.write():
            status = self._health[provider_id]
            previous = status.state
            status.note_request(now)
            if success:
                status.record_success(now, latency_ms, recovery_successes=self.settings.recovery_successes)
                outcome = "success"
            elif rate_limited:
                status.record_rate_limit(now, self.settings.rate_limit_cooldown_s, retry_after)
                outcome = "rate_limited"
            else:
                status.record_failure(
                    now,
                    latency_ms,
                    failure_threshold=self.settings.failure_threshold,
                    cooldown_s=self.settings.open_cooldown_s,
                )
                outcome = "failure"
            state = status.state
        PROVIDER_OUTCOMES.labels(provider_id, outcome).inc()
        PROVIDER_STATE.labels(provider_id).set(state.value)
        if state is not previous:
            logger.info(
                "provider_state_changed",
                provider=provider_id,
                previous=previous.name.lower(),
                state=state.name.lower(),
            )
        return state

    # ---------- probing ----------
    def probe_due(self) -> List[str]:
        """Providers eligible for a background probe right now."""
        now = self.clock()
        with self._lock.read():
            return [
                pid
                for pid, status in self._health.items()
                if status.state is HealthState.DEGRADED
                or (status.state is HealthState.OPEN and status.cooldown_elapsed(now))
            ]

    async def probe(self, provider_id: str, timeout: Optional[float] = None) -> bool:
        timeout = timeout or self.settings.probe_timeout_s
        fetcher = self._fetchers[provider_id]
        start = time.monotonic()
        try:
            await asyncio.wait_for(fetcher.health_probe(timeout), timeout=timeout)
            ok = True
        except (ProviderError, asyncio.TimeoutError) as exc:
            logger.info("provider_probe_failed", provider=provider_id, error=str(exc) or type(exc).__name__)
            ok = False
        except Exception as exc:  # noqa: BLE001 - third-party backend code
            logger.error("provider_probe_crashed", provider=provider_id, error=str(exc))
            ok = False
        latency_ms = (time.monotonic() - start) * 1000
        self.report_outcome(provider_id, ok, latency_ms)
        return ok


__all__ = ["ProviderRegistry", "PROVIDER_OUTCOMES", "PROVIDER_STATE"]
