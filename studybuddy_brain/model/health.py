"""Per-provider health state and its transition rules.

Healthy -> Degraded on the first failure, Degraded -> Open after
``failure_threshold`` consecutive failures, Open -> Degraded on a successful
probe, Degraded -> Healthy after ``recovery_successes`` consecutive successes.
Rate-limit signals never move the state; they only start a cool-down window
during which the provider's priority is reduced.
"""

from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional


class HealthState(enum.IntEnum):
    # ordered by severity, lowest first
    HEALTHY = 0
    DEGRADED = 1
    OPEN = 2


@dataclass
class HealthStatus:
    state: HealthState = HealthState.HEALTHY
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_success: Optional[float] = None
    last_failure: Optional[float] = None
    cooldown_until: Optional[float] = None
    opened_at: Optional[float] = None
    rate_limited_until: Optional[float] = None
    recent_latency_avg: float = 0.0
    recent_requests: Deque[float] = field(default_factory=deque)

    def _latency(self, latency_ms: float) -> None:
        alpha = 0.2
        if self.recent_latency_avg == 0.0:
            self.recent_latency_avg = float(latency_ms)
        else:
            self.recent_latency_avg = alpha * float(latency_ms) + (1 - alpha) * self.recent_latency_avg

    def record_success(self, now: float, latency_ms: float, *, recovery_successes: int) -> None:
        self._latency(latency_ms)
        self.last_success = now
        self.consecutive_failures = 0
        if self.state is HealthState.OPEN:
            self.state = HealthState.DEGRADED
            self.consecutive_successes = 0
            self.cooldown_until = None
        elif self.state is HealthState.DEGRADED:
            self.consecutive_successes += 1
            if self.consecutive_successes >= recovery_successes:
                self.state = HealthState.HEALTHY
                self.consecutive_successes = 0
        else:
            self.consecutive_successes += 1

    def record_failure(
        self, now: float, latency_ms: float, *, failure_threshold: int, cooldown_s: float
    ) -> None:
        self._latency(latency_ms)
        self.last_failure = now
        self.consecutive_successes = 0
        self.consecutive_failures += 1
        if self.state is HealthState.HEALTHY:
            self.state = HealthState.DEGRADED
        if self.state is HealthState.DEGRADED and self.consecutive_failures >= failure_threshold:
            self.state = HealthState.OPEN
        if self.state is HealthState.OPEN:
            self.opened_at = now
            self.cooldown_until = now + cooldown_s

    def record_rate_limit(self, now: float, cooldown_s: float, retry_after: float | None = None) -> None:
        window = max(cooldown_s, retry_after or 0.0)
        self.rate_limited_until = now + window

    def rate_limited(self, now: float) -> bool:
        return self.rate_limited_until is not None and now < self.rate_limited_until

    def cooldown_elapsed(self, now: float) -> bool:
        return self.cooldown_until is None or now >= self.cooldown_until

    def note_request(self, now: float, window_s: float = 60.0) -> None:
        self.recent_requests.append(now)
        self._trim(now, window_s)

    def _trim(self, now: float, window_s: float) -> None:
        while self.recent_requests and now - self.recent_requests[0] > window_s:
            self.recent_requests.popleft()

    def headroom(self, rate_limit_per_minute: int | None, now: float) -> float:
        """Fraction of the declared per-minute budget still unused."""
        if not rate_limit_per_minute:
            return 1.0
        used = sum(1 for t in self.recent_requests if now - t <= 60.0)
        return max(0.0, 1.0 - used / float(rate_limit_per_minute))

    def snapshot(self) -> dict:
        return {
            "state": self.state.name.lower(),
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "last_success": self.last_success,
            "last_failure": self.last_failure,
            "cooldown_until": self.cooldown_until,
            "rate_limited_until": self.rate_limited_until,
            "recent_latency_avg": round(self.recent_latency_avg, 1),
        }


__all__ = ["HealthState", "HealthStatus"]
