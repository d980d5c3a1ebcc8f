"""Background health probing, decoupled from user request tasks."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

from studybuddy_brain.model.registry import ProviderRegistry
from studybuddy_brain.utils.logging import logger


class HealthMonitor:
    """Probe Degraded providers, and Open ones past their cool-down, on an interval.

    Healthy providers are never probed so synthetic traffic does not eat
    into their quota.
    """

    def __init__(self, registry: ProviderRegistry, interval_s: float | None = None) -> None:
        self.registry = registry
        self.interval_s = interval_s or registry.settings.probe_interval_s
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> Dict[str, bool]:
        due = self.registry.probe_due()
        if not due:
            return {}
        results = await asyncio.gather(*(self.registry.probe(pid) for pid in due))
        outcome = dict(zip(due, results))
        logger.debug("health_probe_cycle", results=outcome)
        return outcome

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                await self.run_once()
            except Exception as exc:  # noqa: BLE001 - keep the loop alive
                logger.error("health_probe_cycle_failed", error=str(exc))

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="health-monitor")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()


__all__ = ["HealthMonitor"]
