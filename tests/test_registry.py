import asyncio
import threading

import pytest

from studybuddy_brain.errors import ProviderServerError
from studybuddy_brain.model.descriptor import COMPLETION, EMBEDDING, ProviderDescriptor
from studybuddy_brain.model.health import HealthState
from studybuddy_brain.model.monitor import HealthMonitor
from studybuddy_brain.model.registry import ProviderRegistry
from studybuddy_brain.model_fetchers import LocalFetcher

from conftest import ScriptedFetcher


def _open(registry, pid):
    for _ in range(registry.settings.failure_threshold):
        registry.report_outcome(pid, False, 10)
    assert registry.status(pid).state is HealthState.OPEN


def _ids(descriptors):
    return [d.id for d in descriptors]


def test_candidates_ordered_by_state_then_priority(make_registry):
    registry = make_registry(
        {pid: ScriptedFetcher for pid in ("low", "high", "mid")}, low=0.5, high=2.0, mid=1.0
    )
    assert _ids(registry.candidates(COMPLETION)) == ["high", "mid", "low"]
    registry.report_outcome("high", False, 10)
    assert _ids(registry.candidates(COMPLETION)) == ["mid", "low", "high"]


def test_rate_limited_provider_loses_priority(make_registry):
    registry = make_registry({"a": ScriptedFetcher, "b": ScriptedFetcher}, a=1.5, b=1.0)
    registry.report_outcome("a", False, 10, rate_limited=True)
    assert registry.status("a").state is HealthState.HEALTHY
    assert _ids(registry.candidates(COMPLETION)) == ["b", "a"]


def test_headroom_breaks_priority_ties(test_settings, clock):
    registry = ProviderRegistry(settings=test_settings, clock=clock)
    for pid in ("busy", "idle"):
        d = ProviderDescriptor(id=pid, provider_type="fake", rate_limit_per_minute=10)
        registry.register(d, ScriptedFetcher(d))
    for _ in range(5):
        registry.report_outcome("busy", True, 10)
    assert _ids(registry.candidates(COMPLETION)) == ["idle", "busy"]


def test_open_providers_excluded(make_registry):
    registry = make_registry({"a": ScriptedFetcher, "b": ScriptedFetcher})
    _open(registry, "a")
    assert _ids(registry.candidates(COMPLETION)) == ["b"]
    assert _ids(registry.candidates(COMPLETION, exclude_open=False)) == ["b", "a"]


def test_forced_probe_returns_least_recently_opened(make_registry, clock):
    registry = make_registry({"a": ScriptedFetcher, "b": ScriptedFetcher})
    _open(registry, "b")
    clock.advance(5)
    _open(registry, "a")
    assert _ids(registry.candidates(COMPLETION)) == ["b"]


def test_candidates_filter_by_capability(test_settings):
    registry = ProviderRegistry(settings=test_settings)
    registry.register(ProviderDescriptor(id="chat", capabilities=frozenset({COMPLETION})))
    registry.register(ProviderDescriptor(id="vec", capabilities=frozenset({EMBEDDING})))
    assert _ids(registry.candidates(EMBEDDING)) == ["vec"]
    assert isinstance(registry.fetcher("chat"), LocalFetcher)


def test_register_rejects_duplicates(test_settings):
    registry = ProviderRegistry(settings=test_settings)
    registry.register(ProviderDescriptor(id="x"))
    with pytest.raises(ValueError):
        registry.register(ProviderDescriptor(id="x"))


def test_from_config_defaults_to_local(test_settings):
    registry = ProviderRegistry.from_config({}, settings=test_settings)
    assert registry.provider_ids() == ["local"]
    registry = ProviderRegistry.from_config(
        {"providers": [{"id": "or", "type": "openrouter", "priority": 2}, "huggingface"]},
        settings=test_settings,
    )
    assert registry.provider_ids() == ["or", "huggingface"]
    assert registry.descriptor("or").priority == 2.0


def test_probe_due_skips_healthy_and_cooling(make_registry, clock):
    registry = make_registry({"ok": ScriptedFetcher, "deg": ScriptedFetcher, "open": ScriptedFetcher})
    registry.report_outcome("deg", False, 10)
    _open(registry, "open")
    assert registry.probe_due() == ["deg"]
    clock.advance(registry.settings.open_cooldown_s)
    assert sorted(registry.probe_due()) == ["deg", "open"]


def test_successful_probe_half_opens_circuit(make_registry, clock):
    registry = make_registry({"a": ScriptedFetcher})
    _open(registry, "a")
    clock.advance(31)
    assert asyncio.run(registry.probe("a")) is True
    assert registry.status("a").state is HealthState.DEGRADED


def test_failed_probe_keeps_circuit_open(make_registry, clock):
    registry = make_registry({"a": lambda d: ScriptedFetcher(d, outcomes=[ProviderServerError("a", "502")])})
    _open(registry, "a")
    opened = registry.status("a").opened_at
    clock.advance(31)
    assert asyncio.run(registry.probe("a")) is False
    status = registry.status("a")
    assert status.state is HealthState.OPEN
    assert status.opened_at > opened


def test_monitor_probes_only_due_providers(make_registry):
    fetchers = {}

    def build(d):
        fetchers[d.id] = ScriptedFetcher(d)
        return fetchers[d.id]

    registry = make_registry({"healthy": build, "degraded": build})
    registry.report_outcome("degraded", False, 10)
    results = asyncio.run(HealthMonitor(registry).run_once())
    assert results == {"degraded": True}
    assert fetchers["healthy"].calls == 0
    assert fetchers["degraded"].calls == 1


def test_crashing_probe_counts_as_failure(make_registry, clock):
    registry = make_registry({"a": lambda d: ScriptedFetcher(d, outcomes=[RuntimeError("sdk bug")])})
    registry.report_outcome("a", False, 10)
    results = asyncio.run(HealthMonitor(registry).run_once())
    assert results == {"a": False}
    assert registry.status("a").consecutive_failures == 2


def test_concurrent_reports_are_serialized(make_registry):
    registry = make_registry({"a": ScriptedFetcher, "b": ScriptedFetcher})
    workers, per_worker = 8, 50
    seen = []

    def report():
        for _ in range(per_worker):
            registry.report_outcome("a", False, 10)

    def read():
        for _ in range(per_worker):
            seen.append(_ids(registry.candidates(COMPLETION)))

    threads = [threading.Thread(target=report) for _ in range(workers)]
    threads += [threading.Thread(target=read) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    status = registry.status("a")
    assert status.consecutive_failures == workers * per_worker
    assert status.state is HealthState.OPEN
    assert _ids(registry.candidates(COMPLETION)) == ["b"]
    assert len(seen) == workers * per_worker
    assert all("b" in ids for ids in seen)
