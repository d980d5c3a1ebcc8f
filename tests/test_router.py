import asyncio
import time

import pytest

from studybuddy_brain.errors import (
    DeadlineExceeded,
    IncompleteResponse,
    ProviderRateLimited,
    ProviderServerError,
    ProviderTransientError,
    ProviderUnavailable,
)
from studybuddy_brain.model.descriptor import COMPLETION
from studybuddy_brain.model.health import HealthState
from studybuddy_brain.router import CompletionRequest, FallbackRouter, deadline_in

from conftest import ScriptedFetcher


def _setup(make_registry, **scripts):
    fetchers = {}

    def builder(pid, kwargs):
        def build(d):
            fetchers[pid] = ScriptedFetcher(d, **kwargs)
            return fetchers[pid]

        return build

    registry = make_registry({pid: builder(pid, kw) for pid, kw in scripts.items()})
    return registry, FallbackRouter(registry), fetchers


def _execute(registry, router, deadline_s=5.0):
    request = CompletionRequest(prompt="hi", context="ctx", session_id="s")
    return asyncio.run(router.execute(request, registry.candidates(COMPLETION), deadline_in(deadline_s)))


def test_first_candidate_success(make_registry):
    registry, router, fetchers = _setup(make_registry, P1={}, P2={})
    result = _execute(registry, router)
    assert result.provider_used == "P1"
    assert result.fallback_used is False
    assert result.attempts == 1
    assert fetchers["P2"].calls == 0
    assert fetchers["P1"].contexts == ["ctx"]


def test_timeout_falls_back_to_next_provider(make_registry):
    registry, router, fetchers = _setup(make_registry, P1={"delay": 5}, P2={"delay": 0.05})
    result = _execute(registry, router, deadline_s=2.0)
    assert result.provider_used == "P2"
    assert result.fallback_used is True
    assert [f.error_kind for f in result.failures] == ["timeout"]
    assert registry.status("P1").consecutive_failures == 1
    assert registry.status("P2").state is HealthState.HEALTHY


def test_transient_error_retried_once_on_same_provider(make_registry):
    registry, router, fetchers = _setup(
        make_registry, P1={"outcomes": [ProviderTransientError("P1", "reset")]}, P2={}
    )
    result = _execute(registry, router)
    assert result.provider_used == "P1"
    assert fetchers["P1"].calls == 2
    assert fetchers["P2"].calls == 0
    assert registry.status("P1").consecutive_failures == 0


def test_repeated_transient_error_moves_on(make_registry):
    errors = [ProviderTransientError("P1", "reset"), ProviderTransientError("P1", "reset")]
    registry, router, fetchers = _setup(make_registry, P1={"outcomes": errors}, P2={})
    result = _execute(registry, router)
    assert result.provider_used == "P2"
    assert fetchers["P1"].calls == 2
    assert [f.error_kind for f in result.failures] == ["network"]
    assert registry.status("P1").consecutive_failures == 1


def test_server_error_is_not_retried(make_registry):
    registry, router, fetchers = _setup(
        make_registry, P1={"outcomes": [ProviderServerError("P1", "HTTP 503")]}, P2={}
    )
    result = _execute(registry, router)
    assert result.provider_used == "P2"
    assert fetchers["P1"].calls == 1


def test_rate_limit_tracked_separately(make_registry):
    registry, router, _ = _setup(
        make_registry, P1={"outcomes": [ProviderRateLimited("P1", "429", retry_after=90)]}, P2={}
    )
    result = _execute(registry, router)
    assert result.provider_used == "P2"
    status = registry.status("P1")
    assert status.state is HealthState.HEALTHY
    assert status.consecutive_failures == 0
    assert status.rate_limited_until is not None


def test_incomplete_response_counts_as_failure(make_registry):
    registry, router, _ = _setup(
        make_registry, P1={"outcomes": [IncompleteResponse("P1", "truncated")]}, P2={}
    )
    result = _execute(registry, router)
    assert result.provider_used == "P2"
    assert result.content == "answer from P2"
    assert registry.status("P1").state is HealthState.DEGRADED


def test_all_candidates_fail(make_registry):
    registry, router, _ = _setup(
        make_registry,
        P1={"outcomes": [ProviderServerError("P1", "HTTP 500")]},
        P2={"outcomes": [IncompleteResponse("P2", "empty")]},
    )
    with pytest.raises(ProviderUnavailable) as info:
        _execute(registry, router)
    assert [(f.provider_id, f.error_kind) for f in info.value.failures] == [
        ("P1", "server_error"),
        ("P2", "incomplete"),
    ]


def test_no_candidates_is_unavailable(make_registry):
    registry, router, _ = _setup(make_registry)
    with pytest.raises(ProviderUnavailable):
        _execute(registry, router)


def test_deadline_stops_fallback(make_registry):
    registry, router, fetchers = _setup(
        make_registry, P1={"delay": 2}, P2={"delay": 2}, P3={"delay": 2}
    )
    router.settings = router.settings.model_copy(update={"min_attempt_timeout_s": 2.0})
    start = time.monotonic()
    with pytest.raises(DeadlineExceeded) as info:
        _execute(registry, router, deadline_s=1.0)
    elapsed = time.monotonic() - start
    assert elapsed < 1.6
    assert fetchers["P2"].calls == 0
    assert fetchers["P3"].calls == 0
    assert [f.error_kind for f in info.value.failures] == ["timeout"]
    assert registry.status("P1").consecutive_failures == 1
