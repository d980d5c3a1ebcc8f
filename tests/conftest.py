import asyncio
import sqlite3
from typing import Callable, Dict, List, Sequence

import pytest

from studybuddy_brain.config import Settings, settings as global_settings
from studybuddy_brain.errors import ProviderServerError
from studybuddy_brain.memory.backends import InMemoryBackend
from studybuddy_brain.memory.store import MemoryStore
from studybuddy_brain.model.descriptor import COMPLETION, EMBEDDING, ProviderDescriptor
from studybuddy_brain.model.registry import ProviderRegistry
from studybuddy_brain.model_fetchers.base_fetcher import BaseFetcher
from studybuddy_brain.orchestrator.engine import OrchestrationEngine
from studybuddy_brain.pipeline.knowledge import KnowledgeBase

DIMS = 16


class FakeClock:
    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedFetcher(BaseFetcher):
    """Completion backend that replays scripted outcomes, then a fixed reply."""

    def __init__(self, descriptor, outcomes: Sequence = (), delay: float = 0.0, reply: str | None = None):
        super().__init__(descriptor)
        self.outcomes = list(outcomes)
        self.delay = delay
        self.reply = reply if reply is not None else f"answer from {descriptor.id}"
        self.calls = 0
        self.contexts: List[str] = []

    async def generate_completion(self, prompt, context, timeout):
        self.calls += 1
        self.contexts.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return self.reply


TOPICS = {
    "name": ("name", "kunal", "called"),
    "math": ("math", "algebra", "equation", "calculus"),
    "chemistry": ("chemistry", "atom", "molecule"),
}


def topic_vector(text: str, dims: int = DIMS) -> List[float]:
    vec = [0.0] * dims
    lowered = text.lower()
    for i, words in enumerate(TOPICS.values()):
        if any(w in lowered for w in words):
            vec[i] = 1.0
    vec[-1] = 0.1
    return vec


class TopicEmbedder(BaseFetcher):
    """Embeds text onto a few topic axes so similarities are predictable."""

    def __init__(self, descriptor, fail: bool | BaseException = False):
        super().__init__(descriptor)
        self.fail = fail
        self.calls = 0

    async def embed_text(self, text, timeout):
        self.calls += 1
        if isinstance(self.fail, BaseException):
            raise self.fail
        if self.fail:
            raise ProviderServerError(self.name, "embedding backend down")
        return topic_vector(text)


@pytest.fixture(autouse=True)
def _event_log(tmp_path, monkeypatch):
    monkeypatch.setattr(global_settings, "log_path", str(tmp_path / "logs"))
    monkeypatch.setattr(global_settings, "log_db_path", None)
    monkeypatch.setattr(global_settings, "log_stream_url", None)
    monkeypatch.delenv("STUDYBUDDY_MEMORY_WEIGHTS", raising=False)
    return tmp_path / "logs"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        log_path=str(tmp_path / "logs"),
        embedding_dims=DIMS,
        min_attempt_timeout_s=0.5,
        transient_retry_backoff_s=0.0,
        request_deadline_s=5.0,
        open_cooldown_s=30.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_registry(test_settings, clock) -> Callable[..., ProviderRegistry]:
    def factory(fetchers: Dict[str, Callable[[ProviderDescriptor], BaseFetcher]] | None = None, **priorities):
        registry = ProviderRegistry(settings=test_settings, clock=clock)
        for pid, build in (fetchers or {}).items():
            descriptor = ProviderDescriptor(
                id=pid,
                provider_type="fake",
                capabilities=frozenset({COMPLETION}),
                priority=priorities.get(pid, 1.0),
            )
            registry.register(descriptor, build(descriptor))
        return registry

    return factory


@pytest.fixture
def make_store(test_settings, clock) -> Callable[..., MemoryStore]:
    def factory(backend=None):
        return MemoryStore(backend or InMemoryBackend(), test_settings, clock=clock)

    return factory


@pytest.fixture
def make_engine(test_settings, make_registry, make_store):
    """Engine over scripted completion providers and a topic embedder."""

    def factory(completion: Dict[str, Callable] | None = None, *, embed_fail: bool | BaseException = False, knowledge=None, **kw):
        completion = completion or {"P1": lambda d: ScriptedFetcher(d)}
        registry = make_registry(completion, **kw)
        embed = ProviderDescriptor(id="embedder", provider_type="fake", capabilities=frozenset({EMBEDDING}))
        registry.register(embed, TopicEmbedder(embed, fail=embed_fail))
        return OrchestrationEngine(
            registry,
            make_store(),
            knowledge=knowledge or KnowledgeBase(),
            settings=test_settings,
        )

    return factory


class BrokenBackend(InMemoryBackend):
    """Backend whose storage engine is unreachable."""

    def similarity_search(self, *args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    def insert(self, record):
        raise sqlite3.OperationalError("disk I/O error")
