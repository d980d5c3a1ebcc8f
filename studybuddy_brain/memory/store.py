"""Memory store: the only mutation path for conversational memory."""

from __future__ import annotations

import asyncio
import sqlite3
import time
import weakref
from typing import Callable, List, Optional, Sequence

from prometheus_client import Counter, Histogram

from studybuddy_brain.config import Settings, settings as default_settings
from studybuddy_brain.errors import MemoryUnavailable
from studybuddy_brain.memory.backends import MemoryBackend, backend_from_settings
from studybuddy_brain.memory.records import DAY_S, MemoryRecord, RetrievalResult, ScoredMemory
from studybuddy_brain.scoring import (
    ScoreWeights,
    composite_score,
    importance_score,
    keyword_overlap,
    passes_gate,
    recency_decay,
)
from studybuddy_brain.utils.logging import logger
from studybuddy_brain.utils.tracing import async_span, tracer

MEMORY_OP_COUNT = Counter(
    "studybuddy_memory_operations_total",
    "Total memory store operations",
    ["op", "status"],
)
MEMORY_OP_LATENCY = Histogram(
    "studybuddy_memory_operation_seconds",
    "Time spent in memory store operations",
    ["op"],
)

_BACKEND_ERRORS = (sqlite3.Error, OSError)


class MemoryStore:
    """Hybrid-ranked per-user memory on top of a :class:`MemoryBackend`.

    Appends for the same user are serialized; appends for different users
    and all reads run concurrently.
    """

    def __init__(
        self,
        backend: MemoryBackend | None = None,
        settings: Settings | None = None,
        *,
        weights: ScoreWeights | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or default_settings
        self.backend = backend or backend_from_settings(self.settings.memory_db_path)
        self.weights = (weights or ScoreWeights.from_env()).normalized()
        self.clock = clock
        # entries vanish once no append holds or waits on the lock
        self._user_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def _run(self, op: str, fn, *args):
        start = time.perf_counter()
        try:
            result = await asyncio.to_thread(fn, *args)
        except _BACKEND_ERRORS as exc:
            MEMORY_OP_COUNT.labels(op, "error").inc()
            logger.warning("memory_backend_error", op=op, error=str(exc))
            raise MemoryUnavailable(f"memory store {op} failed: {exc}") from exc
        MEMORY_OP_COUNT.labels(op, "ok").inc()
        MEMORY_OP_LATENCY.labels(op).observe(time.perf_counter() - start)
        return result

    def _check_dims(self, vector: Optional[Sequence[float]]) -> bool:
        return vector is not None and len(vector) == self.settings.embedding_dims

    async def append(self, record: MemoryRecord) -> str:
        """Store ``record`` and return its id.

        Appending the same (user, conversation, message) while the first
        record is still active returns that record's id.
        """
        if record.embedding is not None and not self._check_dims(record.embedding):
            raise ValueError(
                f"embedding has {len(record.embedding)} dims, expected {self.settings.embedding_dims}"
            )
        lock = self._user_locks.get(record.user_id)
        if lock is None:
            lock = self._user_locks[record.user_id] = asyncio.Lock()
        async with lock:
            record_id = await self._run("append", self.backend.insert, record)
        if record_id != record.id:
            logger.debug("memory_append_duplicate", user=record.user_id, record_id=record_id)
        return record_id

    async def query(
        self,
        user_id: str,
        query_embedding: Optional[Sequence[float]],
        query_text: str,
        limit: int = 5,
        min_similarity: float = 0.6,
    ) -> RetrievalResult:
        """Return at most ``limit`` records ranked by composite score.

        A record is only eligible when it is semantically close enough or
        shares enough content words with ``query_text``. Without a usable
        query embedding the search is keyword-only.
        """
        start = time.perf_counter()
        keyword_only = not self._check_dims(query_embedding)
        if query_embedding is not None and keyword_only:
            logger.warning(
                "memory_query_dims_mismatch", got=len(query_embedding), expected=self.settings.embedding_dims
            )
        vector = None if keyword_only else query_embedding

        async with async_span("memory.query", tracer, attributes={"user": user_id, "keyword_only": keyword_only}):
            candidates = await self._run(
                "query",
                self.backend.similarity_search,
                user_id,
                vector,
                query_text,
                self.settings.memory_candidate_pool,
                min_similarity,
            )

        now = self.clock()
        half_life_s = self.settings.recency_half_life_days * DAY_S
        scored: List[ScoredMemory] = []
        for record, similarity in candidates:
            if record.expired(now):
                continue
            overlap = keyword_overlap(query_text, record.text)
            if not passes_gate(similarity, overlap, min_similarity, self.settings.min_keyword_overlap):
                continue
            score = composite_score(
                similarity,
                overlap,
                recency_decay(now - record.created_at, half_life_s),
                importance_score(record.importance),
                self.weights,
            )
            scored.append(ScoredMemory(record, similarity, overlap, score))

        scored.sort(key=lambda s: (s.composite, s.record.created_at), reverse=True)
        return RetrievalResult(
            items=scored[: max(limit, 0)],
            latency_ms=int((time.perf_counter() - start) * 1000),
            keyword_only=keyword_only,
        )

    async def sweep_expired(self) -> int:
        """Deactivate every record whose ``expires_at`` has passed."""
        count = await self._run("sweep", self.backend.mark_expired, self.clock())
        if count:
            logger.info("memory_sweep", deactivated=count)
        return count

    async def forget(self, record_id: str) -> bool:
        return await self._run("forget", self.backend.deactivate, record_id)

    async def purge_inactive(self, before: float | None = None) -> int:
        before = self.clock() if before is None else before
        count = await self._run("purge", self.backend.purge_inactive, before)
        logger.info("memory_purge", deleted=count)
        return count

    async def get(self, record_id: str) -> Optional[MemoryRecord]:
        return await self._run("get", self.backend.get, record_id)

    async def count(self, user_id: str | None = None, *, active_only: bool = True) -> int:
        return await self._run("count", lambda: self.backend.count(user_id, active_only=active_only))


__all__ = ["MEMORY_OP_COUNT", "MEMORY_OP_LATENCY", "MemoryStore"]
