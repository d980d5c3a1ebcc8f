"""Orchestration engine: runs one request through the pipeline and records the turn."""

from __future__ import annotations

import asyncio
import uuid
from typing import List, Optional, Sequence, Set

from studybuddy_brain.config import Settings, settings as default_settings
from studybuddy_brain.errors import USER_MESSAGES, EmbeddingError, MemoryUnavailable
from studybuddy_brain.memory.embedder import QueryEmbedder
from studybuddy_brain.memory.records import MemoryRecord
from studybuddy_brain.memory.retriever import MemoryRetriever
from studybuddy_brain.memory.store import MemoryStore
from studybuddy_brain.model.monitor import HealthMonitor
from studybuddy_brain.model.registry import ProviderRegistry
from studybuddy_brain.orchestrator.models import ErrorInfo, OrchestrationRequest, OrchestrationResponse
from studybuddy_brain.pipeline import (
    ClassificationStage,
    CompletionStage,
    ContextStage,
    KnowledgeBase,
    MonitoringStage,
    PersonalizationStage,
    PipelineContext,
    Stage,
    ValidationStage,
    run_stages,
)
from studybuddy_brain.router import FallbackRouter, deadline_in
from studybuddy_brain.utils.logging import logger
from studybuddy_brain.utils.tracing import async_span, tracer


class OrchestrationEngine:
    def __init__(
        self,
        registry: ProviderRegistry,
        store: MemoryStore,
        *,
        knowledge: KnowledgeBase | None = None,
        router: FallbackRouter | None = None,
        embedder: QueryEmbedder | None = None,
        settings: Settings | None = None,
        stages: Sequence[Stage] | None = None,
    ) -> None:
        self.settings = settings or registry.settings or default_settings
        self.registry = registry
        self.store = store
        self.knowledge = knowledge or KnowledgeBase()
        self.router = router or FallbackRouter(registry, self.settings)
        self.embedder = embedder or QueryEmbedder(registry)
        self.retriever = MemoryRetriever(store, self.embedder, self.settings.context_char_budget)
        completion = CompletionStage(self.router, registry)
        self.stages: List[Stage] = list(stages) if stages is not None else [
            ClassificationStage(self.settings),
            ContextStage(self.retriever, self.knowledge, self.settings),
            completion,
            ValidationStage(completion, self.settings),
            PersonalizationStage(),
            MonitoringStage(),
        ]
        self.monitor = HealthMonitor(registry)
        self._pending: Set[asyncio.Task] = set()
        self._sweeper: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "OrchestrationEngine":
        settings = settings or default_settings
        registry = ProviderRegistry.from_config(settings=settings)
        return cls(
            registry,
            MemoryStore(settings=settings),
            knowledge=KnowledgeBase.from_file(settings.knowledge_base_path),
            settings=settings,
        )

    # ---------- request path ----------
    async def orchestrate(
        self, request: OrchestrationRequest, *, deadline_s: float | None = None
    ) -> OrchestrationResponse:
        ctx = PipelineContext(
            request=request,
            deadline=deadline_in(deadline_s or self.settings.request_deadline_s),
            session_id=uuid.uuid4().hex,
        )
        async with async_span("orchestrate", tracer, attributes={"user": request.user_id}):
            ctx = await run_stages(self.stages, ctx)
        if ctx.error is None:
            self._schedule_append(ctx)
        response = self._compose(ctx)
        logger.info(
            "orchestration_complete",
            session=ctx.session_id,
            provider=response.provider_used,
            fallback=response.fallback_used,
            verdict=response.verdict,
            error=response.error.kind if response.error else None,
            latency_ms=response.latency_ms,
        )
        return response

    @staticmethod
    def _compose(ctx: PipelineContext) -> OrchestrationResponse:
        if ctx.error is not None:
            return OrchestrationResponse(
                content="",
                latency_ms=ctx.latency_ms,
                verdict="error",
                warnings=ctx.warnings,
                error=ErrorInfo(kind=ctx.error.kind, message=USER_MESSAGES.get(ctx.error.kind, ctx.error.message)),
            )
        route = ctx.route
        return OrchestrationResponse(
            content=ctx.content,
            provider_used=route.provider_used if route else None,
            fallback_used=route.fallback_used if route else False,
            memory_references=ctx.memory_references,
            latency_ms=ctx.latency_ms,
            verdict=ctx.verdict,
            low_confidence=ctx.low_confidence,
            warnings=ctx.warnings,
        )

    # ---------- memory write-back ----------
    def _schedule_append(self, ctx: PipelineContext) -> None:
        task = asyncio.create_task(self._remember(ctx.request, ctx.content), name=f"remember-{ctx.session_id}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _remember(self, request: OrchestrationRequest, content: str) -> Optional[str]:
        record = MemoryRecord.from_turn(
            request.user_id,
            request.conversation_id,
            request.message,
            content,
            retention_days=self.settings.retention_days,
            importance=request.importance,
            tags=request.tags,
            retention=request.retention,
            now=self.store.clock(),
        )
        try:
            vector = await self.embedder.embed(record.text)
        except EmbeddingError as exc:
            logger.warning("memory_append_unembedded", user=request.user_id, error=exc.message)
        else:
            if len(vector) == self.settings.embedding_dims:
                record.embedding = vector
            else:
                logger.warning("memory_append_dims", user=request.user_id, got=len(vector))
        try:
            return await self.store.append(record)
        except MemoryUnavailable as exc:
            logger.error("memory_append_failed", user=request.user_id, error=exc.message)
            return None

    async def drain(self) -> None:
        """Wait for every scheduled memory append to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ---------- background tasks ----------
    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval_s)
            try:
                await self.store.sweep_expired()
            except MemoryUnavailable as exc:
                logger.error("memory_sweep_failed", error=exc.message)

    def start(self) -> None:
        self.monitor.start()
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="memory-sweeper")

    async def stop(self) -> None:
        await self.monitor.stop()
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.drain()


__all__ = ["OrchestrationEngine"]
