"""Stage 2: merge retrieved memory and knowledge facts into the prompt context."""

from __future__ import annotations

import asyncio
import time
from typing import List

from studybuddy_brain.config import Settings
from studybuddy_brain.memory.records import RetrievalResult
from studybuddy_brain.memory.retriever import ContextBundle, MemoryRetriever
from studybuddy_brain.pipeline.base import PipelineContext, RequestState, Stage
from studybuddy_brain.pipeline.knowledge import KnowledgeBase, KnowledgeFact
from studybuddy_brain.utils.logging import logger

SYSTEM_PREAMBLE = "You are StudyBuddy, a friendly and accurate study assistant."


def build_prompt_context(
    ctx: PipelineContext, memory: ContextBundle, facts: List[KnowledgeFact], cutoff_year: int
) -> str:
    parts = [SYSTEM_PREAMBLE]
    if ctx.query_type == "time_sensitive":
        parts.append(
            f"This question may concern recent events. Your knowledge ends in {cutoff_year}; "
            "say so instead of guessing about anything later."
        )
    elif ctx.query_type == "app_data":
        parts.append("This question is about the user's own StudyBuddy data; only use details given below.")
    if memory.context:
        parts.append(memory.context)
    if facts:
        parts.append("Known facts:\n" + "\n".join(f"- {f.statement}" for f in facts))
    return "\n\n".join(parts)


class ContextStage(Stage):
    name = "context"
    advances_to = RequestState.CONTEXT_BUILT

    def __init__(self, retriever: MemoryRetriever, knowledge: KnowledgeBase, settings: Settings) -> None:
        self.retriever = retriever
        self.knowledge = knowledge
        self.settings = settings

    async def _memory(self, ctx: PipelineContext) -> ContextBundle:
        remaining = ctx.deadline - time.monotonic()
        try:
            return await asyncio.wait_for(
                self.retriever.get_context(ctx.request, personal=ctx.personal), timeout=max(remaining, 0)
            )
        except asyncio.TimeoutError:
            logger.warning("memory_context_timeout", session=ctx.session_id)
            return ContextBundle(result=RetrievalResult.empty(), warnings=["MemoryUnavailable: retrieval timed out"])

    async def process(self, ctx: PipelineContext) -> PipelineContext:
        memory, facts = await asyncio.gather(
            self._memory(ctx),
            asyncio.to_thread(self.knowledge.relevant, ctx.request.message),
        )
        ctx.memory = memory
        ctx.facts = facts
        ctx.warnings.extend(memory.warnings)
        ctx.prompt_context = build_prompt_context(ctx, memory, facts, self.settings.knowledge_cutoff_year)
        return ctx


__all__ = ["ContextStage", "SYSTEM_PREAMBLE", "build_prompt_context"]
