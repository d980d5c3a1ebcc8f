"""Completion stage: hand the built prompt to the fallback router."""

from __future__ import annotations

from studybuddy_brain.errors import DeadlineExceeded, ProviderUnavailable
from studybuddy_brain.model.descriptor import COMPLETION
from studybuddy_brain.model.registry import ProviderRegistry
from studybuddy_brain.pipeline.base import PipelineContext, RequestState, ShortCircuit, Stage
from studybuddy_brain.router import CompletionRequest, FallbackRouter, RouteResult


class CompletionStage(Stage):
    name = "completion"
    advances_to = RequestState.COMPLETED

    def __init__(self, router: FallbackRouter, registry: ProviderRegistry) -> None:
        self.router = router
        self.registry = registry

    async def generate(self, ctx: PipelineContext, extra_instructions: str = "") -> RouteResult:
        context = ctx.prompt_context
        if extra_instructions:
            context = f"{context}\n\n{extra_instructions}" if context else extra_instructions
        request = CompletionRequest(prompt=ctx.request.message, context=context, session_id=ctx.session_id)
        return await self.router.execute(request, self.registry.candidates(COMPLETION), ctx.deadline)

    async def process(self, ctx: PipelineContext) -> PipelineContext:
        try:
            route = await self.generate(ctx)
        except (ProviderUnavailable, DeadlineExceeded) as exc:
            raise ShortCircuit(exc) from exc
        ctx.route = route
        ctx.content = route.content
        return ctx


__all__ = ["CompletionStage"]
