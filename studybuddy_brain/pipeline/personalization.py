"""Stage 4: personalize the answer with facts found in the user's own memory."""

from __future__ import annotations

from studybuddy_brain.pipeline.base import PipelineContext, RequestState, Stage


class PersonalizationStage(Stage):
    name = "personalization"
    advances_to = RequestState.PERSONALIZED

    async def process(self, ctx: PipelineContext) -> PipelineContext:
        # only facts extracted from surfaced memory records; nothing is invented
        if not ctx.personal or ctx.memory is None or not ctx.content:
            return ctx
        name = ctx.memory.personal_facts.get("name")
        if name and not ctx.low_confidence and name.lower() not in ctx.content.lower():
            ctx.content = f"{name}, {ctx.content}"
        return ctx


__all__ = ["PersonalizationStage"]
