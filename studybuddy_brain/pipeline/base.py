"""Stage interface and per-request state carried through the pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from studybuddy_brain.errors import InternalError, OrchestrationError
from studybuddy_brain.utils.logging import logger
from studybuddy_brain.utils.tracing import async_span, tracer

if TYPE_CHECKING:  # pragma: no cover
    from studybuddy_brain.memory.retriever import ContextBundle
    from studybuddy_brain.pipeline.knowledge import KnowledgeFact
    from studybuddy_brain.router import RouteResult


class RequestState(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    CONTEXT_BUILT = "context_built"
    COMPLETED = "completed"
    VALIDATED = "validated"
    PERSONALIZED = "personalized"
    RECORDED = "recorded"
    DONE = "done"
    ERROR = "error"


class ShortCircuit(Exception):
    """Raised by a stage to stop the pipeline with a terminal error."""

    def __init__(self, error: OrchestrationError) -> None:
        super().__init__(error.message)
        self.error = error


@dataclass
class PipelineContext:
    request: Any
    deadline: float
    session_id: str = "default"
    state: RequestState = RequestState.RECEIVED
    personal: bool = False
    query_type: str = "general"
    memory: Optional["ContextBundle"] = None
    facts: List["KnowledgeFact"] = field(default_factory=list)
    prompt_context: str = ""
    route: Optional["RouteResult"] = None
    content: str = ""
    verdict: str = "pending"
    low_confidence: bool = False
    validation_issues: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[OrchestrationError] = None
    started: float = field(default_factory=time.monotonic)
    history: List[RequestState] = field(default_factory=list)

    @property
    def memory_references(self) -> List[str]:
        return list(self.memory.references) if self.memory else []

    @property
    def latency_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def advance(self, state: RequestState) -> None:
        self.history.append(state)
        self.state = state

    def fail(self, error: OrchestrationError) -> None:
        self.error = error
        self.content = ""
        self.advance(RequestState.ERROR)


class Stage:
    """One pipeline step. ``process`` returns the context or raises ShortCircuit."""

    name = "stage"
    advances_to: Optional[RequestState] = None
    # stages that still run once the request is in the Error state
    always_run = False

    async def process(self, ctx: PipelineContext) -> PipelineContext:
        raise NotImplementedError


async def run_stages(stages: Sequence[Stage], ctx: PipelineContext) -> PipelineContext:
    """Run ``stages`` in order, skipping all but ``always_run`` ones after an error."""
    for stage in stages:
        if ctx.error is not None and not stage.always_run:
            continue
        try:
            async with async_span(f"stage.{stage.name}", tracer, attributes={"session": ctx.session_id}):
                ctx = await stage.process(ctx)
        except ShortCircuit as sc:
            logger.info("pipeline_short_circuit", stage=stage.name, kind=sc.error.kind)
            ctx.fail(sc.error)
            continue
        except Exception as exc:  # noqa: BLE001 - the always-run stages must still see the request
            logger.exception("pipeline_stage_crashed", stage=stage.name, session=ctx.session_id)
            if ctx.error is None:
                ctx.fail(InternalError(f"stage {stage.name} failed: {type(exc).__name__}"))
            continue
        if ctx.error is None and stage.advances_to is not None:
            ctx.advance(stage.advances_to)
    if ctx.error is None:
        ctx.advance(RequestState.DONE)
    return ctx


__all__ = ["PipelineContext", "RequestState", "ShortCircuit", "Stage", "run_stages"]
