"""Five-stage request pipeline: classify, build context, validate, personalize, monitor."""

from .base import PipelineContext, RequestState, ShortCircuit, Stage, run_stages
from .classification import ClassificationStage
from .completion import CompletionStage
from .context import ContextStage
from .knowledge import KnowledgeBase, KnowledgeFact
from .monitoring import MonitoringStage
from .personalization import PersonalizationStage
from .validation import ValidationStage

__all__ = [
    "ClassificationStage",
    "CompletionStage",
    "ContextStage",
    "KnowledgeBase",
    "KnowledgeFact",
    "MonitoringStage",
    "PersonalizationStage",
    "PipelineContext",
    "RequestState",
    "ShortCircuit",
    "Stage",
    "ValidationStage",
    "run_stages",
]
