"""Request orchestration: models, engine and HTTP surface."""

from .engine import OrchestrationEngine
from .models import ErrorInfo, OrchestrationRequest, OrchestrationResponse

__all__ = ["ErrorInfo", "OrchestrationEngine", "OrchestrationRequest", "OrchestrationResponse"]
