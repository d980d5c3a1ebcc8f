"""StudyBuddy brain: provider fallback routing, conversational memory and a staged answer pipeline."""

from .errors import (
    DeadlineExceeded,
    EmbeddingError,
    MemoryUnavailable,
    OrchestrationError,
    ProviderUnavailable,
    RejectedInput,
    ValidationFailed,
)
from .orchestrator import OrchestrationEngine, OrchestrationRequest, OrchestrationResponse

__version__ = "0.1.0"

__all__ = [
    "DeadlineExceeded",
    "EmbeddingError",
    "MemoryUnavailable",
    "OrchestrationEngine",
    "OrchestrationError",
    "OrchestrationRequest",
    "OrchestrationResponse",
    "ProviderUnavailable",
    "RejectedInput",
    "ValidationFailed",
    "__version__",
]
