"""Error types shared by the router, memory layer and pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List


class OrchestrationError(Exception):
    """Base class for errors surfaced to callers with a stable ``kind``."""

    kind = "OrchestrationError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class RejectedInput(OrchestrationError):
    kind = "RejectedInput"


@dataclass
class AttemptFailure:
    """Diagnostic record for one failed provider attempt."""

    provider_id: str
    error_kind: str
    message: str
    latency_ms: int = 0


class ProviderUnavailable(OrchestrationError):
    kind = "ProviderUnavailable"

    def __init__(self, message: str, failures: List[AttemptFailure] | None = None) -> None:
        super().__init__(message)
        self.failures = list(failures or [])


class DeadlineExceeded(OrchestrationError):
    kind = "DeadlineExceeded"

    def __init__(self, message: str, failures: List[AttemptFailure] | None = None) -> None:
        super().__init__(message)
        self.failures = list(failures or [])


class MemoryUnavailable(OrchestrationError):
    """Memory store unreachable. Recovered locally, never terminal."""

    kind = "MemoryUnavailable"


class EmbeddingError(OrchestrationError):
    """Query could not be vectorized. Retrieval degrades to keyword-only."""

    kind = "EmbeddingError"


class ValidationFailed(OrchestrationError):
    kind = "ValidationFailed"


class InternalError(OrchestrationError):
    """A pipeline stage crashed on something other than a classified error."""

    kind = "InternalError"


# Provider attempt errors. Backends raise these, the router classifies them.


class ProviderError(RuntimeError):
    kind = "provider_error"

    def __init__(self, provider_id: str, message: str) -> None:
        super().__init__(message)
        self.provider_id = provider_id


class ProviderTimeout(ProviderError):
    kind = "timeout"


class ProviderTransientError(ProviderError):
    """Network-level failure; the router allows one retry on the same provider."""

    kind = "network"


class ProviderServerError(ProviderError):
    kind = "server_error"


class ProviderRejected(ProviderError):
    kind = "rejected"


class IncompleteResponse(ProviderError):
    kind = "incomplete"


class ProviderRateLimited(ProviderError):
    kind = "rate_limited"

    def __init__(self, provider_id: str, message: str, retry_after: float | None = None) -> None:
        super().__init__(provider_id, message)
        self.retry_after = retry_after


USER_MESSAGES = {
    RejectedInput.kind: "I can't help with that request.",
    ProviderUnavailable.kind: "All AI providers are unavailable right now. Please try again in a moment.",
    DeadlineExceeded.kind: "The request took too long to answer. Please try again.",
    InternalError.kind: "Something went wrong while answering. Please try again.",
}


__all__ = [
    "OrchestrationError",
    "RejectedInput",
    "AttemptFailure",
    "ProviderUnavailable",
    "DeadlineExceeded",
    "MemoryUnavailable",
    "EmbeddingError",
    "ValidationFailed",
    "InternalError",
    "ProviderError",
    "ProviderTimeout",
    "ProviderTransientError",
    "ProviderServerError",
    "ProviderRejected",
    "IncompleteResponse",
    "ProviderRateLimited",
    "USER_MESSAGES",
]
