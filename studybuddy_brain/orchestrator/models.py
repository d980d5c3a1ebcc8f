"""Inbound request and outbound response models (camelCase on the wire)."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ContextLevelName = Literal["minimal", "balanced", "comprehensive"]
RetentionClass = Literal["session", "short_term", "long_term", "permanent"]


class OrchestrationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    conversation_id: str = Field(..., alias="conversationId", min_length=1)
    message: str = Field(..., min_length=1)
    is_personal_query: Optional[bool] = Field(None, alias="isPersonalQuery")
    context_level: Optional[ContextLevelName] = Field(None, alias="contextLevel")
    importance: Optional[int] = Field(None, ge=1, le=5)
    tags: List[str] = Field(default_factory=list)
    retention: RetentionClass = "long_term"


class ErrorInfo(BaseModel):
    kind: str
    message: str


class OrchestrationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = ""
    provider_used: Optional[str] = Field(None, alias="providerUsed")
    fallback_used: bool = Field(False, alias="fallbackUsed")
    memory_references: List[str] = Field(default_factory=list, alias="memoryReferences")
    latency_ms: int = Field(0, alias="latencyMs")
    verdict: str = "pending"
    low_confidence: bool = Field(False, alias="lowConfidence")
    warnings: List[str] = Field(default_factory=list)
    error: Optional[ErrorInfo] = None


__all__ = ["ErrorInfo", "OrchestrationRequest", "OrchestrationResponse"]
