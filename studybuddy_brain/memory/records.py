"""Memory record and retrieval result types."""

from __future__ import annotations

import hashlib
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional

DAY_S = 24 * 60 * 60

# retention classes; ``long_term`` follows the configured retention_days
RETENTION_WINDOWS_S = {
    "session": 1 * DAY_S,
    "short_term": 7 * DAY_S,
    "long_term": None,
    "permanent": 3650 * DAY_S,
}

SENSITIVE_TAG = "sensitive"

_PERSONAL_FACT_RE = re.compile(
    r"\b(?:my name is|call me|i am|i'm|i prefer|i like|i love|i hate|my favou?rite)\b", re.IGNORECASE
)


def message_hash(message: str) -> str:
    return hashlib.sha256(message.strip().encode("utf-8")).hexdigest()


def natural_key(user_id: str, conversation_id: str, message: str) -> str:
    """Idempotency key for one stored turn."""
    raw = f"{user_id}\x1f{conversation_id}\x1f{message_hash(message)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def infer_importance(message: str, tags: Iterable[str] = ()) -> int:
    """Guess a 1-5 importance when the caller does not assign one."""
    score = 2
    if _PERSONAL_FACT_RE.search(message):
        score += 2
    tag_set = set(tags)
    if tag_set & {"identity", "personal", "preference"}:
        score += 1
    if len(message) > 280:
        score += 1
    return max(1, min(5, score))


@dataclass
class MemoryRecord:
    user_id: str
    conversation_id: str
    text: str
    natural_key: str
    embedding: Optional[List[float]] = None
    importance: int = 3
    tags: FrozenSet[str] = frozenset()
    created_at: float = field(default_factory=time.time)
    expires_at: Optional[float] = None
    active: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_turn(
        cls,
        user_id: str,
        conversation_id: str,
        message: str,
        response: str,
        *,
        retention_days: float,
        importance: int | None = None,
        tags: Iterable[str] = (),
        retention: str = "long_term",
        embedding: Optional[List[float]] = None,
        now: float | None = None,
    ) -> "MemoryRecord":
        now = time.time() if now is None else now
        window = RETENTION_WINDOWS_S.get(retention)
        if window is None:
            window = retention_days * DAY_S
        tag_set = frozenset(tags)
        return cls(
            user_id=user_id,
            conversation_id=conversation_id,
            text=f"User: {message}\nAssistant: {response}",
            natural_key=natural_key(user_id, conversation_id, message),
            embedding=embedding,
            importance=importance if importance is not None else infer_importance(message, tag_set),
            tags=tag_set,
            created_at=now,
            expires_at=now + window,
        )

    @property
    def sensitive(self) -> bool:
        return SENSITIVE_TAG in self.tags

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass
class ScoredMemory:
    record: MemoryRecord
    similarity: float
    keyword_overlap: float
    composite: float


@dataclass
class RetrievalResult:
    items: List[ScoredMemory] = field(default_factory=list)
    latency_ms: int = 0
    keyword_only: bool = False

    @property
    def count_found(self) -> int:
        return len(self.items)

    @property
    def max_similarity(self) -> float:
        return max((item.similarity for item in self.items), default=0.0)

    @property
    def ids(self) -> List[str]:
        return [item.record.id for item in self.items]

    @classmethod
    def empty(cls, latency_ms: int = 0) -> "RetrievalResult":
        return cls(items=[], latency_ms=latency_ms)


__all__ = [
    "DAY_S",
    "MemoryRecord",
    "RETENTION_WINDOWS_S",
    "RetrievalResult",
    "SENSITIVE_TAG",
    "ScoredMemory",
    "infer_importance",
    "message_hash",
    "natural_key",
]
