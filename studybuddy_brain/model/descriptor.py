"""Provider descriptors parsed from config files."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Mapping, Optional

COMPLETION = "completion"
EMBEDDING = "embedding"

_KNOWN_KEYS = {
    "id",
    "name",
    "type",
    "provider",
    "capabilities",
    "cost_tier",
    "rate_limit_per_minute",
    "priority",
}


@dataclass(frozen=True)
class ProviderDescriptor:
    id: str
    provider_type: str = "local"
    capabilities: FrozenSet[str] = frozenset({COMPLETION})
    cost_tier: int = 1
    rate_limit_per_minute: Optional[int] = None
    priority: float = 1.0
    extras: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderDescriptor":
        provider_type = str(data.get("type") or data.get("provider") or "local").lower()
        caps = data.get("capabilities")
        if caps is None:
            caps = [COMPLETION, EMBEDDING] if provider_type in {"openai", "local"} else [COMPLETION]
        elif isinstance(caps, str):
            caps = [c.strip() for c in caps.split(",") if c.strip()]
        rate_limit = data.get("rate_limit_per_minute")
        extras = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}
        return cls(
            id=str(data.get("id") or data.get("name") or ""),
            provider_type=provider_type,
            capabilities=frozenset(str(c).lower() for c in caps),
            cost_tier=int(data.get("cost_tier", 1)),
            rate_limit_per_minute=int(rate_limit) if rate_limit else None,
            priority=float(data.get("priority", 1.0)),
            extras=MappingProxyType(extras),
        )


__all__ = ["ProviderDescriptor", "COMPLETION", "EMBEDDING"]
