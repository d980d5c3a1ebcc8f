"""Declared knowledge-base facts used to build and check answers."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

from studybuddy_brain.config import load_knowledge_base
from studybuddy_brain.scoring import tokenize

HIGH_CONFIDENCE = 0.8


@dataclass(frozen=True)
class KnowledgeFact:
    id: str
    statement: str
    keywords: frozenset = field(default_factory=frozenset)
    contradictions: Tuple[str, ...] = ()
    confidence: float = 1.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeFact":
        statement = str(data.get("statement", ""))
        keywords = data.get("keywords") or tokenize(statement, drop_stopwords=True)
        return cls(
            id=str(data.get("id") or statement[:32]),
            statement=statement,
            keywords=frozenset(k.lower() for k in keywords),
            contradictions=tuple(str(c).lower() for c in data.get("contradicts", [])),
            confidence=float(data.get("confidence", 1.0)),
        )

    def contradicted_by(self, text: str) -> bool:
        lowered = text.lower()
        return self.confidence >= HIGH_CONFIDENCE and any(c in lowered for c in self.contradictions)


class KnowledgeBase:
    def __init__(self, facts: Iterable[KnowledgeFact] = ()) -> None:
        self.facts: List[KnowledgeFact] = list(facts)

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> "KnowledgeBase":
        data = load_knowledge_base(path)
        return cls(KnowledgeFact.from_dict(item) for item in data.get("facts", []) if isinstance(item, dict))

    def relevant(self, query: str, limit: int = 5) -> List[KnowledgeFact]:
        """Facts sharing at least one keyword with ``query``, most shared first."""
        tokens = set(tokenize(query, drop_stopwords=True))
        hits = [(len(tokens & fact.keywords), fact) for fact in self.facts]
        hits = [h for h in hits if h[0] > 0]
        hits.sort(key=lambda h: (h[0], h[1].confidence), reverse=True)
        return [fact for _, fact in hits[:limit]]

    def __len__(self) -> int:
        return len(self.facts)


__all__ = ["HIGH_CONFIDENCE", "KnowledgeBase", "KnowledgeFact"]
