"""Memory retriever: builds the bounded context block for one request."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from studybuddy_brain.errors import EmbeddingError, MemoryUnavailable
from studybuddy_brain.memory.embedder import QueryEmbedder
from studybuddy_brain.memory.records import MemoryRecord, RetrievalResult
from studybuddy_brain.memory.store import MemoryStore
from studybuddy_brain.utils.logging import logger


@dataclass(frozen=True)
class ContextLevel:
    limit: int
    min_similarity: float


CONTEXT_LEVELS: Dict[str, ContextLevel] = {
    "minimal": ContextLevel(limit=3, min_similarity=0.8),
    "balanced": ContextLevel(limit=5, min_similarity=0.7),
    "comprehensive": ContextLevel(limit=8, min_similarity=0.6),
}

HISTORY_HEADER = "Relevant conversation history:"
PERSONAL_HEADER = "IMPORTANT: These are personal details about the user:"

_NAME_RE = re.compile(r"(?i:\bmy name is|\bcall me|\bi am|\bi'm)\s+([A-Z][a-zA-Z]+)")
_PREFERENCE_RE = re.compile(r"\bi (?:prefer|like|love|enjoy)\s+([^.!?\n]+)", re.IGNORECASE)


@dataclass
class ContextBundle:
    result: RetrievalResult
    context: str = ""
    references: List[str] = field(default_factory=list)
    personal_facts: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    level: str = "balanced"

    @property
    def records(self) -> List[MemoryRecord]:
        wanted = set(self.references)
        return [item.record for item in self.result.items if item.record.id in wanted]


def choose_level(hint: Optional[str], personal: bool) -> str:
    if hint in CONTEXT_LEVELS:
        return hint
    return "comprehensive" if personal else "balanced"


def user_turn(record: MemoryRecord) -> str:
    """The user's side of a stored ``User: ...\\nAssistant: ...`` turn."""
    head = record.text.split("\nAssistant:", 1)[0]
    return head[len("User:"):].strip() if head.startswith("User:") else head.strip()


def extract_personal_facts(records: List[MemoryRecord]) -> Dict[str, Any]:
    """Pull the user's name and stated preferences out of their own turns."""
    facts: Dict[str, Any] = {}
    preferences: List[str] = []
    for record in records:
        said = user_turn(record)
        if "name" not in facts:
            match = _NAME_RE.search(said)
            if match:
                facts["name"] = match.group(1)
                facts["name_source"] = record.id
        for match in _PREFERENCE_RE.finditer(said):
            pref = match.group(1).strip()
            if pref and pref not in preferences:
                preferences.append(pref)
    if preferences:
        facts["preferences"] = preferences
    return facts


class MemoryRetriever:
    def __init__(self, store: MemoryStore, embedder: QueryEmbedder, char_budget: int | None = None) -> None:
        self.store = store
        self.embedder = embedder
        self.char_budget = char_budget or store.settings.context_char_budget

    def format_context(self, result: RetrievalResult, personal: bool) -> tuple[str, List[str], Dict[str, Any]]:
        lines: List[str] = []
        included: List[MemoryRecord] = []
        used = 0
        # items are best-first, so the budget drops the lowest-scoring records
        for item in result.items:
            line = f"- {item.record.text}"
            if used + len(line) > self.char_budget:
                break
            lines.append(line)
            included.append(item.record)
            used += len(line) + 1
        if not lines:
            return "", [], {}
        facts = extract_personal_facts(included)
        parts = [HISTORY_HEADER, *lines]
        if personal and facts:
            parts.append("")
            parts.append(PERSONAL_HEADER)
            if "name" in facts:
                parts.append(f"- Name: {facts['name']}")
            for pref in facts.get("preferences", []):
                parts.append(f"- Likes: {pref}")
        return "\n".join(parts), [r.id for r in included], facts

    async def get_context(self, request, *, personal: bool | None = None) -> ContextBundle:
        """Retrieve and format memory for ``request``.

        Memory is an enhancement: an unreachable store yields an empty
        bundle and an unembeddable query falls back to keyword-only ranking,
        both recorded in ``warnings``.
        """
        personal = bool(request.is_personal_query) if personal is None else personal
        level_name = choose_level(request.context_level, personal)
        level = CONTEXT_LEVELS[level_name]
        warnings: List[str] = []

        vector = None
        try:
            vector = await self.embedder.embed(request.message)
        except EmbeddingError as exc:
            warnings.append(f"{exc.kind}: {exc.message}")

        try:
            result = await self.store.query(
                request.user_id, vector, request.message, level.limit, level.min_similarity
            )
        except MemoryUnavailable as exc:
            logger.warning("memory_unavailable", user=request.user_id, error=exc.message)
            warnings.append(f"{exc.kind}: {exc.message}")
            return ContextBundle(result=RetrievalResult.empty(), warnings=warnings, level=level_name)

        context, references, facts = self.format_context(result, personal)
        logger.debug(
            "memory_context_built",
            user=request.user_id,
            level=level_name,
            found=result.count_found,
            used=len(references),
            keyword_only=result.keyword_only,
        )
        return ContextBundle(
            result=result,
            context=context,
            references=references,
            personal_facts=facts,
            warnings=warnings,
            level=level_name,
        )


__all__ = [
    "CONTEXT_LEVELS",
    "ContextBundle",
    "ContextLevel",
    "HISTORY_HEADER",
    "MemoryRetriever",
    "PERSONAL_HEADER",
    "choose_level",
    "extract_personal_facts",
    "user_turn",
]
