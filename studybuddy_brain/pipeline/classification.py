"""Stage 1: classify the input before anything is spent on it."""

from __future__ import annotations

import re
from typing import List, Sequence

from studybuddy_brain.config import Settings
from studybuddy_brain.errors import RejectedInput
from studybuddy_brain.pipeline.base import PipelineContext, RequestState, ShortCircuit, Stage

TIME_SENSITIVE_KEYWORDS = (
    "today", "tonight", "yesterday", "tomorrow", "this week", "this year", "latest",
    "current", "currently", "right now", "recent", "news", "breaking", "weather",
    "stock price", "score of",
)
APP_DATA_KEYWORDS = (
    "my progress", "my stats", "my streak", "my courses", "my grades", "my schedule",
    "my study plan", "my points", "leaderboard", "my flashcards", "my notes",
)
_PERSONAL_RE = re.compile(
    r"\b(?:my name|who am i|about me|remember (?:me|when|that|what)|last time|"
    r"i told you|you know me|do you know my|my favou?rite|my preferences?|my hobb(?:y|ies)|my goals?)\b",
    re.IGNORECASE,
)


def detect_query_type(message: str) -> str:
    lowered = message.lower()
    if any(k in lowered for k in APP_DATA_KEYWORDS):
        return "app_data"
    if any(re.search(rf"\b{re.escape(k)}\b", lowered) for k in TIME_SENSITIVE_KEYWORDS):
        return "time_sensitive"
    return "general"


def is_personal_query(message: str) -> bool:
    return bool(_PERSONAL_RE.search(message))


class ClassificationStage(Stage):
    name = "classification"
    advances_to = RequestState.CLASSIFIED

    def __init__(self, settings: Settings, patterns: Sequence[str] | None = None) -> None:
        source = settings.disallowed_patterns if patterns is None else patterns
        self.disallowed: List[re.Pattern[str]] = [re.compile(p, re.IGNORECASE) for p in source]

    def is_disallowed(self, message: str) -> bool:
        return any(p.search(message) for p in self.disallowed)

    async def process(self, ctx: PipelineContext) -> PipelineContext:
        message = ctx.request.message
        if self.is_disallowed(message):
            raise ShortCircuit(RejectedInput("message matches a disallowed content rule"))
        explicit = ctx.request.is_personal_query
        ctx.personal = is_personal_query(message) if explicit is None else bool(explicit)
        ctx.query_type = detect_query_type(message)
        return ctx


__all__ = ["ClassificationStage", "detect_query_type", "is_personal_query"]
