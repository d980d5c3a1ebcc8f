"""Stage 5: compliance rules and the audit record. Runs for every request."""

from __future__ import annotations

import hashlib
import re
from typing import Any, Dict, Iterable

import aiosqlite  # type: ignore
import httpx
from prometheus_client import Counter, Histogram

from studybuddy_brain.memory.retriever import user_turn
from studybuddy_brain.pipeline.base import PipelineContext, RequestState, Stage
from studybuddy_brain.utils.logging import log_event, logger

PIPELINE_VERDICTS = Counter(
    "studybuddy_pipeline_verdicts_total",
    "Final verdict of each orchestrated request",
    ["verdict"],
)
REQUEST_LATENCY = Histogram(
    "studybuddy_request_seconds",
    "End-to-end orchestration latency",
    ["outcome"],
)

REDACTED = "[REDACTED]"
_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_PHONE_RE = re.compile(r"\+?\d[\d\s().-]{7,}\d")


def redact(text: str, sensitive: Iterable[str] = ()) -> str:
    for snippet in sensitive:
        if snippet:
            text = text.replace(snippet, REDACTED)
    text = _EMAIL_RE.sub(REDACTED, text)
    return _PHONE_RE.sub(REDACTED, text)


class MonitoringStage(Stage):
    name = "monitoring"
    advances_to = RequestState.RECORDED
    always_run = True

    def __init__(self, preview_chars: int = 200) -> None:
        self.preview_chars = preview_chars

    @staticmethod
    def _sensitive_snippets(ctx: PipelineContext) -> list[str]:
        if ctx.memory is None:
            return []
        snippets: list[str] = []
        for record in ctx.memory.result.items:
            if record.record.sensitive:
                snippets.extend([record.record.text, user_turn(record.record)])
        return [s for s in snippets if s]

    def audit_entry(self, ctx: PipelineContext, sensitive: list[str]) -> Dict[str, Any]:
        message = ctx.request.message
        route = ctx.route
        return {
            "session_id": ctx.session_id,
            "user_id": ctx.request.user_id,
            "conversation_id": ctx.request.conversation_id,
            "message_len": len(message),
            "message_sha256": hashlib.sha256(message.encode("utf-8")).hexdigest(),
            "state": ctx.state.value,
            "verdict": ctx.verdict,
            "provider_used": route.provider_used if route else None,
            "fallback_used": route.fallback_used if route else False,
            "attempts": route.attempts if route else 0,
            "latency_ms": ctx.latency_ms,
            "memory_references": ctx.memory_references,
            "warnings": ctx.warnings,
            "error": ctx.error.to_dict() if ctx.error else None,
            "response_preview": redact(ctx.content[: self.preview_chars], sensitive),
        }

    async def process(self, ctx: PipelineContext) -> PipelineContext:
        sensitive = self._sensitive_snippets(ctx)
        if ctx.error is None and sensitive:
            cleaned = ctx.content
            for snippet in sensitive:
                cleaned = cleaned.replace(snippet, REDACTED)
            if cleaned != ctx.content:
                logger.info("sensitive_memory_redacted", session=ctx.session_id)
                ctx.content = cleaned

        if ctx.error is not None:
            ctx.verdict = "error"
        outcome = ctx.error.kind if ctx.error else "ok"
        PIPELINE_VERDICTS.labels(ctx.verdict).inc()
        REQUEST_LATENCY.labels(outcome).observe(ctx.latency_ms / 1000)

        try:
            await log_event("orchestration_audit", self.audit_entry(ctx, sensitive))
        except (OSError, aiosqlite.Error, httpx.HTTPError) as exc:
            logger.error("audit_write_failed", session=ctx.session_id, error=str(exc))
        return ctx


__all__ = ["MonitoringStage", "PIPELINE_VERDICTS", "REDACTED", "redact"]
