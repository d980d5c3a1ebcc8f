"""Stage 3: consistency and safety checks on the candidate answer.

A failing answer gets exactly one regeneration with stricter instructions.
If that still fails, or no provider can regenerate, the answer is
returned hedged and marked low-confidence. Running out of time during the
regeneration fails the request.
"""

from __future__ import annotations

import re
from typing import List

from studybuddy_brain.config import Settings
from studybuddy_brain.errors import DeadlineExceeded, ProviderUnavailable, ValidationFailed
from studybuddy_brain.pipeline.base import PipelineContext, RequestState, ShortCircuit, Stage
from studybuddy_brain.pipeline.completion import CompletionStage
from studybuddy_brain.utils.logging import logger

HEDGE_PREFIX = "[Low confidence] I may be wrong about this, so please double-check: "
SAFE_FALLBACK = "I'm not able to give a reliable and safe answer to that. Could you rephrase or ask something else?"

UNSAFE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bmix(?:ing)? bleach (?:and|with) ammonia\b",
        r"\b(?:build|make|assemble) (?:a |an )?(?:pipe )?bomb\b",
        r"\byou should (?:hurt|kill) yourself\b",
        r"\bhere(?:'s| is) how to hack\b",
    )
]
_YEAR_CLAIM_RE = re.compile(r"\b(?:in|as of|since|during|by)\s+((?:19|20)\d{2})\b", re.IGNORECASE)


class ValidationStage(Stage):
    name = "validation"
    advances_to = RequestState.VALIDATED

    def __init__(self, completion: CompletionStage, settings: Settings) -> None:
        self.completion = completion
        self.settings = settings

    def check(self, ctx: PipelineContext, content: str) -> List[str]:
        """Return the problems found in ``content``; empty when it passes."""
        issues: List[str] = []
        for fact in ctx.facts:
            if fact.contradicted_by(content):
                issues.append(f"contradiction:{fact.id}")
        cutoff = self.settings.knowledge_cutoff_year
        for match in _YEAR_CLAIM_RE.finditer(content):
            if int(match.group(1)) > cutoff:
                issues.append(f"time_boundary:{match.group(1)}")
                break
        if any(p.search(content) for p in UNSAFE_PATTERNS):
            issues.append("safety")
        return issues

    def stricter_instructions(self, issues: List[str]) -> str:
        lines = ["Your previous answer failed review. Answer again and follow these rules strictly:"]
        if any(i.startswith("contradiction") for i in issues):
            lines.append("- Do not contradict any of the known facts listed above.")
        if any(i.startswith("time_boundary") for i in issues):
            lines.append(
                f"- Do not claim knowledge of events after {self.settings.knowledge_cutoff_year}; say you are not sure."
            )
        if "safety" in issues:
            lines.append("- Do not give instructions that could cause harm.")
        return "\n".join(lines)

    async def process(self, ctx: PipelineContext) -> PipelineContext:
        issues = self.check(ctx, ctx.content)
        if not issues:
            ctx.verdict = "passed"
            return ctx

        logger.info("validation_failed", session=ctx.session_id, issues=issues)
        ctx.validation_issues = list(issues)
        try:
            route = await self.completion.generate(ctx, self.stricter_instructions(issues))
        except DeadlineExceeded as exc:
            raise ShortCircuit(exc) from exc
        except ProviderUnavailable as exc:
            logger.warning("validation_regeneration_failed", session=ctx.session_id, kind=exc.kind)
            route = None

        if route is not None:
            retry_issues = self.check(ctx, route.content)
            if not retry_issues:
                ctx.route = route
                ctx.content = route.content
                ctx.verdict = "regenerated"
                return ctx
            ctx.route = route
            ctx.content = route.content
            issues = retry_issues

        failure = ValidationFailed("answer failed consistency checks after regeneration: " + ", ".join(issues))
        ctx.warnings.append(f"{failure.kind}: {failure.message}")
        ctx.verdict = "hedged"
        ctx.low_confidence = True
        ctx.content = HEDGE_PREFIX + (SAFE_FALLBACK if "safety" in issues else ctx.content)
        return ctx


__all__ = ["HEDGE_PREFIX", "SAFE_FALLBACK", "ValidationStage"]
