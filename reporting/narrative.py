"""
Narrative insights for a report.

The generator only ever sees the verified-numbers summary and returns three
lists of strings. Nothing it returns is read as a number; if it fails, the
report fails with it.
"""
from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from scripts.lib.ai_provider import ai_complete, log_ai_error
from scripts.lib.errors import NarrativeGenerationError
from scripts.lib.logger import setup_logger

logger = setup_logger("narrative")

NARRATIVE_FIELDS = ("revenueInsights", "leadGenInsights", "recommendations")

SYSTEM_PROMPT = (
    "You are a marketing analyst writing a quarterly KPI report. Write narrative "
    "insights that reference ONLY the numbers you are given. Return valid JSON "
    "with exactly three arrays of strings: revenueInsights, leadGenInsights and "
    "recommendations."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass
class NarrativeInsights:
    revenue_insights: List[str] = field(default_factory=list)
    lead_gen_insights: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "revenueInsights": list(self.revenue_insights),
            "leadGenInsights": list(self.lead_gen_insights),
            "recommendations": list(self.recommendations),
        }


def build_prompt(
    verified_summary: str,
    focus_areas: Optional[str] = None,
    terminology: Sequence[Tuple[str, str]] = (),
) -> str:
    parts = [
        "Analyze this marketing and CRM data and write insights.",
        "",
        "VERIFIED DATA (these are facts; do NOT make up other numbers):",
        verified_summary,
    ]
    if terminology:
        parts += ["", "Custom terminology:"]
        parts += [f"- {key}: {value}" for key, value in terminology]
    if focus_areas:
        parts += ["", f"Focus areas requested by the client: {focus_areas}"]
    parts += [
        "",
        "Return JSON with ONLY these fields:",
        '{"revenueInsights": [3-5 strings], "leadGenInsights": [3-5 strings], '
        '"recommendations": [3-5 strings]}',
    ]
    return "\n".join(parts)


def parse_insights(content: str) -> NarrativeInsights:
    """Read the model's JSON reply, keeping only string items."""
    text = _FENCE_RE.sub("", (content or "").strip())
    if not text:
        raise NarrativeGenerationError("Narrative generator returned an empty response")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise NarrativeGenerationError("Narrative generator returned invalid JSON", cause=e)
    if not isinstance(payload, dict) or not any(k in payload for k in NARRATIVE_FIELDS):
        raise NarrativeGenerationError("Narrative response has none of the expected fields")

    def strings(key: str) -> List[str]:
        items = payload.get(key) or []
        if not isinstance(items, list):
            return []
        return [item.strip() for item in items if isinstance(item, str) and item.strip()]

    return NarrativeInsights(
        revenue_insights=strings("revenueInsights"),
        lead_gen_insights=strings("leadGenInsights"),
        recommendations=strings("recommendations"),
    )


class NarrativeGenerator:
    """Interface: verified summary in, insight lists out."""

    async def generate(
        self,
        verified_summary: str,
        focus_areas: Optional[str] = None,
        terminology: Sequence[Tuple[str, str]] = (),
    ) -> NarrativeInsights:
        raise NotImplementedError


class AINarrativeGenerator(NarrativeGenerator):
    """Narrative insights from the configured AI provider (Groq or Claude)."""

    TASK = "report_narrative"

    def __init__(self, provider: Optional[str] = None, model: Optional[str] = None,
                 account_id: Optional[str] = None):
        self.provider = provider
        self.model = model
        self.account_id = account_id

    async def generate(
        self,
        verified_summary: str,
        focus_areas: Optional[str] = None,
        terminology: Sequence[Tuple[str, str]] = (),
    ) -> NarrativeInsights:
        prompt = build_prompt(verified_summary, focus_areas, terminology)
        start = time.perf_counter()
        try:
            response = await ai_complete(
                task=self.TASK,
                system_prompt=SYSTEM_PROMPT,
                user_prompt=prompt,
                provider=self.provider,
                model=self.model,
                account_id=self.account_id,
                json_mode=True,
            )
        except Exception as e:
            logger.error("Narrative generation failed: %s", e)
            await log_ai_error(
                task=self.TASK,
                provider=self.provider or "default",
                model=self.model or "default",
                error=e,
                account_id=self.account_id,
                latency_ms=int((time.perf_counter() - start) * 1000),
            )
            raise NarrativeGenerationError("Narrative generation failed", cause=e) from e

        insights = parse_insights(response.content)
        logger.info(
            "Narrative: %d revenue, %d lead-gen, %d recommendations",
            len(insights.revenue_insights), len(insights.lead_gen_insights),
            len(insights.recommendations),
        )
        return insights
