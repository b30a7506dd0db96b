"""Weekly trend narrative over recent analyses."""

from __future__ import annotations

import logging

from threatintel.analysis.baseline import meter_chat
from threatintel.analysis.parser import parse_text_response
from threatintel.analysis.prompts import SYSTEM_TRENDS, TRENDS_PROMPT
from threatintel.analysis.usage import UsageMeter
from threatintel.inference.base import BaseInferenceService
from threatintel.models import AnalysisResult, Article

logger = logging.getLogger(__name__)

UNAVAILABLE = "Unable to generate trend analysis."
FAILED = "Error generating trend analysis."


def format_threat_lines(items: list[tuple[Article, AnalysisResult]]) -> str:
    return "\n".join(
        f"- [{a.severity.value.upper()}] {a.category.value}: {article.title} ({a.tldr})"
        for article, a in items
    )


async def analyze_trends(
    inference: BaseInferenceService,
    meter: UsageMeter,
    items: list[tuple[Article, AnalysisResult]],
    model: str,
) -> str:
    """Free-text trend analysis; returns a fixed message on failure."""
    messages = [
        {"role": "system", "content": SYSTEM_TRENDS},
        {"role": "user", "content": TRENDS_PROMPT.format(threats=format_threat_lines(items))},
    ]
    try:
        response = await inference.run(model, {
            "messages": messages,
            "temperature": 0.3,
            "max_tokens": 1024,
        })
    except Exception as exc:
        logger.error("Trend analysis failed: %s: %s", type(exc).__name__, exc)
        return FAILED

    meter_chat(meter, model, messages, response)
    return parse_text_response(response, fallback=UNAVAILABLE)
