"""Single large-model analysis path."""

from __future__ import annotations

import logging

from threatintel.analysis.parser import parse_response, validate_fields
from threatintel.analysis.prompts import ARTICLE_PROMPT, SYSTEM_BASELINE
from threatintel.analysis.usage import UsageMeter
from threatintel.inference.base import BaseInferenceService
from threatintel.models import AnalysisResult, Article, Strategy

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 12_000
TRUNCATION_MARKER = "..."
TEMPERATURE = 0.1
BASELINE_MAX_TOKENS = 1024

REQUIRED_FIELDS = ("tldr", "category", "severity")


def truncate_content(content: str, limit: int = MAX_CONTENT_CHARS) -> str:
    """Clip article text to the model window, marking the cut."""
    content = content or ""
    if len(content) > limit:
        return content[:limit] + TRUNCATION_MARKER
    return content


def build_messages(system: str, article: Article) -> list[dict[str, str]]:
    prompt = ARTICLE_PROMPT.format(
        title=article.title,
        content=truncate_content(article.content),
        source=article.source,
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": prompt},
    ]


def response_text(response) -> str:
    """Best-effort text of a response, used only for output-token estimates."""
    if isinstance(response, dict) and "response" in response:
        response = response["response"]
    return response if isinstance(response, str) else str(response)


def meter_chat(
    meter: UsageMeter, model: str, messages: list[dict[str, str]], response,
) -> float:
    prompt = "".join(m["content"] for m in messages)
    return meter.track_text(model, prompt, response_text(response))


async def analyze_baseline(
    inference: BaseInferenceService,
    meter: UsageMeter,
    article: Article,
    model: str,
) -> AnalysisResult | None:
    """Analyze with one large model.

    Returns None when the response cannot be parsed or lacks required
    fields. Inference errors propagate to the caller.
    """
    messages = build_messages(SYSTEM_BASELINE, article)
    response = await inference.run(model, {
        "messages": messages,
        "temperature": TEMPERATURE,
        "max_tokens": BASELINE_MAX_TOKENS,
    })
    meter_chat(meter, model, messages, response)

    parsed = parse_response(response)
    if not parsed.ok or not validate_fields(parsed.data, REQUIRED_FIELDS):
        logger.error("Invalid baseline analysis for %s", article.id)
        return None

    return AnalysisResult.from_dict(parsed.data, strategy=Strategy.BASELINE)
