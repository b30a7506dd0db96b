"""Parallel two-extractor analysis (the third model produces embeddings later)."""

from __future__ import annotations

import asyncio
import logging

from threatintel.analysis.baseline import TEMPERATURE, build_messages, meter_chat
from threatintel.analysis.parser import parse_response, validate_fields
from threatintel.analysis.prompts import SYSTEM_BASIC, SYSTEM_DETAILED
from threatintel.analysis.usage import UsageMeter
from threatintel.inference.base import BaseInferenceService
from threatintel.models import AnalysisResult, Article, Strategy

logger = logging.getLogger(__name__)

BASIC_MAX_TOKENS = 512
DETAILED_MAX_TOKENS = 1024

BASIC_FIELDS = ("tldr", "category", "severity", "affected_sectors", "threat_actors")
BASIC_REQUIRED = ("tldr", "category", "severity")
DETAILED_FIELDS = ("key_points", "iocs")
DETAILED_REQUIRED = ("iocs",)
DETAILED_TYPES = {"iocs": dict}


class TriModelPipeline:
    """Fan out to a small classifier and a larger extractor, then merge.

    The two extractors own disjoint fields. If either fails the pipeline
    returns None rather than a half-filled result.
    """

    def __init__(
        self,
        inference: BaseInferenceService,
        meter: UsageMeter,
        small_model: str,
        large_model: str,
    ):
        self.inference = inference
        self.meter = meter
        self.small_model = small_model
        self.large_model = large_model

    async def _extract(
        self,
        article: Article,
        model: str,
        system: str,
        max_tokens: int,
        fields: tuple[str, ...],
        required: tuple[str, ...],
        types: dict[str, type] | None = None,
    ) -> dict | None:
        messages = build_messages(system, article)
        response = await self.inference.run(model, {
            "messages": messages,
            "temperature": TEMPERATURE,
            "max_tokens": max_tokens,
        })
        meter_chat(self.meter, model, messages, response)

        parsed = parse_response(response)
        if not parsed.ok or not validate_fields(parsed.data, required, types):
            return None
        return {name: parsed.data.get(name) for name in fields}

    async def extract_basic(self, article: Article) -> dict | None:
        """Classification, severity, summary, sectors and actors."""
        return await self._extract(
            article, self.small_model, SYSTEM_BASIC,
            BASIC_MAX_TOKENS, BASIC_FIELDS, BASIC_REQUIRED,
        )

    async def extract_detailed(self, article: Article) -> dict | None:
        """Key points and indicators of compromise."""
        return await self._extract(
            article, self.large_model, SYSTEM_DETAILED,
            DETAILED_MAX_TOKENS, DETAILED_FIELDS, DETAILED_REQUIRED, DETAILED_TYPES,
        )

    async def run(self, article: Article) -> AnalysisResult | None:
        basic, detailed = await asyncio.gather(
            self.extract_basic(article),
            self.extract_detailed(article),
            return_exceptions=True,
        )

        for name, outcome in (("basic", basic), ("detailed", detailed)):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Tri-model %s extraction failed for %s: %s: %s",
                    name, article.id, type(outcome).__name__, outcome,
                )
            elif outcome is None:
                logger.error("Tri-model %s extraction invalid for %s", name, article.id)

        if not isinstance(basic, dict) or not isinstance(detailed, dict):
            return None

        return AnalysisResult.from_dict({**basic, **detailed}, strategy=Strategy.TRIMODEL)
