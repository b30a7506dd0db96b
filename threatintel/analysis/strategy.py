"""Deployment strategy controller: the entry point for article analysis."""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import Any, Callable

from threatintel.analysis.baseline import analyze_baseline
from threatintel.analysis.trimodel import TriModelPipeline
from threatintel.analysis.usage import UsageMeter
from threatintel.config import get_deployment_config, get_model_config
from threatintel.inference.base import BaseInferenceService
from threatintel.models import AnalysisResult, Article, ShadowComparison

logger = logging.getLogger(__name__)

EventSink = Callable[[str, dict[str, Any]], None]


class DeploymentMode(str, Enum):
    BASELINE = "baseline"
    TRIMODEL = "trimodel"
    SHADOW = "shadow"
    CANARY = "canary"


class StrategyController:
    """Pick and run an analysis strategy for each article.

    ``analyze`` never raises: a failing strategy falls back to the baseline
    model, and if that fails too the caller gets None.
    """

    def __init__(
        self,
        inference: BaseInferenceService,
        meter: UsageMeter,
        mode: DeploymentMode | str = DeploymentMode.BASELINE,
        canary_percent: float = 0.0,
        validation_logging: bool = True,
        models: dict[str, str] | None = None,
        events: EventSink | None = None,
        rng: Callable[[], float] = random.random,
    ):
        self.inference = inference
        self.meter = meter
        self.mode = DeploymentMode(mode)
        self.canary_percent = canary_percent
        self.validation_logging = validation_logging
        self.models = models or get_model_config({})
        self.events = events
        self._rng = rng
        self.trimodel = TriModelPipeline(
            inference, meter,
            small_model=self.models["text_small"],
            large_model=self.models["text_large"],
        )

    @classmethod
    def from_config(
        cls,
        config: dict,
        inference: BaseInferenceService,
        meter: UsageMeter,
        events: EventSink | None = None,
    ) -> StrategyController:
        deploy = get_deployment_config(config)
        return cls(
            inference,
            meter,
            mode=deploy["mode"],
            canary_percent=deploy["canary_percent"],
            validation_logging=deploy["validation_logging"],
            models=get_model_config(config),
            events=events,
        )

    @property
    def embedding_model(self) -> str:
        if self.mode is DeploymentMode.BASELINE:
            return self.models["embeddings_fallback"]
        return self.models["embeddings"]

    async def analyze(self, article: Article) -> AnalysisResult | None:
        try:
            return await self._dispatch(article)
        except Exception as exc:
            logger.error(
                "Analysis failed in %s mode for %s (title=%r, source=%s, "
                "content_length=%d): %s: %s",
                self.mode.value, article.id, article.title, article.source,
                len(article.content or ""), type(exc).__name__, exc,
            )
            self._record(f"{self.mode.value}_analysis_failure", {
                "article_id": article.id,
                "error_type": type(exc).__name__,
                "error": str(exc),
            })

        try:
            return await self.run_baseline(article)
        except Exception as exc:
            logger.error(
                "Baseline fallback failed for %s: %s: %s",
                article.id, type(exc).__name__, exc,
            )
            return None

    async def _dispatch(self, article: Article) -> AnalysisResult | None:
        mode = self.mode
        if mode is DeploymentMode.BASELINE:
            return await self.run_baseline(article)
        if mode is DeploymentMode.TRIMODEL:
            return await self._run_trimodel_or_baseline(article)
        if mode is DeploymentMode.SHADOW:
            return await self._run_shadow(article)
        if mode is DeploymentMode.CANARY:
            if self.use_canary():
                return await self._run_trimodel_or_baseline(article)
            return await self.run_baseline(article)
        raise ValueError(f"Unhandled deployment mode: {mode!r}")

    def use_canary(self) -> bool:
        """One uniform draw per article against the canary percentage."""
        return self._rng() * 100 < self.canary_percent

    async def run_baseline(self, article: Article) -> AnalysisResult | None:
        return await analyze_baseline(
            self.inference, self.meter, article,
            self.models["text_large_fallback"],
        )

    async def _run_trimodel_or_baseline(self, article: Article) -> AnalysisResult | None:
        result = await self.trimodel.run(article)
        if result is not None:
            return result
        logger.warning("Tri-model produced no result for %s, using baseline", article.id)
        return await self.run_baseline(article)

    async def _run_shadow(self, article: Article) -> AnalysisResult | None:
        baseline, trimodel = await asyncio.gather(
            self.run_baseline(article),
            self.trimodel.run(article),
            return_exceptions=True,
        )

        if isinstance(trimodel, BaseException):
            logger.warning(
                "Shadow tri-model failed for %s: %s: %s",
                article.id, type(trimodel).__name__, trimodel,
            )
            trimodel = None

        if isinstance(baseline, BaseException):
            raise baseline

        if self.validation_logging and baseline is not None and trimodel is not None:
            comparison = ShadowComparison.build(article.id, baseline, trimodel)
            logger.info(
                "Shadow comparison for %s: category_match=%s severity_match=%s",
                article.id, comparison.category_match, comparison.severity_match,
                extra={"comparison": comparison.to_dict()},
            )
            self._record("shadow_comparison", comparison.to_dict())

        return baseline

    def _record(self, name: str, fields: dict[str, Any]) -> None:
        if self.events is None:
            return
        try:
            self.events(name, fields)
        except Exception:
            logger.exception("Failed to record event %s", name)
