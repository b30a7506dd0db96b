"""Tests for deployment strategy selection and fallback."""

from __future__ import annotations

import random

import pytest

from threatintel.analysis.strategy import DeploymentMode, StrategyController
from threatintel.models import Strategy

from conftest import (
    BASELINE_ANALYSIS,
    BASIC_ANALYSIS,
    DETAILED_ANALYSIS,
    EMBED,
    EMBED_FALLBACK,
    FALLBACK,
    LARGE,
    SMALL,
    ScriptedInference,
    wrap,
)


def _healthy():
    return ScriptedInference({
        FALLBACK: wrap(BASELINE_ANALYSIS),
        SMALL: wrap(BASIC_ANALYSIS),
        LARGE: wrap(DETAILED_ANALYSIS),
    })


class EventLog:
    def __init__(self):
        self.events = []

    def __call__(self, name, fields):
        self.events.append((name, fields))

    def names(self):
        return [name for name, _ in self.events]


@pytest.mark.asyncio
async def test_baseline_mode_uses_fallback_model_only(meter, sample_article):
    inference = _healthy()
    controller = StrategyController(inference, meter, mode="baseline")

    result = await controller.analyze(sample_article)

    assert result.model_strategy is Strategy.BASELINE
    assert inference.models_called() == [FALLBACK]


@pytest.mark.asyncio
async def test_trimodel_mode(meter, sample_article):
    inference = _healthy()
    controller = StrategyController(inference, meter, mode="trimodel")

    result = await controller.analyze(sample_article)

    assert result.model_strategy is Strategy.TRIMODEL
    assert FALLBACK not in inference.models_called()


@pytest.mark.asyncio
async def test_trimodel_failure_falls_back_to_baseline(meter, sample_article):
    inference = _healthy()
    inference.responses[SMALL] = RuntimeError("classifier down")
    controller = StrategyController(inference, meter, mode=DeploymentMode.TRIMODEL)

    result = await controller.analyze(sample_article)

    assert result.model_strategy is Strategy.BASELINE
    assert inference.models_called()[-1] == FALLBACK


@pytest.mark.asyncio
async def test_all_strategies_failing_returns_none(meter, sample_article):
    inference = ScriptedInference({
        FALLBACK: RuntimeError("down"),
        SMALL: RuntimeError("down"),
        LARGE: RuntimeError("down"),
    })
    events = EventLog()
    controller = StrategyController(inference, meter, mode="trimodel", events=events)

    assert await controller.analyze(sample_article) is None
    assert events.names() == ["trimodel_analysis_failure"]
    assert events.events[0][1]["article_id"] == sample_article.id
    assert events.events[0][1]["error_type"] == "RuntimeError"


@pytest.mark.asyncio
async def test_baseline_failure_is_retried_once(meter, sample_article):
    attempts = []

    def flaky(payload):
        attempts.append(payload)
        if len(attempts) == 1:
            return RuntimeError("transient")
        return wrap(BASELINE_ANALYSIS)

    inference = ScriptedInference({FALLBACK: flaky})
    events = EventLog()
    controller = StrategyController(inference, meter, mode="baseline", events=events)

    result = await controller.analyze(sample_article)

    assert result.model_strategy is Strategy.BASELINE
    assert len(attempts) == 2
    assert events.names() == ["baseline_analysis_failure"]


@pytest.mark.asyncio
async def test_shadow_returns_baseline_and_logs_comparison(meter, sample_article, caplog):
    inference = _healthy()
    events = EventLog()
    controller = StrategyController(inference, meter, mode="shadow", events=events)

    with caplog.at_level("INFO"):
        result = await controller.analyze(sample_article)

    assert result.model_strategy is Strategy.BASELINE
    assert result.severity.value == "critical"
    assert sorted(inference.models_called()) == sorted([FALLBACK, SMALL, LARGE])

    assert events.names() == ["shadow_comparison"]
    comparison = events.events[0][1]
    assert comparison["category_match"] is True
    assert comparison["severity_match"] is False
    assert comparison["trimodel_severity"] == "high"
    assert comparison["baseline_iocs"]["domains"] == 1
    assert comparison["trimodel_iocs"]["cves"] == 1
    assert "Shadow comparison" in caplog.text


@pytest.mark.asyncio
async def test_shadow_without_validation_logging_records_nothing(meter, sample_article):
    events = EventLog()
    controller = StrategyController(
        _healthy(), meter, mode="shadow", validation_logging=False, events=events,
    )
    result = await controller.analyze(sample_article)
    assert result.model_strategy is Strategy.BASELINE
    assert events.events == []


@pytest.mark.asyncio
async def test_shadow_tolerates_trimodel_failure(meter, sample_article):
    inference = _healthy()
    inference.responses[LARGE] = RuntimeError("extractor down")
    events = EventLog()
    controller = StrategyController(inference, meter, mode="shadow", events=events)

    result = await controller.analyze(sample_article)

    assert result.model_strategy is Strategy.BASELINE
    assert events.events == []


@pytest.mark.asyncio
async def test_shadow_baseline_failure_retries_baseline(meter, sample_article):
    inference = _healthy()
    inference.responses[FALLBACK] = RuntimeError("down")
    events = EventLog()
    controller = StrategyController(inference, meter, mode="shadow", events=events)

    # The tri-model result is never handed back in shadow mode
    assert await controller.analyze(sample_article) is None
    assert events.names() == ["shadow_analysis_failure"]


@pytest.mark.asyncio
@pytest.mark.parametrize("percent, expected", [(0, Strategy.BASELINE), (100, Strategy.TRIMODEL)])
async def test_canary_extremes(meter, sample_article, percent, expected):
    controller = StrategyController(_healthy(), meter, mode="canary", canary_percent=percent)
    for _ in range(50):
        result = await controller.analyze(sample_article)
        assert result.model_strategy is expected


def test_canary_split_matches_percentage(meter):
    rng = random.Random(1234)
    controller = StrategyController(
        _healthy(), meter, mode="canary", canary_percent=10, rng=rng.random,
    )
    hits = sum(controller.use_canary() for _ in range(10_000))
    assert 850 <= hits <= 1150


def test_event_sink_errors_are_swallowed(meter):
    def broken(name, fields):
        raise RuntimeError("db locked")

    controller = StrategyController(_healthy(), meter, events=broken)
    controller._record("shadow_comparison", {})


@pytest.mark.parametrize(
    "mode, model",
    [("baseline", EMBED_FALLBACK), ("trimodel", EMBED), ("shadow", EMBED), ("canary", EMBED)],
)
def test_embedding_model_per_mode(meter, mode, model):
    assert StrategyController(_healthy(), meter, mode=mode).embedding_model == model


def test_unknown_mode_rejected(meter):
    with pytest.raises(ValueError):
        StrategyController(_healthy(), meter, mode="blue-green")


def test_from_config(sample_config, meter):
    controller = StrategyController.from_config(sample_config, _healthy(), meter)
    assert controller.mode is DeploymentMode.BASELINE
    assert controller.canary_percent == 25
    assert controller.models["text_large_fallback"] == FALLBACK
