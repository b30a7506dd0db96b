"""Neuron (compute cost unit) metering against a daily ceiling.

Costs are estimated, not billed: token counts come from ``estimate_tokens``
(about four characters per token) and the per-model unit costs below.
The meter reports status for operators; it never blocks a call.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Callable

from threatintel.models import ModelUsage, UsageRecord, UsageSummary

logger = logging.getLogger(__name__)

DEFAULT_DAILY_LIMIT = 10_000
WARNING_PERCENT = 80
CRITICAL_PERCENT = 95

# Neurons per 1M tokens. Input and output are keyed separately so a model
# without an entry simply costs nothing.
NEURON_COSTS: dict[str, float] = {
    "mistral-24b-input": 31876,
    "mistral-24b-output": 50488,
    "llama-1b-input": 2457,
    "llama-1b-output": 18252,
    "llama-8b-fp8-input": 4119,
    "llama-8b-fp8-output": 34868,
    "llama-70b-input": 26668,
    "llama-70b-output": 204805,
    "qwen-30b-input": 4625,
    "qwen-30b-output": 30475,
    "bge-m3-input": 1075,
    "bge-large-input": 18252,
}

MODEL_COST_KEYS: dict[str, str] = {
    "@cf/mistralai/mistral-small-3.1-24b-instruct": "mistral-24b",
    "@cf/meta/llama-3.2-1b-instruct": "llama-1b",
    "@cf/meta/llama-3.1-8b-instruct-fp8-fast": "llama-8b-fp8",
    "@cf/meta/llama-3.3-70b-instruct-fp8-fast": "llama-70b",
    "@cf/qwen/qwen3-30b-a3b-fp8": "qwen-30b",
    "@cf/baai/bge-m3": "bge-m3",
    "@cf/baai/bge-large-en-v1.5": "bge-large",
}


def model_cost_key(model_id: str) -> str:
    """Short cost-table key for a full model id (unknown ids pass through)."""
    return MODEL_COST_KEYS.get(model_id, model_id)


def estimate_tokens(text: str) -> int:
    """Approximate token count: ceil(chars / 4)."""
    return math.ceil(len(text) / 4)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UsageMeter:
    """Accumulate per-call neuron estimates for the current process.

    State lives on the instance; build one per worker and pass it to
    the components that call inference.
    """

    def __init__(
        self,
        daily_limit: int = DEFAULT_DAILY_LIMIT,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.daily_limit = daily_limit
        self._clock = clock
        self._records: list[UsageRecord] = []

    @property
    def records(self) -> list[UsageRecord]:
        return list(self._records)

    def _today(self) -> str:
        return self._clock().astimezone(timezone.utc).strftime("%Y-%m-%d")

    def track(self, model: str, input_tokens: int, output_tokens: int = 0) -> float:
        """Record one inference call and return the neurons it cost."""
        key = model_cost_key(model)
        neurons = (
            (input_tokens / 1_000_000) * NEURON_COSTS.get(f"{key}-input", 0)
            + (output_tokens / 1_000_000) * NEURON_COSTS.get(f"{key}-output", 0)
        )
        self._records.append(UsageRecord(
            date=self._today(),
            model=key,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            neurons=neurons,
        ))
        return neurons

    def track_text(self, model: str, prompt: str, completion: str = "") -> float:
        """Meter a call from its prompt and completion text."""
        return self.track(model, estimate_tokens(prompt), estimate_tokens(completion))

    def daily_total(self) -> float:
        today = self._today()
        return sum(r.neurons for r in self._records if r.date == today)

    def summary(self) -> UsageSummary:
        total = self.daily_total()
        percent = round((total / self.daily_limit) * 100)

        if percent >= CRITICAL_PERCENT:
            status = "CRITICAL"
        elif percent >= WARNING_PERCENT:
            status = "WARNING"
        else:
            status = "OK"

        return UsageSummary(
            neurons_used=round(total),
            neurons_remaining=round(self.daily_limit - total),
            percent_used=percent,
            daily_limit=self.daily_limit,
            status=status,
        )

    def breakdown(self) -> list[ModelUsage]:
        """Today's usage grouped by model, in first-seen order."""
        today = self._today()
        totals: dict[str, list[float]] = {}
        for record in self._records:
            if record.date != today:
                continue
            entry = totals.setdefault(record.model, [0.0, 0])
            entry[0] += record.neurons
            entry[1] += 1

        return [
            ModelUsage(
                model=model,
                neurons=round(neurons),
                calls=int(calls),
                avg_per_call=round(neurons / calls),
            )
            for model, (neurons, calls) in totals.items()
        ]

    def remaining_capacity(self, neurons_per_article: float) -> int:
        """How many more articles fit in today's budget."""
        if neurons_per_article <= 0:
            raise ValueError("neurons_per_article must be positive")
        return max(0, math.floor(self.summary().neurons_remaining / neurons_per_article))

    def log_summary(self) -> None:
        """Log today's totals and per-model breakdown."""
        summary = self.summary()
        logger.info(
            "Neuron usage: %d/%d (%d%%) status=%s",
            summary.neurons_used, summary.daily_limit,
            summary.percent_used, summary.status,
        )
        for row in self.breakdown():
            logger.info(
                "  %s: %d neurons (%d calls, ~%d/call)",
                row.model, row.neurons, row.calls, row.avg_per_call,
            )
        if summary.status == "CRITICAL":
            logger.error(
                "Neuron usage at %d%% of daily limit, risk of exceeding budget",
                summary.percent_used,
            )
        elif summary.status == "WARNING":
            logger.warning("Neuron usage at %d%% of daily limit", summary.percent_used)
