"""Article analysis: strategies, extraction, parsing and metering."""

from __future__ import annotations

from threatintel.analysis.strategy import DeploymentMode, StrategyController
from threatintel.analysis.usage import UsageMeter

__all__ = ["DeploymentMode", "StrategyController", "UsageMeter"]
