"""Inference backend registry."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from threatintel.inference.base import BaseInferenceService

BACKENDS: dict[str, type[BaseInferenceService]] = {}


def register_backend(name: str):
    """Decorator to register an inference backend."""

    def decorator(cls):
        BACKENDS[name] = cls
        return cls

    return decorator


def get_inference_service(config: dict) -> BaseInferenceService:
    """Build the configured inference backend."""
    from threatintel.config import get_inference_config

    cfg = get_inference_config(config)
    backend_type = cfg["type"]
    if backend_type not in BACKENDS:
        raise ValueError(f"Unknown inference backend: {backend_type}")
    return BACKENDS[backend_type](
        api_key=cfg["api_key"],
        base_url=cfg["base_url"],
        account_id=cfg["account_id"],
        max_retries=cfg["max_retries"],
        timeout=cfg["timeout"],
    )


# Import implementations to trigger registration
from threatintel.inference.anthropic_provider import AnthropicInference  # noqa: E402, F401
from threatintel.inference.openai_compat import OpenAICompatibleInference  # noqa: E402, F401
from threatintel.inference.workers_ai import WorkersAIInference  # noqa: E402, F401
