"""Abstract base class for inference backends."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class InferenceError(Exception):
    """The inference service rejected a call or answered with an error envelope."""


def is_chat_payload(payload: Any) -> bool:
    return isinstance(payload, dict) and "messages" in payload


def embedding_text(payload: Any) -> str | list[str]:
    """Text to embed from a ``{"text": ...}`` payload or a bare string."""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict) and "text" in payload:
        return payload["text"]
    raise InferenceError(f"Unsupported inference payload: {type(payload).__name__}")


class BaseInferenceService(ABC):
    """Runs a model against a payload.

    ``payload`` is either a chat request (``messages`` plus ``temperature`` and
    ``max_tokens``) or text for an embedding model. The response shape varies
    by backend and model; callers pass it through the response parser.
    """

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "",
        account_id: str = "",
        max_retries: int = 3,
        timeout: int = 120,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.account_id = account_id
        self.max_retries = max_retries
        self.timeout = timeout

    @abstractmethod
    async def run(self, model: str, payload: Any) -> Any:
        """Run ``model`` on ``payload`` and return the raw response."""
        ...

    @property
    @abstractmethod
    def backend_name(self) -> str:
        ...
