"""Anthropic Claude backend (chat models only)."""

from __future__ import annotations

import logging
from typing import Any

import anthropic

from threatintel.inference import register_backend
from threatintel.inference.base import (
    BaseInferenceService,
    InferenceError,
    is_chat_payload,
)
from threatintel.retry import retry_async

logger = logging.getLogger(__name__)


@register_backend("anthropic")
class AnthropicInference(BaseInferenceService):
    """Chat payloads through the Messages API; embeddings are not offered."""

    @property
    def backend_name(self) -> str:
        return "anthropic"

    async def run(self, model: str, payload: Any) -> Any:
        if not is_chat_payload(payload):
            raise InferenceError("Anthropic backend does not serve embedding models")
        return await retry_async(
            self._do_run, model, payload, max_retries=self.max_retries,
        )

    async def _do_run(self, model: str, payload: dict) -> dict:
        client = anthropic.AsyncAnthropic(api_key=self.api_key)

        system_parts = [m["content"] for m in payload["messages"] if m["role"] == "system"]
        messages = [m for m in payload["messages"] if m["role"] != "system"]

        kwargs = {
            "model": model,
            "max_tokens": payload.get("max_tokens", 1024),
            "temperature": payload.get("temperature", 0.1),
            "messages": messages,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        response = await client.messages.create(**kwargs)

        text = response.content[0].text if response.content else ""
        return {
            "response": text,
            "usage": {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
            },
        }
