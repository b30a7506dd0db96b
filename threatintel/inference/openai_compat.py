"""OpenAI-compatible backend (vLLM, Ollama, LM Studio, hosted gateways)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from threatintel.inference import register_backend
from threatintel.inference.base import (
    BaseInferenceService,
    embedding_text,
    is_chat_payload,
)
from threatintel.retry import retry_async

logger = logging.getLogger(__name__)


@register_backend("openai_compatible")
class OpenAICompatibleInference(BaseInferenceService):
    """Maps chat payloads to ``/chat/completions`` and text to ``/embeddings``.

    Responses are reshaped to the Workers AI envelope so the rest of the engine
    sees one family of shapes: ``{"response": text}`` and ``{"data": [...]}``.
    """

    @property
    def backend_name(self) -> str:
        return "openai_compatible"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def run(self, model: str, payload: Any) -> Any:
        if is_chat_payload(payload):
            return await retry_async(
                self._do_chat, model, payload, max_retries=self.max_retries,
            )
        return await retry_async(
            self._do_embed, model, embedding_text(payload),
            max_retries=self.max_retries,
        )

    async def _do_chat(self, model: str, payload: dict) -> dict:
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        body = {
            "model": model,
            "messages": payload["messages"],
            "temperature": payload.get("temperature", 0.1),
            "max_tokens": payload.get("max_tokens", 1024),
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(url, json=body, headers=self._headers())
            resp.raise_for_status()
            data = resp.json()

        usage = data.get("usage", {})
        return {
            "response": data["choices"][0]["message"]["content"],
            "usage": {
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
            },
        }

    async def _do_embed(self, model: str, text: str | list[str]) -> dict:
        url = f"{self.base_url.rstrip('/')}/embeddings"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                url, json={"model": model, "input": text}, headers=self._headers(),
            )
            resp.raise_for_status()
            data = resp.json()

        return {"data": [item["embedding"] for item in data.get("data", [])]}
