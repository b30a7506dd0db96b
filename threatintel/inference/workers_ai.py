"""Cloudflare Workers AI backend over the REST API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from threatintel.inference import register_backend
from threatintel.inference.base import BaseInferenceService, InferenceError
from threatintel.retry import retry_async

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.cloudflare.com/client/v4"


@register_backend("workers_ai")
class WorkersAIInference(BaseInferenceService):
    """Calls ``/accounts/{account}/ai/run/{model}`` and returns the ``result`` body.

    Text models answer ``{"response": ..., "usage": ...}`` where ``response``
    may already be parsed JSON; embedding models answer ``{"shape": ..., "data": [...]}``.
    """

    @property
    def backend_name(self) -> str:
        return "workers_ai"

    def _url(self, model: str) -> str:
        base = (self.base_url or _DEFAULT_BASE_URL).rstrip("/")
        return f"{base}/accounts/{self.account_id}/ai/run/{model}"

    async def run(self, model: str, payload: Any) -> Any:
        if not self.account_id:
            raise InferenceError("Workers AI account_id is not configured")
        if isinstance(payload, str):
            payload = {"text": payload}
        return await retry_async(
            self._do_run, model, payload, max_retries=self.max_retries,
        )

    async def _do_run(self, model: str, payload: dict) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self._url(model), json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()

        if isinstance(data, dict) and data.get("success") is False:
            errors = data.get("errors") or []
            message = "; ".join(str(e.get("message", e)) for e in errors) or "unknown error"
            raise InferenceError(f"Workers AI error for {model}: {message}")

        if isinstance(data, dict) and "result" in data:
            return data["result"]
        return data
