"""Exponential backoff for inference and storage HTTP calls."""

from __future__ import annotations

import asyncio
import logging

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_HTTP_CODES = {408, 429, 500, 502, 503, 504}
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    ConnectionError,
    TimeoutError,
)
# SDK exception class names (anthropic) worth another attempt
RETRYABLE_SDK_ERRORS = {
    "RateLimitError",
    "OverloadedError",
    "InternalServerError",
    "APIConnectionError",
    "APITimeoutError",
}


def _backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(base_delay * (2**attempt), max_delay)


def _http_delay(
    exc: httpx.HTTPStatusError, attempt: int, base_delay: float, max_delay: float,
) -> float:
    """Honor Retry-After when the service sends one."""
    retry_after = exc.response.headers.get("retry-after")
    if retry_after:
        try:
            return min(float(retry_after), max_delay)
        except ValueError:
            pass
    return _backoff(attempt, base_delay, max_delay)


async def retry_async(
    fn,
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    **kwargs,
):
    """Call an async function, retrying transient failures.

    Retries on httpx timeouts/connection errors, HTTP 408/429/5xx and the
    anthropic SDK's rate-limit and overload errors. Anything else is raised
    immediately.
    """
    last_exc: BaseException | None = None
    for attempt in range(max_retries + 1):
        try:
            return await fn(*args, **kwargs)
        except RETRYABLE_EXCEPTIONS as exc:
            last_exc = exc
            delay = _backoff(attempt, base_delay, max_delay)
            reason = f"{type(exc).__name__}: {exc}"
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code not in RETRYABLE_HTTP_CODES:
                raise
            last_exc = exc
            delay = _http_delay(exc, attempt, base_delay, max_delay)
            reason = f"HTTP {exc.response.status_code}"
        except Exception as exc:
            if type(exc).__name__ not in RETRYABLE_SDK_ERRORS:
                raise
            last_exc = exc
            delay = _backoff(attempt, base_delay, max_delay)
            reason = type(exc).__name__

        if attempt == max_retries:
            break
        logger.warning(
            "Retry %d/%d after %s (waiting %.1fs)",
            attempt + 1, max_retries, reason, delay,
        )
        await asyncio.sleep(delay)

    raise last_exc  # type: ignore[misc]
