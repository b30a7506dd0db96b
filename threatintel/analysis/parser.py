"""Normalize inference responses into plain dicts.

Inference services answer in one of four shapes:

* ``{"response": {...}}`` - wrapper whose inner field is already structured
* ``{"response": "...{json}..."}`` - wrapper around a string with embedded JSON
* ``"...{json}..."`` - bare string with embedded JSON
* ``{...}`` - bare structured object

``parse_response`` walks an ordered chain of attempts and returns the first
success. Nothing here raises on malformed input.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 100
_BRACED = re.compile(r"\{.*\}", re.DOTALL)
_FENCED = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)


@dataclass(frozen=True)
class ParseResult:
    """Tagged outcome of a parse attempt."""

    ok: bool
    data: dict = field(default_factory=dict)
    path: str = ""

    @classmethod
    def success(cls, data: dict, path: str) -> ParseResult:
        return cls(ok=True, data=data, path=path)

    @classmethod
    def failure(cls) -> ParseResult:
        return cls(ok=False)


def _normalize_quotes(text: str) -> str:
    """Replace smart/curly quotes with straight quotes for JSON parsing."""
    return (
        text
        .replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )


def _loads_object(text: str) -> dict | None:
    """json.loads that only accepts objects, retrying with straight quotes."""
    for candidate in (text, _normalize_quotes(text)):
        try:
            value = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(value, dict):
            return value
    return None


def extract_json(text: str) -> dict | None:
    """Pull the braced JSON object out of model output that may carry prose."""
    brace = _BRACED.search(text)
    if brace:
        result = _loads_object(brace.group(0))
        if result is not None:
            return result

    fenced = _FENCED.search(text)
    if fenced:
        result = _loads_object(fenced.group(1))
        if result is not None:
            return result

    return _loads_object(text.strip())


def _is_wrapper(response: Any) -> bool:
    return isinstance(response, dict) and "response" in response


def _unwrap_object(response: Any) -> ParseResult:
    if _is_wrapper(response) and isinstance(response["response"], dict):
        return ParseResult.success(response["response"], "wrapped_object")
    return ParseResult.failure()


def _unwrap_embedded_json(response: Any) -> ParseResult:
    if _is_wrapper(response) and isinstance(response["response"], str):
        data = extract_json(response["response"])
        if data is not None:
            return ParseResult.success(data, "wrapped_string")
    return ParseResult.failure()


def _extract_embedded_json(response: Any) -> ParseResult:
    if isinstance(response, str):
        data = extract_json(response)
        if data is not None:
            return ParseResult.success(data, "bare_string")
    return ParseResult.failure()


def _passthrough_object(response: Any) -> ParseResult:
    # A wrapper that reached this point held unparseable text
    if isinstance(response, dict) and not _is_wrapper(response):
        return ParseResult.success(response, "bare_object")
    return ParseResult.failure()


PARSE_CHAIN: tuple[Callable[[Any], ParseResult], ...] = (
    _unwrap_object,
    _unwrap_embedded_json,
    _extract_embedded_json,
    _passthrough_object,
)


def _preview(response: Any) -> str:
    if _is_wrapper(response):
        response = response["response"]
    text = response if isinstance(response, str) else repr(response)
    return text[:_PREVIEW_CHARS]


def parse_response(response: Any) -> ParseResult:
    """Normalize an inference response; ``ok`` is False when no shape matched."""
    for attempt in PARSE_CHAIN:
        result = attempt(response)
        if result.ok:
            return result

    logger.warning(
        "Unexpected AI response format (type=%s, wrapper=%s): %r",
        type(response).__name__, _is_wrapper(response), _preview(response),
    )
    return ParseResult.failure()


def _is_blank(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    return value is None or value == []


def validate_fields(
    data: dict | None,
    required: list[str] | tuple[str, ...],
    types: dict[str, type] | None = None,
) -> bool:
    """True when every required field is present and non-empty.

    ``types`` optionally maps a field to the type its value must have.
    """
    if not data:
        return False

    for name in required:
        if name not in data or _is_blank(data[name]):
            logger.warning(
                "AI response missing required field '%s' (available: %s)",
                name, sorted(data),
            )
            return False

    for name, expected in (types or {}).items():
        if name in data and not isinstance(data[name], expected):
            logger.warning(
                "AI response field '%s' has type %s, expected %s",
                name, type(data[name]).__name__, expected.__name__,
            )
            return False
    return True


def parse_text_response(response: Any, fallback: str = "") -> str:
    """Extract free text from a response, or ``fallback``."""
    if _is_wrapper(response) and isinstance(response["response"], str):
        return response["response"]
    if isinstance(response, str):
        return response

    logger.warning(
        "Could not extract text from AI response (type=%s)", type(response).__name__,
    )
    return fallback


def parse_embedding(response: Any) -> list[float] | None:
    """First vector of an embedding response (``{"data": [[...], ...]}``)."""
    if not isinstance(response, dict):
        return None
    data = response.get("data")
    if not isinstance(data, list) or not data:
        return None
    vector = data[0]
    if not isinstance(vector, list) or not vector:
        return None
    return [float(v) for v in vector]
