"""Tests for inference response normalization."""

from __future__ import annotations

import json

import pytest

from threatintel.analysis.parser import (
    extract_json,
    parse_embedding,
    parse_response,
    parse_text_response,
    validate_fields,
)

PAYLOAD = {
    "tldr": "Critical Fortinet flaw exploited in the wild.",
    "category": "vulnerability",
    "severity": "critical",
    "iocs": {"cves": ["CVE-2024-21762"]},
}


@pytest.mark.parametrize(
    "response, path",
    [
        ({"response": PAYLOAD}, "wrapped_object"),
        ({"response": "Here is the analysis:\n" + json.dumps(PAYLOAD) + "\nDone."}, "wrapped_string"),
        ("```json\n" + json.dumps(PAYLOAD) + "\n```", "bare_string"),
        (PAYLOAD, "bare_object"),
    ],
)
def test_all_shapes_yield_identical_record(response, path):
    result = parse_response(response)
    assert result.ok
    assert result.data == PAYLOAD
    assert result.path == path


def test_smart_quotes_are_normalized():
    text = "{“tldr”: “x”, “category”: “apt”, “severity”: “low”}"
    result = parse_response({"response": text})
    assert result.ok
    assert result.data["category"] == "apt"


def test_prose_without_json_fails(caplog):
    result = parse_response({"response": "I cannot analyze this article."})
    assert not result.ok
    assert result.data == {}
    assert "Unexpected AI response format" in caplog.text


@pytest.mark.parametrize("response", [None, 42, [1, 2], "", {"response": None}])
def test_unexpected_types_fail_without_raising(response):
    assert parse_response(response).ok is False


def test_json_array_is_not_an_object():
    assert extract_json("[1, 2, 3]") is None


def test_fenced_block_used_when_braces_are_broken():
    text = 'Notes {not json} and then\n```json\n{"a": 1}\n```'
    assert extract_json(text) == {"a": 1}


def test_validate_fields_all_present():
    assert validate_fields(PAYLOAD, ["tldr", "category", "severity"])


@pytest.mark.parametrize("bad", [None, "", []])
def test_validate_fields_rejects_empty_values(bad, caplog):
    data = {**PAYLOAD, "severity": bad}
    assert not validate_fields(data, ["tldr", "category", "severity"])
    assert "severity" in caplog.text
    assert "available" in caplog.text


def test_validate_fields_missing_key():
    assert not validate_fields({"tldr": "x"}, ["tldr", "iocs"])
    assert not validate_fields({}, ["tldr"])


def test_parse_text_response():
    assert parse_text_response({"response": "Trends: up"}) == "Trends: up"
    assert parse_text_response("plain") == "plain"
    assert parse_text_response({"data": []}, fallback="n/a") == "n/a"


def test_parse_embedding():
    assert parse_embedding({"shape": [1, 3], "data": [[0.1, 0.2, 0.3]]}) == [0.1, 0.2, 0.3]
    assert parse_embedding({"data": []}) is None
    assert parse_embedding("nope") is None


@pytest.mark.parametrize("blank", ["   ", "\n\t"])
def test_validate_fields_rejects_whitespace_only(blank):
    assert not validate_fields({**PAYLOAD, "tldr": blank}, ["tldr", "category", "severity"])


def test_validate_fields_checks_types(caplog):
    flat = {**PAYLOAD, "iocs": ["203.0.113.7"]}

    assert not validate_fields(flat, ["iocs"], {"iocs": dict})
    assert "expected dict" in caplog.text
    assert validate_fields(PAYLOAD, ["iocs"], {"iocs": dict})
