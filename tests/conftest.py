"""Shared test fixtures."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from threatintel.analysis.usage import UsageMeter
from threatintel.config import load_config
from threatintel.db import get_connection, init_db
from threatintel.inference.base import BaseInferenceService
from threatintel.models import Article
from threatintel.storage.blob import BaseBlobStore, ListResult
from threatintel.storage.kv import SQLiteKVStore
from threatintel.storage.quota import QuotaTracker

SMALL = "@cf/mistralai/mistral-small-3.1-24b-instruct"
LARGE = "@cf/qwen/qwen3-30b-a3b-fp8"
FALLBACK = "@cf/meta/llama-3.3-70b-instruct-fp8-fast"
EMBED = "@cf/baai/bge-m3"
EMBED_FALLBACK = "@cf/baai/bge-large-en-v1.5"

BASELINE_ANALYSIS = {
    "tldr": "LockBit affiliate hits regional hospital network.",
    "key_points": ["Initial access via VPN", "Data exfiltrated", "Ransom demanded"],
    "category": "ransomware",
    "severity": "critical",
    "affected_sectors": ["healthcare"],
    "threat_actors": ["LockBit"],
    "iocs": {"ips": ["203.0.113.7"], "domains": ["lockbit-leak.example"]},
}

BASIC_ANALYSIS = {
    "tldr": "Ransomware attack on hospital network.",
    "category": "ransomware",
    "severity": "high",
    "affected_sectors": ["healthcare"],
    "threat_actors": ["LockBit"],
}

DETAILED_ANALYSIS = {
    "key_points": ["VPN exploited", "Backups deleted"],
    "iocs": {"ips": ["203.0.113.7"], "cves": ["CVE-2024-3400"]},
}


class ScriptedInference(BaseInferenceService):
    """Inference fake answering per model.

    A scripted value may be a response, an exception to raise, or a callable
    taking the payload.
    """

    def __init__(self, responses: dict | None = None):
        super().__init__()
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, object]] = []

    @property
    def backend_name(self) -> str:
        return "scripted"

    async def run(self, model, payload):
        self.calls.append((model, payload))
        outcome = self.responses.get(model)
        if callable(outcome) and not isinstance(outcome, type):
            outcome = outcome(payload)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def models_called(self) -> list[str]:
        return [model for model, _ in self.calls]


class MemoryBlobStore(BaseBlobStore):
    """Dict-backed blob store that records every call."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.metadata: dict[str, dict] = {}
        self.calls: list[str] = []
        self.truncate_lists = False

    async def put(self, key, data, content_type="application/octet-stream", metadata=None):
        self.calls.append("put")
        self.objects[key] = data
        self.metadata[key] = {"content_type": content_type, **(metadata or {})}

    async def get(self, key):
        self.calls.append("get")
        return self.objects.get(key)

    async def delete(self, key):
        self.calls.append("delete")
        self.objects.pop(key, None)
        self.metadata.pop(key, None)

    async def list(self, prefix=None, limit=1000):
        self.calls.append("list")
        keys = sorted(k for k in self.objects if k.startswith(prefix or ""))
        return ListResult(keys=keys[:limit], truncated=self.truncate_lists or len(keys) > limit)


def fixed_clock(year=2025, month=3, day=14, hour=12):
    moment = datetime(year, month, day, hour, tzinfo=timezone.utc)
    return lambda: moment


def wrap(data: dict) -> dict:
    """Workers AI style wrapper around a JSON string."""
    return {"response": json.dumps(data)}


@pytest.fixture
def sample_config(tmp_path):
    """Minimal config for testing (no real API keys)."""
    config_text = """
deployment:
  mode: baseline
  canary_percent: 25
  validation_logging: true

inference:
  type: openai_compatible
  api_key: "test-key"
  base_url: "http://localhost:9999"

usage:
  daily_neuron_limit: 5000

archive:
  enabled: true
  bucket: "test-bucket"
  quota:
    storage_gb: 1

database:
  path: "DB_PATH_PLACEHOLDER"
"""
    db_path = str(tmp_path / "test.db")
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(config_text.replace("DB_PATH_PLACEHOLDER", db_path))
    return load_config(str(cfg_path))


@pytest.fixture
def db_conn(sample_config):
    """Initialized test database connection."""
    db_path = sample_config["database"]["path"]
    init_db(db_path)
    conn = get_connection(db_path)
    yield conn
    conn.close()


@pytest.fixture
def meter():
    return UsageMeter(daily_limit=10_000, clock=fixed_clock())


@pytest.fixture
def kv():
    store = SQLiteKVStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def blob():
    return MemoryBlobStore()


@pytest.fixture
def quota(kv):
    return QuotaTracker(kv, clock=fixed_clock())


@pytest.fixture
def sample_article():
    return Article(
        id="threat-001",
        title="LockBit claims attack on regional hospital",
        content="The LockBit ransomware group claimed responsibility for an attack on "
        "a regional hospital network. Attackers used CVE-2024-3400 to gain access "
        "and exfiltrated patient data to 203.0.113.7.",
        source="BleepingComputer",
        published_at=datetime(2025, 3, 10, 8, 30, tzinfo=timezone.utc),
        url="https://example.com/lockbit-hospital",
    )


@pytest.fixture
def sample_articles(sample_article):
    """Articles of varied age for batch processing and archival."""
    return [
        sample_article,
        Article(
            id="threat-002",
            title="Phishing kit targets Microsoft 365 users",
            content="A new phishing-as-a-service kit bypasses MFA using adversary-in-the-middle.",
            source="The Record",
            published_at=datetime(2025, 3, 12, 14, 0, tzinfo=timezone.utc),
            url="https://example.com/aitm-kit",
        ),
        Article(
            id="threat-003",
            title="Old botnet resurfaces",
            content="Researchers observed the Mirai variant scanning for exposed routers again.",
            source="SecurityWeek",
            published_at=datetime(2024, 10, 1, 9, 0, tzinfo=timezone.utc),
            url="https://example.com/mirai-variant",
        ),
    ]
