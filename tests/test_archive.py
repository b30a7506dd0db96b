"""Tests for the quota-enforced archive store."""

from __future__ import annotations

import json
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from threatintel.storage.archive import (
    BYTES_PER_GB,
    ArchiveDisabledError,
    ArchiveSizeError,
    ArchiveStore,
    generate_archive_key,
)
from threatintel.storage.quota import QuotaExceededError, QuotaLimits, QuotaTracker

from conftest import BASELINE_ANALYSIS, fixed_clock


@pytest.fixture
def store(blob, quota):
    return ArchiveStore(blob, quota, clock=fixed_clock())


def test_archive_key_layout(sample_article):
    assert generate_archive_key("abc", sample_article.published_at) == "threats/2025/03/abc.json"
    assert generate_archive_key("abc", sample_article.published_at, "cold") == "cold/2025/03/abc.json"


@pytest.mark.asyncio
async def test_archive_writes_object_and_updates_counters(store, blob, quota, sample_article):
    iocs = [{"ioc_type": "ip", "ioc_value": "203.0.113.7", "context": None}]

    key = await store.archive(sample_article, analysis=BASELINE_ANALYSIS, iocs=iocs)

    assert key == "threats/2025/03/threat-001.json"
    body = json.loads(blob.objects[key])
    assert body["id"] == "threat-001"
    assert body["analysis"]["category"] == "ransomware"
    assert body["iocs"] == iocs
    assert body["metadata"]["size_bytes"] > 0

    meta = blob.metadata[key]
    assert meta["content_type"] == "application/json"
    assert meta["threatId"] == "threat-001"
    assert meta["severity"] == "critical"
    assert meta["archivedAt"].startswith("2025-03-14")

    usage = await quota.get_usage()
    assert usage.class_a_ops == 1
    assert usage.articles_archived == 1
    assert usage.storage_gb == pytest.approx(len(blob.objects[key]) / BYTES_PER_GB)


@pytest.mark.asyncio
async def test_oversized_article_rejected_before_quota_or_storage(blob, sample_article):
    quota = AsyncMock(spec=QuotaTracker)
    store = ArchiveStore(blob, quota)
    article = replace(sample_article, content="x" * (250 * 1024))

    with pytest.raises(ArchiveSizeError) as excinfo:
        await store.archive(article)

    assert excinfo.value.size_bytes > 200 * 1024
    assert "threat-001" in str(excinfo.value)
    assert blob.calls == []
    quota.check.assert_not_called()
    quota.update_usage.assert_not_called()


@pytest.mark.asyncio
async def test_quota_rejection_leaves_storage_and_counters_untouched(kv, blob, sample_article):
    quota = QuotaTracker(kv, QuotaLimits(class_a_ops=5), clock=fixed_clock())
    await quota.update_usage(class_a_ops=5)
    store = ArchiveStore(blob, quota)

    with pytest.raises(QuotaExceededError) as excinfo:
        await store.archive(sample_article)

    assert "Class A" in excinfo.value.reason
    assert excinfo.value.usage.class_a_ops == 5
    assert blob.calls == []
    assert (await quota.get_usage()).class_a_ops == 5


@pytest.mark.asyncio
async def test_disabled_archive(blob, quota, sample_article):
    store = ArchiveStore(blob, quota, enabled=False)
    with pytest.raises(ArchiveDisabledError):
        await store.archive(sample_article)
    assert blob.calls == []


@pytest.mark.asyncio
async def test_storage_failure_does_not_count(blob, quota, sample_article):
    blob.put = AsyncMock(side_effect=ConnectionError("bucket unreachable"))
    store = ArchiveStore(blob, quota)

    with pytest.raises(ConnectionError):
        await store.archive(sample_article)

    usage = await quota.get_usage()
    assert usage.class_a_ops == 0
    assert usage.articles_archived == 0


@pytest.mark.asyncio
async def test_retrieve_round_trip_counts_class_b(store, quota, sample_article):
    key = await store.archive(sample_article, analysis=BASELINE_ANALYSIS)

    archived = await store.retrieve(key)

    assert archived.content == sample_article.content
    assert archived.analysis["tldr"] == BASELINE_ANALYSIS["tldr"]
    assert (await quota.get_usage()).class_b_ops == 1


@pytest.mark.asyncio
async def test_retrieve_missing_returns_none(store, quota):
    assert await store.retrieve("threats/2020/01/nope.json") is None
    assert (await quota.get_usage()).class_b_ops == 1


@pytest.mark.asyncio
async def test_retrieve_blocked_by_class_b_ceiling(kv, blob):
    quota = QuotaTracker(kv, QuotaLimits(class_b_ops=3), clock=fixed_clock())
    await quota.update_usage(class_b_ops=3)
    store = ArchiveStore(blob, quota)

    with pytest.raises(QuotaExceededError):
        await store.retrieve("threats/2025/03/x.json")
    assert blob.calls == []


@pytest.mark.asyncio
async def test_delete_frees_storage(store, quota, sample_article):
    key = await store.archive(sample_article)

    await store.delete(key)

    usage = await quota.get_usage()
    assert usage.storage_gb == pytest.approx(0)
    assert usage.articles_archived == 0
    assert usage.class_a_ops == 2


@pytest.mark.asyncio
async def test_delete_blocked_by_class_a_ceiling(kv, blob, sample_article):
    quota = QuotaTracker(kv, QuotaLimits(class_a_ops=5), clock=fixed_clock())
    store = ArchiveStore(blob, quota, clock=fixed_clock())
    key = await store.archive(sample_article)
    await quota.update_usage(class_a_ops=4)
    blob.calls.clear()

    with pytest.raises(QuotaExceededError):
        await store.delete(key)

    assert blob.calls == []
    assert key in blob.objects
    usage = await quota.get_usage()
    assert usage.class_a_ops == 5
    assert usage.articles_archived == 1


@pytest.mark.asyncio
async def test_delete_missing_key_is_idempotent(store, quota):
    await store.delete("threats/2025/03/missing.json")
    await store.delete("threats/2025/03/missing.json")

    usage = await quota.get_usage()
    assert usage.storage_gb == 0
    assert usage.articles_archived == 0


@pytest.mark.asyncio
async def test_list_reports_truncation(store, blob, quota, sample_articles):
    for article in sample_articles:
        await store.archive(article)

    result = await store.list(limit=2)

    assert len(result.keys) == 2
    assert result.truncated is True
    assert all(k.startswith("threats/") for k in result.keys)
    assert (await quota.get_usage()).class_a_ops == len(sample_articles) + 1


@pytest.mark.asyncio
async def test_stats(store, sample_article):
    await store.archive(sample_article)
    stats = await store.stats()
    assert stats["articles_archived"] == 1
    assert stats["status"] == "healthy"
