"""Tests for database operations."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

from threatintel.db import (
    PLACEHOLDER_TLDR,
    get_archivable_threats,
    get_archive_key,
    get_events,
    get_pending_threats,
    get_recent_analyses,
    get_strategy_counts,
    get_summary,
    get_threat,
    get_threat_iocs,
    insert_event,
    insert_iocs,
    insert_placeholder_summary,
    insert_summary,
    insert_threat,
    mark_archived,
    restore_content,
)
from threatintel.models import AnalysisResult, Strategy

from conftest import BASELINE_ANALYSIS


def _analysis(**overrides):
    return AnalysisResult.from_dict({**BASELINE_ANALYSIS, **overrides}, strategy=Strategy.BASELINE)


def test_insert_and_fetch_threat(db_conn, sample_article):
    """Threats can be inserted and retrieved."""
    assert insert_threat(db_conn, sample_article)
    threat = get_threat(db_conn, sample_article.id)
    assert threat.title == sample_article.title
    assert threat.published_at == sample_article.published_at


def test_duplicate_threat_skipped(db_conn, sample_article):
    """Duplicate ids are silently skipped."""
    assert insert_threat(db_conn, sample_article)
    assert not insert_threat(db_conn, sample_article)


def test_pending_threats_exclude_summarized(db_conn, sample_articles):
    for article in sample_articles:
        insert_threat(db_conn, article)
    insert_summary(db_conn, "threat-001", _analysis())

    pending = get_pending_threats(db_conn, limit=10)

    assert [a.id for a in pending] == ["threat-002", "threat-003"]
    assert len(get_pending_threats(db_conn, limit=1)) == 1


def test_summary_round_trip(db_conn, sample_article):
    insert_threat(db_conn, sample_article)
    insert_summary(db_conn, sample_article.id, _analysis())

    summary = get_summary(db_conn, sample_article.id)

    assert summary["category"] == "ransomware"
    assert summary["key_points"] == BASELINE_ANALYSIS["key_points"]
    assert summary["threat_actors"] == ["LockBit"]
    assert summary["confidence_score"] == 0.85
    assert summary["model_strategy"] == "baseline"


def test_placeholder_summary(db_conn, sample_article):
    insert_threat(db_conn, sample_article)
    insert_placeholder_summary(db_conn, sample_article.id)

    summary = get_summary(db_conn, sample_article.id)

    assert summary["tldr"] == PLACEHOLDER_TLDR
    assert summary["category"] == "other"
    assert summary["severity"] == "info"
    assert summary["confidence_score"] == 0.0
    assert summary["model_strategy"] is None
    assert get_pending_threats(db_conn) == []


def test_one_insert_per_indicator():
    """ips + domains produce exactly two insert statements."""
    conn = MagicMock()
    analysis = _analysis(iocs={"ips": ["203.0.113.7"], "domains": ["evil.example"]})

    assert insert_iocs(conn, "threat-001", analysis) == 2
    assert conn.execute.call_count == 2
    inserted = [call.args[1][1:3] for call in conn.execute.call_args_list]
    assert inserted == [("ip", "203.0.113.7"), ("domain", "evil.example")]


def test_duplicate_iocs_swallowed(db_conn, sample_article):
    insert_threat(db_conn, sample_article)
    analysis = _analysis()

    assert insert_iocs(db_conn, sample_article.id, analysis) == 2
    assert insert_iocs(db_conn, sample_article.id, analysis) == 0
    assert len(get_threat_iocs(db_conn, sample_article.id)) == 2


def test_archive_helpers(db_conn, sample_articles):
    for article in sample_articles:
        insert_threat(db_conn, article)
    insert_summary(db_conn, "threat-003", _analysis())
    cutoff = datetime(2025, 1, 1, tzinfo=timezone.utc)

    candidates = get_archivable_threats(db_conn, cutoff)
    assert [(a.id, s["category"]) for a, s in candidates] == [("threat-003", "ransomware")]

    assert mark_archived(db_conn, "threat-003", "threats/2024/10/threat-003.json")
    assert get_archive_key(db_conn, "threat-003") == "threats/2024/10/threat-003.json"
    assert get_threat(db_conn, "threat-003").content == ""
    assert get_archivable_threats(db_conn, cutoff) == []

    assert restore_content(db_conn, "threat-003", "restored body")
    assert get_archive_key(db_conn, "threat-003") is None
    assert get_threat(db_conn, "threat-003").content == "restored body"


def test_events(db_conn):
    insert_event(db_conn, "shadow_comparison", {"article_id": "a", "category_match": True})
    insert_event(db_conn, "baseline_analysis_failure", {"article_id": "b"})

    shadow = get_events(db_conn, "shadow_comparison")
    assert len(shadow) == 1
    assert shadow[0]["fields"]["category_match"] is True
    assert len(get_events(db_conn)) == 2


def test_strategy_counts(db_conn, sample_articles):
    for article in sample_articles:
        insert_threat(db_conn, article)
    insert_summary(db_conn, "threat-001", _analysis())
    insert_summary(db_conn, "threat-002", _analysis())
    insert_placeholder_summary(db_conn, "threat-003")

    assert get_strategy_counts(db_conn) == {"baseline": 2, "none": 1}


def test_recent_analyses_skip_placeholders_and_old(db_conn, sample_articles):
    for article in sample_articles:
        insert_threat(db_conn, article)
    insert_summary(db_conn, "threat-001", _analysis())
    insert_placeholder_summary(db_conn, "threat-002")
    insert_summary(db_conn, "threat-003", _analysis())

    recent = get_recent_analyses(db_conn, datetime(2025, 3, 1, tzinfo=timezone.utc))

    assert [(a.id, r.category.value) for a, r in recent] == [("threat-001", "ransomware")]
    assert recent[0][1].model_strategy is Strategy.BASELINE
    assert recent[0][1].key_points == BASELINE_ANALYSIS["key_points"]
