"""Monthly archival of old threats to blob storage, and restore."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone

from threatintel.config import (
    get_archive_config,
    get_db_path,
    get_kv_path,
    get_quota_limits,
)
from threatintel.db import (
    get_archivable_threats,
    get_archive_key,
    get_connection,
    get_threat_iocs,
    mark_archived,
    restore_content,
)
from threatintel.storage.archive import ArchiveStore
from threatintel.storage.blob import GCSBlobStore
from threatintel.storage.kv import SQLiteKVStore
from threatintel.storage.quota import QuotaExceededError, QuotaLimits, QuotaTracker

logger = logging.getLogger(__name__)


def _summary_to_analysis(summary: dict | None) -> dict | None:
    # Placeholder summaries carry no strategy
    if not summary or summary.get("model_strategy") is None:
        return None
    return {
        "tldr": summary["tldr"],
        "category": summary["category"],
        "severity": summary["severity"],
        "key_points": summary["key_points"],
        "affected_sectors": summary["affected_sectors"],
        "threat_actors": summary["threat_actors"],
        "model_strategy": summary["model_strategy"],
    }


async def archive_old_threats(
    conn: sqlite3.Connection,
    store: ArchiveStore,
    age_days: int = 90,
    max_per_run: int = 100,
    now: datetime | None = None,
) -> dict:
    """Move threats older than ``age_days`` into the archive.

    Stops at the first quota rejection and does nothing when the monthly
    quota is already critical.
    """
    stats = {
        "checked": 0,
        "archived": 0,
        "failed": 0,
        "skipped": 0,
        "quota_exceeded": False,
        "errors": [],
    }

    if not store.enabled:
        logger.info("Archiving disabled, skipping")
        stats["errors"].append("Archiving disabled")
        return stats

    usage = await store.quota.get_usage()
    if usage.status == "critical":
        logger.error("Archive quota critical, skipping archival")
        store.quota.log_warning(usage)
        stats["errors"].append("Archive quota at critical level")
        return stats

    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=age_days)
    candidates = get_archivable_threats(conn, cutoff, max_per_run)
    stats["checked"] = len(candidates)
    if not candidates:
        logger.info("No threats older than %s to archive", cutoff.date())
        return stats

    logger.info("Archiving %d threats published before %s", len(candidates), cutoff.date())
    for article, summary in candidates:
        try:
            key = await store.archive(
                article,
                analysis=_summary_to_analysis(summary),
                iocs=get_threat_iocs(conn, article.id),
            )
        except QuotaExceededError as exc:
            logger.error("Quota exceeded, stopping archival: %s", exc.reason)
            stats["quota_exceeded"] = True
            break
        except Exception as exc:
            logger.warning("Failed to archive %s: %s", article.id, exc)
            stats["skipped"] += 1
            stats["errors"].append(f"Failed to archive {article.id}: {exc}")
            continue

        if mark_archived(conn, article.id, key):
            stats["archived"] += 1
        else:
            stats["failed"] += 1
            stats["errors"].append(f"Failed to mark {article.id} as archived")

    final = await store.quota.get_usage()
    store.quota.log_warning(final)
    logger.info(
        "Archival complete: checked=%d archived=%d failed=%d skipped=%d quota=%s",
        stats["checked"], stats["archived"], stats["failed"], stats["skipped"], final.status,
    )
    return stats


async def restore_threat(conn: sqlite3.Connection, store: ArchiveStore, threat_id: str) -> bool:
    """Copy an archived article's content back into the database."""
    key = get_archive_key(conn, threat_id)
    if not key:
        logger.error("Threat %s not found or not archived", threat_id)
        return False

    archived = await store.retrieve(key)
    if archived is None:
        logger.error("Archived object %s for threat %s is missing", key, threat_id)
        return False

    if not restore_content(conn, threat_id, archived.content):
        logger.error("Failed to restore threat %s", threat_id)
        return False

    logger.info("Restored threat %s from %s", threat_id, key)
    return True


def build_quota_tracker(config: dict) -> tuple[QuotaTracker, SQLiteKVStore]:
    """Quota tracker over the SQLite KV store; caller closes the KV."""
    kv = SQLiteKVStore(get_kv_path(config))
    return QuotaTracker(kv, QuotaLimits.from_config(get_quota_limits(config))), kv


def build_archive_store(config: dict) -> tuple[ArchiveStore, SQLiteKVStore]:
    """ArchiveStore backed by GCS; caller closes the KV."""
    archive = get_archive_config(config)
    quota, kv = build_quota_tracker(config)
    store = ArchiveStore(
        GCSBlobStore(archive["bucket"]),
        quota,
        max_size_bytes=archive["max_size_bytes"],
        prefix=archive["prefix"],
        enabled=archive["enabled"],
    )
    return store, kv


async def run_archival(config: dict) -> dict:
    archive = get_archive_config(config)
    if not archive["enabled"]:
        logger.info("Archiving disabled, skipping")
        return {"checked": 0, "archived": 0, "failed": 0, "skipped": 0,
                "quota_exceeded": False, "errors": ["Archiving disabled"]}

    conn = get_connection(get_db_path(config))
    store, kv = build_archive_store(config)
    try:
        return await archive_old_threats(
            conn, store,
            age_days=archive["age_days"],
            max_per_run=archive["max_per_run"],
        )
    finally:
        kv.close()
        conn.close()


async def run_restore(config: dict, threat_id: str) -> bool:
    conn = get_connection(get_db_path(config))
    store, kv = build_archive_store(config)
    try:
        return await restore_threat(conn, store, threat_id)
    finally:
        kv.close()
        conn.close()
