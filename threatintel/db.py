"""SQLite schema and query helpers for threats, summaries and IOCs."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from threatintel.models import AnalysisResult, Article, Strategy

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

DEFAULT_CONFIDENCE = 0.85
PLACEHOLDER_TLDR = "AI analysis unavailable"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS threats (
    id TEXT PRIMARY KEY,
    source TEXT NOT NULL,
    title TEXT NOT NULL,
    url TEXT UNIQUE NOT NULL,
    content TEXT,
    published_at TEXT NOT NULL,
    fetched_at TEXT NOT NULL,
    archived INTEGER NOT NULL DEFAULT 0,
    archive_key TEXT
);

CREATE TABLE IF NOT EXISTS summaries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    threat_id TEXT NOT NULL,
    tldr TEXT NOT NULL,
    key_points TEXT NOT NULL DEFAULT '[]',
    category TEXT NOT NULL,
    severity TEXT NOT NULL,
    affected_sectors TEXT NOT NULL DEFAULT '[]',
    threat_actors TEXT NOT NULL DEFAULT '[]',
    confidence_score REAL,
    model_strategy TEXT,
    generated_at TEXT NOT NULL,
    FOREIGN KEY (threat_id) REFERENCES threats(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS iocs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    threat_id TEXT NOT NULL,
    ioc_type TEXT NOT NULL,
    ioc_value TEXT NOT NULL,
    context TEXT,
    first_seen TEXT NOT NULL,
    last_seen TEXT NOT NULL,
    UNIQUE (threat_id, ioc_type, ioc_value),
    FOREIGN KEY (threat_id) REFERENCES threats(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    fields TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_threats_published ON threats(published_at DESC);
CREATE INDEX IF NOT EXISTS idx_summaries_threat ON summaries(threat_id);
CREATE INDEX IF NOT EXISTS idx_summaries_category ON summaries(category);
CREATE INDEX IF NOT EXISTS idx_summaries_strategy ON summaries(model_strategy);
CREATE INDEX IF NOT EXISTS idx_iocs_threat ON iocs(threat_id);
CREATE INDEX IF NOT EXISTS idx_iocs_value ON iocs(ioc_value);
CREATE INDEX IF NOT EXISTS idx_events_name ON events(name);
"""


def get_connection(db_path: str) -> sqlite3.Connection:
    """Get a SQLite connection with WAL mode enabled."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str) -> None:
    """Create all tables and set schema version."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        conn.commit()
    finally:
        conn.close()


def _now_str() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dt_str(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _parse_dt(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _row_to_article(row: sqlite3.Row) -> Article:
    return Article(
        id=row["id"],
        title=row["title"],
        content=row["content"] or "",
        source=row["source"],
        published_at=_parse_dt(row["published_at"]),
        url=row["url"],
    )


# --- Threat helpers ---


def insert_threat(conn: sqlite3.Connection, article: Article) -> bool:
    """Insert a fetched article. Returns False if the id or URL already exists."""
    try:
        conn.execute(
            """INSERT INTO threats (id, source, title, url, content, published_at, fetched_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                article.id,
                article.source,
                article.title,
                article.url or article.id,
                article.content,
                _dt_str(article.published_at),
                _now_str(),
            ),
        )
        conn.commit()
        return True
    except sqlite3.IntegrityError:
        return False


def get_threat(conn: sqlite3.Connection, threat_id: str) -> Article | None:
    row = conn.execute("SELECT * FROM threats WHERE id = ?", (threat_id,)).fetchone()
    return _row_to_article(row) if row else None


def get_pending_threats(conn: sqlite3.Connection, limit: int = 10) -> list[Article]:
    """Threats without a summary row, newest first."""
    rows = conn.execute(
        """SELECT t.* FROM threats t
           LEFT JOIN summaries s ON t.id = s.threat_id
           WHERE s.threat_id IS NULL
           ORDER BY t.published_at DESC
           LIMIT ?""",
        (limit,),
    ).fetchall()
    return [_row_to_article(row) for row in rows]


# --- Summary helpers ---


def insert_summary(
    conn: sqlite3.Connection,
    threat_id: str,
    analysis: AnalysisResult,
    confidence: float = DEFAULT_CONFIDENCE,
) -> int:
    """Insert the flattened analysis for a threat, returning the row id."""
    cur = conn.execute(
        """INSERT INTO summaries
           (threat_id, tldr, key_points, category, severity, affected_sectors,
            threat_actors, confidence_score, model_strategy, generated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            threat_id,
            analysis.tldr,
            json.dumps(analysis.key_points),
            analysis.category.value,
            analysis.severity.value,
            json.dumps(analysis.affected_sectors),
            json.dumps(analysis.threat_actors),
            confidence,
            analysis.model_strategy.value if analysis.model_strategy else None,
            _now_str(),
        ),
    )
    conn.commit()
    return cur.lastrowid


def insert_placeholder_summary(conn: sqlite3.Connection, threat_id: str) -> int:
    """Mark a threat as processed when no analysis could be produced."""
    cur = conn.execute(
        """INSERT INTO summaries
           (threat_id, tldr, key_points, category, severity,
            confidence_score, model_strategy, generated_at)
           VALUES (?, ?, '[]', 'other', 'info', 0.0, NULL, ?)""",
        (threat_id, PLACEHOLDER_TLDR, _now_str()),
    )
    conn.commit()
    return cur.lastrowid


def get_strategy_counts(conn: sqlite3.Connection) -> dict[str, int]:
    """Summaries per model strategy; placeholders are counted as 'none'."""
    rows = conn.execute(
        """SELECT COALESCE(model_strategy, 'none') AS strategy, COUNT(*) AS n
           FROM summaries GROUP BY strategy ORDER BY n DESC""",
    ).fetchall()
    return {row["strategy"]: row["n"] for row in rows}


def get_summary(conn: sqlite3.Connection, threat_id: str) -> dict | None:
    row = conn.execute(
        "SELECT * FROM summaries WHERE threat_id = ? ORDER BY id DESC LIMIT 1",
        (threat_id,),
    ).fetchone()
    if row is None:
        return None
    summary = dict(row)
    for key in ("key_points", "affected_sectors", "threat_actors"):
        summary[key] = json.loads(summary[key] or "[]")
    return summary


def get_recent_analyses(
    conn: sqlite3.Connection, since: datetime, limit: int = 50,
) -> list[tuple[Article, AnalysisResult]]:
    """Analyzed threats published since ``since``, newest first. Placeholders are skipped."""
    rows = conn.execute(
        """SELECT t.*, s.tldr, s.key_points, s.category, s.severity,
                  s.affected_sectors, s.threat_actors, s.model_strategy
           FROM threats t
           JOIN summaries s ON s.threat_id = t.id
           WHERE t.published_at >= ? AND s.model_strategy IS NOT NULL
           ORDER BY t.published_at DESC
           LIMIT ?""",
        (_dt_str(since), limit),
    ).fetchall()

    results = []
    for row in rows:
        analysis = AnalysisResult.from_dict(
            {
                "tldr": row["tldr"],
                "category": row["category"],
                "severity": row["severity"],
                "key_points": json.loads(row["key_points"]),
                "affected_sectors": json.loads(row["affected_sectors"]),
                "threat_actors": json.loads(row["threat_actors"]),
            },
            strategy=Strategy(row["model_strategy"]),
        )
        if analysis is not None:
            results.append((_row_to_article(row), analysis))
    return results


# --- IOC helpers ---


def insert_iocs(conn: sqlite3.Connection, threat_id: str, analysis: AnalysisResult) -> int:
    """Insert one row per indicator; duplicates are skipped. Returns rows added."""
    now = _now_str()
    inserted = 0
    for ioc_type, value in analysis.iocs.flatten():
        try:
            conn.execute(
                """INSERT INTO iocs (threat_id, ioc_type, ioc_value, first_seen, last_seen)
                   VALUES (?, ?, ?, ?, ?)""",
                (threat_id, ioc_type, value, now, now),
            )
            inserted += 1
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" not in str(exc):
                raise
            logger.debug("Skipping duplicate IOC %s=%s for %s", ioc_type, value, threat_id)
    conn.commit()
    return inserted


def get_threat_iocs(conn: sqlite3.Connection, threat_id: str) -> list[dict]:
    rows = conn.execute(
        "SELECT ioc_type, ioc_value, context FROM iocs WHERE threat_id = ? ORDER BY id",
        (threat_id,),
    ).fetchall()
    return [dict(row) for row in rows]


# --- Archive helpers ---


def get_archivable_threats(
    conn: sqlite3.Connection, cutoff: datetime, limit: int = 100,
) -> list[tuple[Article, dict | None]]:
    """Unarchived threats published before ``cutoff``, oldest first, with summaries."""
    rows = conn.execute(
        """SELECT * FROM threats
           WHERE published_at < ? AND archived = 0
           ORDER BY published_at ASC
           LIMIT ?""",
        (_dt_str(cutoff), limit),
    ).fetchall()
    return [(_row_to_article(row), get_summary(conn, row["id"])) for row in rows]


def mark_archived(conn: sqlite3.Connection, threat_id: str, archive_key: str) -> bool:
    """Flag a threat as archived and drop its content from the database."""
    cur = conn.execute(
        "UPDATE threats SET archived = 1, archive_key = ?, content = NULL WHERE id = ?",
        (archive_key, threat_id),
    )
    conn.commit()
    return cur.rowcount == 1


def get_archive_key(conn: sqlite3.Connection, threat_id: str) -> str | None:
    row = conn.execute(
        "SELECT archive_key FROM threats WHERE id = ? AND archived = 1", (threat_id,),
    ).fetchone()
    return row["archive_key"] if row else None


def restore_content(conn: sqlite3.Connection, threat_id: str, content: str) -> bool:
    cur = conn.execute(
        "UPDATE threats SET archived = 0, archive_key = NULL, content = ? WHERE id = ?",
        (content, threat_id),
    )
    conn.commit()
    return cur.rowcount == 1


# --- Event helpers ---


def insert_event(conn: sqlite3.Connection, name: str, fields: dict) -> int:
    """Record an analytics event (failures, shadow comparisons)."""
    cur = conn.execute(
        "INSERT INTO events (name, fields, created_at) VALUES (?, ?, ?)",
        (name, json.dumps(fields), _now_str()),
    )
    conn.commit()
    return cur.lastrowid


def get_events(conn: sqlite3.Connection, name: str | None = None, limit: int = 100) -> list[dict]:
    if name:
        rows = conn.execute(
            "SELECT * FROM events WHERE name = ? ORDER BY id DESC LIMIT ?", (name, limit),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,),
        ).fetchall()
    return [{**dict(row), "fields": json.loads(row["fields"])} for row in rows]
