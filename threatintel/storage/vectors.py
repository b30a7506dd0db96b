"""Vector index for article embeddings, stored in SQLite and scored with numpy."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

_VECTOR_SCHEMA = """
CREATE TABLE IF NOT EXISTS vectors (
    id TEXT PRIMARY KEY,
    embedding BLOB NOT NULL,
    dims INTEGER NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}'
);
"""


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: dict = field(default_factory=dict)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Compute cosine similarity between two vectors."""
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


class SQLiteVectorIndex:
    """Brute-force cosine search; fine for tens of thousands of articles."""

    def __init__(self, db_path: str):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.executescript(_VECTOR_SCHEMA)

    def insert(self, id: str, vector: list[float], metadata: dict | None = None) -> None:
        """Insert or replace the vector for ``id``."""
        arr = np.asarray(vector, dtype=np.float32)
        self._conn.execute(
            "INSERT OR REPLACE INTO vectors (id, embedding, dims, metadata) VALUES (?, ?, ?, ?)",
            (id, arr.tobytes(), arr.shape[0], json.dumps(metadata or {})),
        )
        self._conn.commit()

    def query(
        self, vector: list[float], top_k: int = 10, with_metadata: bool = True,
    ) -> list[VectorMatch]:
        """Best ``top_k`` matches by cosine similarity, highest first."""
        query = np.asarray(vector, dtype=np.float32)
        matches = []
        for row_id, blob, dims, metadata in self._conn.execute(
            "SELECT id, embedding, dims, metadata FROM vectors",
        ):
            if dims != query.shape[0]:
                continue
            stored = np.frombuffer(blob, dtype=np.float32)
            matches.append(VectorMatch(
                id=row_id,
                score=cosine_similarity(query, stored),
                metadata=json.loads(metadata) if with_metadata else {},
            ))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM vectors").fetchone()[0]

    def close(self) -> None:
        self._conn.close()
