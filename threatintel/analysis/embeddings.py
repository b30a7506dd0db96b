"""Embedding generation and semantic search over the vector index."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from threatintel.analysis.parser import parse_embedding
from threatintel.analysis.usage import UsageMeter
from threatintel.inference.base import BaseInferenceService
from threatintel.models import AnalysisResult, Article

if TYPE_CHECKING:
    from threatintel.storage.vectors import SQLiteVectorIndex

logger = logging.getLogger(__name__)

MAX_EMBEDDING_CHARS = 2000


def embedding_input(article: Article, analysis: AnalysisResult) -> str:
    return " ".join([article.title, analysis.tldr, *analysis.key_points])


async def generate_embedding(
    inference: BaseInferenceService,
    meter: UsageMeter,
    text: str,
    model: str,
) -> list[float] | None:
    """Embed ``text`` (clipped to the model window); None on any failure."""
    text = text[:MAX_EMBEDDING_CHARS]
    try:
        response = await inference.run(model, {"text": text})
    except Exception as exc:
        logger.error("Embedding generation failed: %s: %s", type(exc).__name__, exc)
        return None

    meter.track_text(model, text)
    vector = parse_embedding(response)
    if vector is None:
        logger.error("Invalid embedding response from %s", model)
    return vector


async def semantic_search(
    inference: BaseInferenceService,
    meter: UsageMeter,
    index: SQLiteVectorIndex,
    query: str,
    model: str,
    limit: int = 10,
) -> list[tuple[str, float]]:
    """Return (article id, score) pairs most similar to ``query``."""
    vector = await generate_embedding(inference, meter, query, model)
    if vector is None:
        return []
    try:
        matches = index.query(vector, top_k=limit, with_metadata=False)
    except Exception:
        logger.exception("Semantic search failed")
        return []
    return [(m.id, m.score) for m in matches]
