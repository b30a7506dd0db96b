"""Scheduled analysis job: analyze pending articles and persist the results."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from functools import partial

from threatintel.analysis.embeddings import embedding_input, generate_embedding
from threatintel.analysis.strategy import StrategyController
from threatintel.analysis.usage import UsageMeter
from threatintel.config import (
    get_db_path,
    get_neuron_budget,
    get_processing_config,
)
from threatintel.db import (
    get_connection,
    get_pending_threats,
    insert_event,
    insert_iocs,
    insert_placeholder_summary,
    insert_summary,
)
from threatintel.inference import get_inference_service
from threatintel.models import AnalysisResult, Article
from threatintel.storage.vectors import SQLiteVectorIndex

logger = logging.getLogger(__name__)


async def _analyze_with_deadline(
    controller: StrategyController, article: Article, timeout: float | None,
) -> AnalysisResult | None:
    """Run the controller under ``timeout``, then one baseline retry on expiry.

    The retry gets its own ``timeout`` since the first attempt has used up
    the whole budget by then, so one article can take up to twice
    ``timeout`` in total.
    """
    try:
        return await asyncio.wait_for(controller.analyze(article), timeout)
    except asyncio.TimeoutError:
        logger.error("Analysis of %s timed out after %ss, trying baseline", article.id, timeout)

    try:
        return await asyncio.wait_for(controller.run_baseline(article), timeout)
    except Exception as exc:
        logger.error(
            "Baseline retry for %s failed: %s: %s", article.id, type(exc).__name__, exc,
        )
        return None


async def process_article(
    controller: StrategyController,
    conn: sqlite3.Connection,
    vectors: SQLiteVectorIndex | None,
    article: Article,
    timeout: float | None = None,
) -> AnalysisResult | None:
    """Analyze one article and store the summary, IOCs and embedding.

    When no strategy produces a result a placeholder summary is written so
    the article is not picked up again on the next run.
    """
    analysis = await _analyze_with_deadline(controller, article, timeout)
    if analysis is None:
        logger.warning("No analysis for %s, writing placeholder", article.id)
        insert_placeholder_summary(conn, article.id)
        return None

    insert_summary(conn, article.id, analysis)
    ioc_count = insert_iocs(conn, article.id, analysis)
    logger.info(
        "Analyzed %s: %s/%s via %s (%d IOCs)",
        article.id, analysis.category.value, analysis.severity.value,
        analysis.model_strategy.value if analysis.model_strategy else "unknown",
        ioc_count,
    )

    if vectors is not None:
        vector = await generate_embedding(
            controller.inference, controller.meter,
            embedding_input(article, analysis), controller.embedding_model,
        )
        if vector is not None:
            try:
                vectors.insert(article.id, vector, {
                    "title": article.title,
                    "category": analysis.category.value,
                    "severity": analysis.severity.value,
                    "published_at": article.published_at.isoformat(),
                })
            except Exception:
                logger.exception("Failed to store embedding for %s", article.id)

    return analysis


async def process_pending(
    controller: StrategyController,
    conn: sqlite3.Connection,
    vectors: SQLiteVectorIndex | None = None,
    limit: int = 10,
    timeout: float | None = None,
) -> dict:
    """Analyze up to ``limit`` articles without a summary, one at a time."""
    stats = {"processed": 0, "analyzed": 0, "placeholders": 0, "errors": 0}

    articles = get_pending_threats(conn, limit)
    if not articles:
        logger.info("No pending articles")
        return stats

    logger.info("Processing %d pending articles in %s mode", len(articles), controller.mode.value)
    for article in articles:
        try:
            analysis = await process_article(controller, conn, vectors, article, timeout)
        except Exception:
            logger.exception("Failed to process article %s", article.id)
            stats["errors"] += 1
            continue
        stats["processed"] += 1
        if analysis is None:
            stats["placeholders"] += 1
        else:
            stats["analyzed"] += 1

    controller.meter.log_summary()
    logger.info(
        "Processing complete: %d analyzed, %d placeholders, %d errors",
        stats["analyzed"], stats["placeholders"], stats["errors"],
    )
    return stats


async def run_processing(config: dict) -> dict:
    """Wire up the engine from config and process one batch."""
    processing = get_processing_config(config)
    db_path = get_db_path(config)

    conn = get_connection(db_path)
    vectors = SQLiteVectorIndex(db_path)
    try:
        inference = get_inference_service(config)
        meter = UsageMeter(daily_limit=get_neuron_budget(config))
        controller = StrategyController.from_config(
            config, inference, meter, events=partial(insert_event, conn),
        )
        return await process_pending(
            controller, conn, vectors,
            limit=processing["max_per_run"],
            timeout=processing["article_timeout_seconds"],
        )
    finally:
        vectors.close()
        conn.close()
