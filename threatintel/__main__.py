"""CLI entrypoint: python -m threatintel {process|search|trends|archive|restore|usage|quota|init-db}."""

from __future__ import annotations

import asyncio
import logging
import logging.handlers
import os
import sys
from pathlib import Path

from threatintel.config import (
    get_db_path,
    get_deployment_config,
    get_neuron_budget,
    load_config,
)
from threatintel.db import get_connection, get_strategy_counts, init_db


def setup_logging(config: dict) -> None:
    """Configure logging with console + rotating file output."""
    root = logging.getLogger()
    root.setLevel(logging.INFO)

    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)

    # File handler (rotate at 5MB, keep 3 backups)
    log_dir = Path(get_db_path(config)).parent
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        str(log_dir / "threatintel.log"), maxBytes=5 * 1024 * 1024, backupCount=3,
    )
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)


logger = logging.getLogger("threatintel")


def cmd_init_db(config: dict, args: list[str]) -> None:
    """Initialize the SQLite database."""
    db_path = get_db_path(config)
    init_db(db_path)
    print(f"Database initialized at {db_path}")


async def cmd_process(config: dict, args: list[str]) -> None:
    """Analyze pending articles."""
    from threatintel.processor import run_processing

    init_db(get_db_path(config))
    stats = await run_processing(config)
    print(
        f"Processed {stats['processed']} articles: {stats['analyzed']} analyzed, "
        f"{stats['placeholders']} placeholders, {stats['errors']} errors"
    )


async def cmd_archive(config: dict, args: list[str]) -> None:
    """Archive old threats to blob storage."""
    from threatintel.archiver import run_archival

    stats = await run_archival(config)
    print(
        f"Checked {stats['checked']}, archived {stats['archived']}, "
        f"failed {stats['failed']}, skipped {stats['skipped']}"
    )
    if stats["quota_exceeded"]:
        print("Stopped early: archive quota exceeded")
    for error in stats["errors"]:
        print(f"  {error}")


async def cmd_restore(config: dict, args: list[str]) -> None:
    """Restore an archived threat's content: restore <threat_id>."""
    from threatintel.archiver import run_restore

    if not args:
        print("Usage: python -m threatintel restore <threat_id>")
        sys.exit(1)

    if not await run_restore(config, args[0]):
        print(f"Failed to restore {args[0]} (see logs)")
        sys.exit(1)
    print(f"Restored {args[0]}")


def cmd_usage(config: dict, args: list[str]) -> None:
    """Show the neuron budget, model cost table and strategy distribution."""
    from threatintel.analysis.usage import NEURON_COSTS

    deploy = get_deployment_config(config)
    print(f"Deployment mode: {deploy['mode']} (canary {deploy['canary_percent']:g}%)")
    print(f"Daily neuron limit: {get_neuron_budget(config):,}")
    print()
    print(f"{'Cost key':<22} {'Neurons / 1M tokens':>20}")
    print("-" * 43)
    for key, cost in NEURON_COSTS.items():
        print(f"{key:<22} {cost:>20,.0f}")

    conn = get_connection(get_db_path(config))
    try:
        counts = get_strategy_counts(conn)
    finally:
        conn.close()

    print()
    if not counts:
        print("No summaries yet.")
        return
    print(f"{'Strategy':<12} {'Summaries':>10}")
    print("-" * 23)
    for strategy, n in counts.items():
        print(f"{strategy:<12} {n:>10}")


async def cmd_quota(config: dict, args: list[str]) -> None:
    """Show this month's archive quota usage."""
    from threatintel.archiver import build_quota_tracker

    quota, kv = build_quota_tracker(config)
    try:
        status = quota.status(await quota.get_usage())
    finally:
        kv.close()

    print(f"Archive quota for {status['month']}: {status['status'].upper()}")
    for name in ("storage", "class_a", "class_b"):
        entry = status[name]
        print(
            f"  {name:<8} {entry['current']:>14,.3f} / {entry['limit']:>12,} "
            f"({entry['percent']}%)"
        )
    print(f"  archived {status['articles_archived']:>14}")


def _analysis_engine(config: dict):
    from threatintel.analysis.strategy import StrategyController
    from threatintel.analysis.usage import UsageMeter
    from threatintel.inference import get_inference_service

    meter = UsageMeter(daily_limit=get_neuron_budget(config))
    return StrategyController.from_config(config, get_inference_service(config), meter)


async def cmd_search(config: dict, args: list[str]) -> None:
    """Semantic search over analyzed threats: search <query words>."""
    from threatintel.analysis.embeddings import semantic_search
    from threatintel.db import get_threat
    from threatintel.storage.vectors import SQLiteVectorIndex

    if not args:
        print("Usage: python -m threatintel search <query>")
        sys.exit(1)

    controller = _analysis_engine(config)
    db_path = get_db_path(config)
    index = SQLiteVectorIndex(db_path)
    conn = get_connection(db_path)
    try:
        results = await semantic_search(
            controller.inference, controller.meter, index,
            " ".join(args), controller.embedding_model,
        )
        if not results:
            print("No matches.")
            return
        for threat_id, score in results:
            threat = get_threat(conn, threat_id)
            title = threat.title if threat else "(deleted)"
            print(f"{score:6.3f}  {threat_id}  {title}")
    finally:
        conn.close()
        index.close()


async def cmd_trends(config: dict, args: list[str]) -> None:
    """Trend narrative over the last seven days of analyses."""
    from datetime import datetime, timedelta, timezone

    from threatintel.analysis.trends import analyze_trends
    from threatintel.db import get_recent_analyses

    conn = get_connection(get_db_path(config))
    try:
        since = datetime.now(timezone.utc) - timedelta(days=7)
        items = get_recent_analyses(conn, since)
    finally:
        conn.close()

    if not items:
        print("No analyzed threats in the last 7 days.")
        return

    controller = _analysis_engine(config)
    print(await analyze_trends(
        controller.inference, controller.meter, items,
        controller.models["text_large_fallback"],
    ))


COMMANDS = {
    "process": cmd_process,
    "search": cmd_search,
    "trends": cmd_trends,
    "archive": cmd_archive,
    "restore": cmd_restore,
    "usage": cmd_usage,
    "quota": cmd_quota,
    "init-db": cmd_init_db,
}


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        available = "|".join(COMMANDS)
        print(f"Usage: python -m threatintel {{{available}}}")
        sys.exit(1)

    command = sys.argv[1]
    config = load_config(os.environ.get("CONFIG_PATH", "config.yaml"))
    setup_logging(config)
    handler = COMMANDS[command]

    if asyncio.iscoroutinefunction(handler):
        asyncio.run(handler(config, sys.argv[2:]))
    else:
        handler(config, sys.argv[2:])


if __name__ == "__main__":
    main()
