#!/usr/bin/env python3
"""
Re-embedding Script

Re-embeds stored historical fixes (and optionally a JSON dump of signals)
with the configured embedding model. Run this after changing
OPENAI_EMBEDDING_MODEL: entries written by the old model are cache misses
until re-embedded.

Usage:
    python scripts/reembed.py [--dry-run] [--batch-size 10] [--signals signals.json] [--force]
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

logger = logging.getLogger("signalhub.scripts.reembed")


def _load_signals(path: str):
    from signalhub.common.schemas.signal import Signal

    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return [Signal.model_validate(item) for item in raw]


async def _run(args) -> int:
    from signalhub.common.config import ensure_directories, load_config
    from signalhub.common.embedding_cache import EmbeddingCache
    from signalhub.common.embedding_service import EmbeddingService
    from signalhub.common.schemas.records import EmbeddingKind
    from signalhub.common.store import SQLiteStore
    from signalhub.correlate.pipeline import CorrelationPipeline, ReembedItem

    ensure_directories()
    config = load_config()
    classification = config.classification
    if args.batch_size:
        classification.batch_size = args.batch_size

    logger.info("Model: %s (%s)", classification.embedding_model, classification.embedding_provider)
    embedding_svc = EmbeddingService(
        mode=classification.embedding_provider,
        model=classification.embedding_model,
        api_key=classification.openai_api_key or None,
        dimensions=classification.embedding_dimensions,
    )
    if not embedding_svc.is_available:
        logger.error("Embedding service not available")
        return 1

    store = SQLiteStore(config.storage.database_path)
    store.init_db()

    items = [
        ReembedItem(EmbeddingKind.FIX.value, fix.content_hash, fix.issue_text())
        for fix in store.list_historical_fixes()
        if fix.issue_text()
    ]
    signals = _load_signals(args.signals) if args.signals else []
    logger.info("Found %d historical fixes and %d signals", len(items), len(signals))

    if args.dry_run:
        logger.info("DRY RUN - no changes will be made")
        logger.info("Would re-embed %d items in batches of %d", len(items) + len(signals), classification.batch_size)
        return 0

    cache = EmbeddingCache(
        model=classification.embedding_model,
        store=store,
        cache_dir=config.storage.cache_dir,
        dimensions=classification.embedding_dimensions,
    )
    pipeline = CorrelationPipeline(classification, cache, embedding_svc)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop_event.set)
    except NotImplementedError:
        logger.debug("Signal handlers unsupported; Ctrl-C stops immediately")

    summary = await pipeline.reembed(items, stop_event=stop_event, force=args.force)
    if signals and not summary.cancelled:
        signal_summary = await pipeline.reembed_signals(signals, stop_event=stop_event)
        summary.processed += signal_summary.processed
        summary.succeeded += signal_summary.succeeded
        summary.skipped += signal_summary.skipped
        summary.errors.extend(signal_summary.errors)
        summary.cancelled = signal_summary.cancelled

    logger.info(
        "Complete: %d re-embedded, %d skipped, %d errors, %d total%s",
        summary.succeeded, summary.skipped, len(summary.errors), summary.processed,
        " (stopped early)" if summary.cancelled else "",
    )
    return 1 if summary.errors else 0


def main():
    parser = argparse.ArgumentParser(description="Re-embed cached entities with the configured model")
    parser.add_argument("--dry-run", action="store_true", help="Print what would be done without executing")
    parser.add_argument("--batch-size", type=int, default=0, help="Items per batch (default: from config)")
    parser.add_argument("--signals", type=str, default="", help="JSON file with a list of signals to re-embed")
    parser.add_argument("--force", action="store_true", help="Re-embed even when the cached hash matches")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="[%(name)s] %(message)s")
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
