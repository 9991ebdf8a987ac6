"""
Learning Seeder

Bulk-loads historical fixes from a source into the retriever in paced
batches. The stop event is checked at every batch boundary; everything
learned before a stop stays valid because learning is keyed by the
(repo, issue, fix) hash.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol

from ..common.errors import QuotaExceededError
from ..common.schemas.records import HistoricalFix, ItemError
from ..correlate.fallback import FALLBACK_ERRORS
from .retrieval import SimilarFixRetriever

logger = logging.getLogger("signalhub.learning.seeding")

SleepFn = Callable[[float], Awaitable[None]]

ITEM_DELAY_SECONDS = 0.1
BATCH_DELAY_SECONDS = 1.0


class FixSource(Protocol):
    """Anything that can list merged fixes for closed issues (e.g. a GitHub client)"""

    async def list_fixes(
        self, since: Optional[str] = None, limit: Optional[int] = None
    ) -> List[HistoricalFix]:
        ...


@dataclass
class SeedResult:
    found: int = 0
    created: int = 0
    skipped: int = 0
    errors: List[ItemError] = field(default_factory=list)
    cancelled: bool = False
    elapsed: float = 0.0


async def seed_learnings(
    source: FixSource,
    retriever: SimilarFixRetriever,
    batch_size: int = 50,
    stop_event: Optional[asyncio.Event] = None,
    since: Optional[str] = None,
    limit: Optional[int] = None,
    dry_run: bool = False,
    sleep: SleepFn = asyncio.sleep,
) -> SeedResult:
    """
    Learn every fix the source returns.

    Args:
        source: Fix source
        retriever: Destination for learned fixes
        batch_size: Fixes per batch
        stop_event: Set to stop at the next batch boundary
        since: Only fixes for issues updated after this ISO date
        limit: Maximum fixes requested from the source
        dry_run: Count only, store nothing
        sleep: Pacing function (injected in tests)

    Returns:
        SeedResult with counts; never raises for a single bad fix
    """
    started = time.monotonic()
    result = SeedResult()

    fixes = await source.list_fixes(since=since, limit=limit)
    result.found = len(fixes)
    logger.info("Seeding %d historical fixes%s", len(fixes), " (dry run)" if dry_run else "")

    batch_size = max(1, batch_size)
    total_batches = (len(fixes) + batch_size - 1) // batch_size

    for batch_index in range(total_batches):
        if stop_event is not None and stop_event.is_set():
            logger.info("Seeding stopped after %d of %d batches", batch_index, total_batches)
            result.cancelled = True
            break

        batch = fixes[batch_index * batch_size:(batch_index + 1) * batch_size]
        logger.info("Processing batch %d/%d (%d fixes)", batch_index + 1, total_batches, len(batch))

        for fix in batch:
            label = f"{fix.repo}#{fix.issue_number}->#{fix.fix_number}"
            if dry_run:
                result.skipped += 1
                continue
            try:
                if await retriever.learn(fix):
                    result.created += 1
                else:
                    result.skipped += 1
            except QuotaExceededError as e:
                # learn stores the row before embedding, so it still counts
                result.created += 1
                logger.error("Quota exceeded while seeding, stopping: %s", e)
                result.errors.append(ItemError(item_id=label, error=str(e), kind="quota"))
                result.cancelled = True
                result.elapsed = time.monotonic() - started
                return result
            except FALLBACK_ERRORS as e:
                logger.error("Failed to learn %s: %s", label, e)
                result.errors.append(ItemError(item_id=label, error=str(e)))
            await sleep(ITEM_DELAY_SECONDS)

        if batch_index + 1 < total_batches:
            await sleep(BATCH_DELAY_SECONDS)

    result.elapsed = time.monotonic() - started
    logger.info(
        "Seeding done: %d found, %d created, %d skipped, %d errors in %.1fs",
        result.found, result.created, result.skipped, len(result.errors), result.elapsed,
    )
    return result
