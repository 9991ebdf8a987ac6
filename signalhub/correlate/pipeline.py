"""
Correlation Pipeline

Composes the cache, classifier and grouper into one batch run:

1. Validate signals (empty ones are skipped and reported)
2. Group related signals (semantic when enabled, keyword otherwise)
3. Detect likely duplicates
4. Match signals against the feature taxonomy and annotate groups

Also hosts the paced re-embedding job: small sequential batches with a
delay between them, checking a stop event at every batch boundary.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from ..common.config import ClassificationConfig
from ..common.embedding_cache import EmbeddingCache, hash_content
from ..common.embedding_service import EmbeddingService, with_retry
from ..common.errors import ContentValidationError, QuotaExceededError
from ..common.schemas.records import BatchSummary, EmbeddingKind, Feature
from ..common.schemas.signal import Group, GroupingResult, Signal
from .classifier import ClassificationMatch, Classifier, features_to_candidates, signal_kind
from .fallback import FALLBACK_ERRORS
from .grouper import SemanticGrouper, annotate_features, find_duplicates, group_signals

logger = logging.getLogger("signalhub.correlate.pipeline")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class ReembedItem:
    kind: str
    entity_id: str
    text: str


@dataclass
class PipelineReport:
    """Structured outcome of a run; partial success is always visible"""
    summary: BatchSummary
    grouping: GroupingResult
    duplicates: List[Group] = field(default_factory=list)
    feature_matches: Dict[str, List[ClassificationMatch]] = field(default_factory=dict)


class CorrelationPipeline:
    """Batch correlation over already-normalized signals."""

    def __init__(
        self,
        config: ClassificationConfig,
        cache: EmbeddingCache,
        embedding_service: Optional[EmbeddingService] = None,
        sleep: SleepFn = asyncio.sleep,
        retry_base_delay: float = 1.0,
    ):
        self._config = config
        self._cache = cache
        self._embedding = embedding_service
        self._sleep = sleep
        self._retry_base_delay = retry_base_delay
        self.classifier = Classifier(config, cache, embedding_service, retry_base_delay=retry_base_delay)
        self.grouper = SemanticGrouper(config, cache, embedding_service, retry_base_delay=retry_base_delay)

    async def run(
        self,
        signals: Sequence[Signal],
        features: Sequence[Feature] = (),
        min_similarity: Optional[float] = None,
        max_groups: Optional[int] = None,
    ) -> PipelineReport:
        summary = BatchSummary()
        valid: List[Signal] = []
        for signal in signals:
            summary.processed += 1
            if not signal.text:
                summary.skipped += 1
                summary.record_error(signal.key, ContentValidationError("empty signal text"), kind="validation")
                continue
            valid.append(signal)

        if self.classifier.semantic_enabled:
            grouping, embed_summary = await self.grouper.group(valid, min_similarity, max_groups)
            summary.fallbacks += embed_summary.fallbacks
            summary.errors.extend(embed_summary.errors)
        else:
            grouping = group_signals(
                valid,
                min_similarity=0.5 if min_similarity is None else min_similarity,
                max_groups=self._config.max_group_size if max_groups is None else max_groups,
            )

        duplicates = find_duplicates(valid, threshold=self._config.duplicate_threshold)

        feature_matches: Dict[str, List[ClassificationMatch]] = {}
        if features:
            by_id = {f.id: f for f in features}
            member_features: Dict[str, List[Feature]] = {}
            matches, feature_summary = await self.classifier.classify_many(
                valid, features_to_candidates(features)
            )
            summary.fallbacks += feature_summary.fallbacks
            summary.errors.extend(feature_summary.errors)
            for signal in valid:
                found = matches.get(signal.key, [])
                feature_matches[signal.key] = found
                member_features[signal.key] = [by_id[m.candidate_id] for m in found if m.candidate_id in by_id]
            grouping = GroupingResult(
                groups=[annotate_features(g, member_features) for g in grouping.groups],
                ungrouped=grouping.ungrouped,
            )

        summary.succeeded = len(valid)
        logger.info(
            "Pipeline run: %d processed, %d groups, %d duplicates, %d fallbacks",
            summary.processed, len(grouping.groups), len(duplicates), summary.fallbacks,
        )
        return PipelineReport(
            summary=summary,
            grouping=grouping,
            duplicates=duplicates,
            feature_matches=feature_matches,
        )

    # ------------------------------------------------------------------
    # Re-embedding
    # ------------------------------------------------------------------

    async def reembed(
        self,
        items: Sequence[ReembedItem],
        stop_event: Optional[asyncio.Event] = None,
        force: bool = False,
    ) -> BatchSummary:
        """
        Re-embed items whose content hash changed, in paced batches.

        Args:
            items: Entities to (re-)embed
            stop_event: Checked between batches; set it to stop early
            force: Re-embed even when the cached hash still matches

        Returns:
            BatchSummary; ``cancelled`` is set if the stop event fired
        """
        summary = BatchSummary()
        if self._embedding is None or not self._embedding.is_available:
            logger.warning("Embedding service unavailable, nothing re-embedded")
            summary.processed = len(items)
            summary.skipped = len(items)
            return summary

        batch_size = max(1, self._config.batch_size)
        total_batches = (len(items) + batch_size - 1) // batch_size

        for batch_index in range(total_batches):
            if stop_event is not None and stop_event.is_set():
                logger.info("Re-embedding stopped after %d of %d batches", batch_index, total_batches)
                summary.cancelled = True
                break

            batch = items[batch_index * batch_size:(batch_index + 1) * batch_size]
            logger.info("Re-embedding batch %d/%d (%d items)", batch_index + 1, total_batches, len(batch))

            for item in batch:
                summary.processed += 1
                content_hash = hash_content(item.text)
                if not force and self._cache.get(item.kind, item.entity_id, content_hash) is not None:
                    summary.skipped += 1
                    continue

                try:
                    vector = await with_retry(
                        lambda: self._embedding.aembed_single(item.text),
                        base_delay=self._retry_base_delay,
                    )
                    self._cache.set(item.kind, item.entity_id, content_hash, vector)
                    summary.succeeded += 1
                except QuotaExceededError as e:
                    logger.error("Quota exceeded while re-embedding, stopping: %s", e)
                    summary.record_error(item.entity_id, e, kind="quota")
                    summary.cancelled = True
                    return summary
                except FALLBACK_ERRORS as e:
                    logger.error("Failed to embed %s/%s: %s", item.kind, item.entity_id, e)
                    summary.skipped += 1
                    summary.record_error(item.entity_id, e, kind="validation" if isinstance(e, ContentValidationError) else "transient")

                await self._sleep(self._config.item_delay_ms / 1000)

            if batch_index + 1 < total_batches:
                await self._sleep(self._config.batch_delay_ms / 1000)

        return summary

    async def reembed_signals(
        self, signals: Sequence[Signal], stop_event: Optional[asyncio.Event] = None
    ) -> BatchSummary:
        return await self.reembed(
            [ReembedItem(signal_kind(s), s.source_id, s.text) for s in signals], stop_event
        )

    async def reembed_features(
        self, features: Sequence[Feature], stop_event: Optional[asyncio.Event] = None
    ) -> BatchSummary:
        return await self.reembed(
            [ReembedItem(EmbeddingKind.FEATURE.value, f.id, f.embedding_text()) for f in features],
            stop_event,
        )
