"""
Grouper / Correlator

Greedy seed-based clustering of related signals.

Algorithm:
1. Walk signals in input order, skipping any already claimed.
2. Every later unclaimed signal whose similarity to the seed reaches the
   threshold joins the seed's group. Joined members do not pull in
   further members (not transitively closed).
3. avg_similarity is the mean over all member pairs.
4. Canonical item: GitHub over chat, then most recent activity.
5. Groups sorted by avg_similarity descending, truncated to max_groups.

Seeds are order-dependent: with A~B, B~C but not A~C, input [A, B, C]
gives {A, B} + ungrouped C, while [B, A, C] gives {B, A, C}.

Duplicate detection is the same pass at threshold 0.9.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..common.config import ClassificationConfig
from ..common.embedding_cache import EmbeddingCache
from ..common.embedding_service import EmbeddingService, with_retry
from ..common.schemas.records import BatchSummary, Feature
from ..common.schemas.signal import (
    Group,
    GroupingResult,
    GroupMember,
    Signal,
    SignalSource,
    UngroupedSignal,
    generate_group_id,
)
from ..common.similarity import (
    DEFAULT_DUPLICATE_THRESHOLD,
    cosine_similarity,
    keyword_similarity,
)
from .classifier import signal_kind
from .fallback import run_with_fallback

logger = logging.getLogger("signalhub.correlate.grouper")

SimilarityFn = Callable[[Signal, Signal], float]

REASON_BELOW_THRESHOLD = "no candidates above threshold"
REASON_TRUNCATED = "group truncated by max_groups"


def signal_similarity(a: Signal, b: Signal) -> float:
    """Keyword similarity over body and title"""
    return keyword_similarity(f"{a.body} {a.title or ''}", f"{b.body} {b.title or ''}")


class EmbeddingSimilarity:
    """
    Cosine similarity over precomputed signal vectors.

    Pairs where either vector is missing use keyword similarity, which
    shares the 0-1 range.
    """

    def __init__(self, vectors: Dict[str, List[float]]):
        self._vectors = vectors

    def __call__(self, a: Signal, b: Signal) -> float:
        va = self._vectors.get(a.key)
        vb = self._vectors.get(b.key)
        if va is None or vb is None:
            return signal_similarity(a, b)
        return cosine_similarity(va, vb)


def _activity_ts(signal: Signal) -> float:
    moment: datetime = signal.last_activity
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def select_canonical(signals: Sequence[Signal]) -> Signal:
    """GitHub signals first, then the most recently active; ties keep input order"""
    github = [s for s in signals if s.source == SignalSource.GITHUB]
    pool = github or list(signals)
    best = pool[0]
    for signal in pool[1:]:
        if _activity_ts(signal) > _activity_ts(best):
            best = signal
    return best


def average_pairwise_similarity(signals: Sequence[Signal], similarity: SimilarityFn) -> float:
    total = 0.0
    comparisons = 0
    for i in range(len(signals)):
        for j in range(i + 1, len(signals)):
            total += similarity(signals[i], signals[j])
            comparisons += 1
    return total / comparisons if comparisons else 0.0


def _seed_clusters(
    signals: Sequence[Signal],
    threshold: float,
    similarity: SimilarityFn,
) -> Tuple[List[List[Tuple[Signal, float]]], List[Signal]]:
    """Core greedy pass: (clusters of (signal, score to seed), unclaimed singletons)"""
    claimed = set()
    clusters: List[List[Tuple[Signal, float]]] = []
    singletons: List[Signal] = []

    for i, seed in enumerate(signals):
        if seed.key in claimed:
            continue
        claimed.add(seed.key)
        members: List[Tuple[Signal, float]] = [(seed, 1.0)]

        for other in signals[i + 1:]:
            if other.key in claimed:
                continue
            score = similarity(seed, other)
            if score >= threshold:
                members.append((other, score))
                claimed.add(other.key)

        if len(members) > 1:
            clusters.append(members)
        else:
            singletons.append(seed)

    return clusters, singletons


def _build_group(members: List[Tuple[Signal, float]], similarity: SimilarityFn) -> Group:
    signals = [s for s, _ in members]
    canonical = select_canonical(signals)
    return Group(
        id=generate_group_id([s.key for s in signals]),
        members=[GroupMember(signal=s.ref(), similarity_score=score) for s, score in members],
        canonical=canonical.ref(),
        avg_similarity=average_pairwise_similarity(signals, similarity),
    )


def group_signals(
    signals: Sequence[Signal],
    min_similarity: float = 0.5,
    max_groups: int = 10,
    similarity: SimilarityFn = signal_similarity,
) -> GroupingResult:
    """
    Cluster related signals.

    Args:
        signals: Signals in a fixed order (seed selection depends on it)
        min_similarity: Pairwise threshold on the 0-1 scale
        max_groups: Maximum groups returned
        similarity: Pairwise similarity function (keyword by default)

    Returns:
        GroupingResult; every input is either in a group or ungrouped
    """
    clusters, singletons = _seed_clusters(signals, min_similarity, similarity)
    groups = [_build_group(members, similarity) for members in clusters]
    groups = sorted(groups, key=lambda g: -g.avg_similarity)

    kept, dropped = groups[:max_groups], groups[max_groups:]

    ungrouped = [UngroupedSignal(signal=s.ref(), reason=REASON_BELOW_THRESHOLD) for s in singletons]
    for group in dropped:
        ungrouped.extend(UngroupedSignal(signal=m.signal, reason=REASON_TRUNCATED) for m in group.members)

    logger.info(
        "Grouped %d signals into %d groups (%d ungrouped, threshold %.2f)",
        len(signals), len(kept), len(ungrouped), min_similarity,
    )
    return GroupingResult(groups=kept, ungrouped=ungrouped)


def find_duplicates(
    signals: Sequence[Signal],
    threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
    similarity: SimilarityFn = signal_similarity,
) -> List[Group]:
    """Sets of likely duplicates, in seed order, without truncation"""
    clusters, _ = _seed_clusters(signals, threshold, similarity)
    return [_build_group(members, similarity) for members in clusters]


def annotate_features(group: Group, member_features: Dict[str, List[Feature]]) -> Group:
    """
    Record which features a group touches.

    Args:
        group: Group to annotate (a copy is returned)
        member_features: Matched features keyed by member signal key

    Returns:
        Group with ``affected_features`` set and ``is_cross_cutting`` true
        when members span more than one feature
    """
    names: List[str] = []
    seen_ids = set()
    for key in group.member_keys:
        for feature in member_features.get(key, []):
            if feature.id not in seen_ids:
                seen_ids.add(feature.id)
                names.append(feature.name)
    return group.model_copy(update={
        "affected_features": names,
        "is_cross_cutting": len(seen_ids) > 1,
    })


class SemanticGrouper:
    """Groups signals by embedding similarity, per-signal keyword fallback."""

    def __init__(
        self,
        config: ClassificationConfig,
        cache: EmbeddingCache,
        embedding_service: Optional[EmbeddingService] = None,
        retry_base_delay: float = 1.0,
    ):
        self._config = config
        self._cache = cache
        self._embedding = embedding_service
        self._retry_base_delay = retry_base_delay

    async def embed_signals(self, signals: Sequence[Signal]) -> Tuple[Dict[str, List[float]], BatchSummary]:
        """Vectors keyed by signal key; failures are counted, not raised"""
        summary = BatchSummary()
        vectors: Dict[str, List[float]] = {}
        available = self._embedding is not None and self._embedding.is_available

        for signal in signals:
            summary.processed += 1

            async def embed(signal=signal):
                return await with_retry(
                    lambda: self._cache.get_or_compute(
                        signal_kind(signal), signal.source_id, signal.text, self._embedding
                    ),
                    base_delay=self._retry_base_delay,
                )

            async def no_vector():
                return None

            if not available:
                summary.fallbacks += 1
                summary.succeeded += 1
                continue

            outcome = await run_with_fallback(embed, no_vector, label=signal.key)
            if outcome.used_fallback:
                summary.fallbacks += 1
                summary.record_error(signal.key, outcome.error, kind="fallback")
            else:
                vectors[signal.key] = outcome.value
            summary.succeeded += 1

        return vectors, summary

    async def group(
        self,
        signals: Sequence[Signal],
        min_similarity: Optional[float] = None,
        max_groups: Optional[int] = None,
    ) -> Tuple[GroupingResult, BatchSummary]:
        vectors, summary = await self.embed_signals(signals)
        result = group_signals(
            signals,
            min_similarity=self._config.min_similarity_cosine if min_similarity is None else min_similarity,
            max_groups=self._config.max_group_size if max_groups is None else max_groups,
            similarity=EmbeddingSimilarity(vectors),
        )
        return result, summary
