"""
Classifier

Matches a signal (chat thread, issue) against a candidate pool (issues,
features) and returns ranked matches above threshold.

Modes:
- semantic: cosine similarity over cached embeddings (cosine scale,
  default threshold 0.5)
- keyword: Jaccard word overlap (percent scale, default threshold 60)

Semantic mode is used when enabled and the embedding service is available.
A provider error during one item degrades that item to keyword mode and is
counted in the batch summary.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..common.config import ClassificationConfig
from ..common.embedding_cache import EmbeddingCache, hash_content
from ..common.embedding_service import EmbeddingService, with_retry
from ..common.errors import ContentValidationError
from ..common.schemas.records import BatchSummary, EmbeddingKind, Feature
from ..common.schemas.signal import Signal, SignalSource
from ..common.similarity import (
    Scale,
    batch_cosine_similarity,
    keyword_match_percent,
    keyword_similarity,
    matched_terms,
    passes_threshold,
    threshold_fits_scale,
)
from .fallback import FALLBACK_ERRORS, run_with_fallback

logger = logging.getLogger("signalhub.correlate.classifier")

SIGNAL_KINDS = {
    SignalSource.GITHUB: EmbeddingKind.ISSUE.value,
    SignalSource.DISCORD: EmbeddingKind.DISCORD.value,
    SignalSource.SLACK: "slack",
}


def signal_kind(signal: Signal) -> str:
    """Embedding-cache kind for a signal's source"""
    return SIGNAL_KINDS[signal.source]


@dataclass
class Candidate:
    """Something a signal can be matched against"""
    id: str
    text: str
    kind: str = EmbeddingKind.ISSUE.value
    label: Optional[str] = None


@dataclass
class ClassificationMatch:
    """A ranked match; ``scale`` says how to read ``score``"""
    candidate_id: str
    score: float
    scale: Scale
    method: str  # "semantic" or "keyword"
    matched_terms: List[str] = field(default_factory=list)


def signals_to_candidates(signals: Sequence[Signal]) -> List[Candidate]:
    return [
        Candidate(id=s.source_id, text=s.text, kind=signal_kind(s), label=s.title)
        for s in signals
    ]


def features_to_candidates(features: Sequence[Feature]) -> List[Candidate]:
    return [
        Candidate(id=f.id, text=f.embedding_text(), kind=EmbeddingKind.FEATURE.value, label=f.name)
        for f in features
    ]


def rank_matches(
    matches: List[ClassificationMatch],
    min_similarity: float,
    top_k: int,
) -> List[ClassificationMatch]:
    """Stable sort by score (ties keep insertion order), keep top-K, drop below threshold"""
    ranked = sorted(matches, key=lambda m: -m.score)[:top_k]
    return [m for m in ranked if passes_threshold(m.score, min_similarity, m.scale)]


class Classifier:
    """
    Ranks candidates for a signal.

    Determinism: identical signal text, candidates and cache state give
    identical output.
    """

    def __init__(
        self,
        config: ClassificationConfig,
        cache: Optional[EmbeddingCache] = None,
        embedding_service: Optional[EmbeddingService] = None,
        retry_base_delay: float = 1.0,
    ):
        """
        Initialize classifier.

        Args:
            config: Thresholds, top-K and the semantic toggle
            cache: Embedding cache shared with the rest of the pipeline
            embedding_service: Provider used on cache misses
            retry_base_delay: First backoff delay for transient provider errors
        """
        self._config = config
        self._cache = cache
        self._embedding = embedding_service
        self._retry_base_delay = retry_base_delay

    @property
    def semantic_enabled(self) -> bool:
        return (
            self._config.use_semantic_classification
            and self._cache is not None
            and self._embedding is not None
            and self._embedding.is_available
        )

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _embed_missing(self, kind: str, items: List[Tuple[str, str]]) -> Dict[str, List[float]]:
        """Cached vectors for (id, text) pairs, embedding misses in one call"""
        vectors: Dict[str, List[float]] = {}
        missing: List[Tuple[str, str, str]] = []
        for item_id, text in items:
            content_hash = hash_content(text)
            cached = self._cache.get(kind, item_id, content_hash)
            if cached is not None:
                vectors[item_id] = cached
            elif text.strip():
                missing.append((item_id, content_hash, text))

        if missing:
            texts = [text for _, _, text in missing]
            embedded = await with_retry(
                lambda: self._embedding.aembed(texts), base_delay=self._retry_base_delay
            )
            self._cache.set_many(
                kind,
                [(item_id, content_hash, vec) for (item_id, content_hash, _), vec in zip(missing, embedded)],
            )
            for (item_id, _, _), vec in zip(missing, embedded):
                vectors[item_id] = vec
        return vectors

    async def _semantic(
        self, signal: Signal, candidates: Sequence[Candidate]
    ) -> List[ClassificationMatch]:
        signal_vec = (await self._embed_missing(signal_kind(signal), [(signal.source_id, signal.text)]))
        query = signal_vec.get(signal.source_id)
        if query is None:
            raise ContentValidationError(f"No embeddable text for {signal.key}")

        by_kind: Dict[str, List[Candidate]] = {}
        for candidate in candidates:
            by_kind.setdefault(candidate.kind, []).append(candidate)

        vectors: Dict[Tuple[str, str], List[float]] = {}
        for kind, group in by_kind.items():
            for cid, vec in (await self._embed_missing(kind, [(c.id, c.text) for c in group])).items():
                vectors[(kind, cid)] = vec

        embedded = [c for c in candidates if (c.kind, c.id) in vectors]
        scores = dict(zip(
            [(c.kind, c.id) for c in embedded],
            batch_cosine_similarity(query, [vectors[(c.kind, c.id)] for c in embedded]),
        ))

        matches = []
        for candidate in candidates:
            key = (candidate.kind, candidate.id)
            if key in scores:
                matches.append(ClassificationMatch(
                    candidate_id=candidate.id,
                    score=scores[key],
                    scale=Scale.COSINE,
                    method="semantic",
                ))
            else:
                # Candidate without text to embed: word overlap on the same 0-1 range
                matches.append(ClassificationMatch(
                    candidate_id=candidate.id,
                    score=keyword_similarity(signal.text, candidate.text),
                    scale=Scale.COSINE,
                    method="keyword",
                    matched_terms=matched_terms(signal.text, candidate.text),
                ))
        return matches

    def _keyword(self, signal: Signal, candidates: Sequence[Candidate]) -> List[ClassificationMatch]:
        return [
            ClassificationMatch(
                candidate_id=candidate.id,
                score=keyword_match_percent(signal.text, candidate.text),
                scale=Scale.PERCENT,
                method="keyword",
                matched_terms=matched_terms(signal.text, candidate.text),
            )
            for candidate in candidates
        ]

    def _threshold_for(self, scale: Scale, min_similarity: Optional[float]) -> float:
        if min_similarity is not None:
            return min_similarity
        if scale == Scale.COSINE:
            return self._config.min_similarity_cosine
        return self._config.min_similarity_percent

    async def _classify_item(
        self,
        signal: Signal,
        candidates: Sequence[Candidate],
        min_similarity: Optional[float],
        top_k: Optional[int],
        semantic: Optional[bool],
        lenient: bool = False,
    ) -> Tuple[List[ClassificationMatch], bool]:
        k = top_k if top_k is not None else self._config.top_k
        use_semantic = self.semantic_enabled if semantic is None else (semantic and self.semantic_enabled)

        async def keyword():
            return self._keyword(signal, candidates)

        if use_semantic:
            async def semantic_matches():
                return await self._semantic(signal, candidates)

            outcome = await run_with_fallback(semantic_matches, keyword, label=signal.key)
            matches, used_fallback = outcome.value, outcome.used_fallback
        else:
            matches, used_fallback = await keyword(), False

        if not matches:
            return [], used_fallback

        scale = Scale.PERCENT if used_fallback or not use_semantic else Scale.COSINE
        # An explicit threshold only applies to the scale it was given for
        explicit = min_similarity if not used_fallback else None
        if lenient and explicit is not None and not threshold_fits_scale(explicit, scale):
            logger.warning(
                "Threshold %s does not fit the %s scale for %s, using the configured default",
                explicit, scale.value, signal.key,
            )
            explicit = None
        threshold = self._threshold_for(scale, explicit)
        return rank_matches(matches, threshold, k), used_fallback

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def classify(
        self,
        signal: Signal,
        candidates: Sequence[Candidate],
        min_similarity: Optional[float] = None,
        top_k: Optional[int] = None,
        semantic: Optional[bool] = None,
    ) -> List[ClassificationMatch]:
        """
        Rank candidates for one signal.

        Args:
            signal: Signal to classify
            candidates: Candidate pool, in insertion order
            min_similarity: Threshold on the scale of the mode used
                (cosine for semantic, percent for keyword); None uses config
            top_k: Maximum matches; None uses config (5)
            semantic: Force a mode; None follows config

        Returns:
            Matches sorted by score descending
        """
        matches, _ = await self._classify_item(signal, candidates, min_similarity, top_k, semantic)
        return matches

    async def classify_many(
        self,
        signals: Sequence[Signal],
        candidates: Sequence[Candidate],
        min_similarity: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> Tuple[Dict[str, List[ClassificationMatch]], BatchSummary]:
        """
        Classify a batch; one failing item never aborts the others.

        The mode per item depends on config and provider health, so an
        explicit ``min_similarity`` off that mode's scale gives way to the
        configured default instead of raising.

        Returns:
            (matches keyed by signal key, summary with fallback count)
        """
        summary = BatchSummary()
        results: Dict[str, List[ClassificationMatch]] = {}

        for signal in signals:
            summary.processed += 1
            if not signal.text:
                summary.skipped += 1
                summary.record_error(signal.key, ContentValidationError("empty signal text"), kind="validation")
                continue
            try:
                matches, used_fallback = await self._classify_item(
                    signal, candidates, min_similarity, top_k, None, lenient=True
                )
            except FALLBACK_ERRORS as e:
                logger.error("Failed to classify %s: %s", signal.key, e)
                summary.skipped += 1
                summary.record_error(signal.key, e)
                continue

            if used_fallback:
                summary.fallbacks += 1
            results[signal.key] = matches
            summary.succeeded += 1

        if summary.fallbacks:
            logger.warning("%d of %d items fell back to keyword matching", summary.fallbacks, summary.processed)
        return results, summary

    async def match_threads_to_issues(
        self,
        threads: Sequence[Signal],
        issues: Sequence[Signal],
        min_similarity: Optional[float] = None,
    ) -> Tuple[Dict[str, List[ClassificationMatch]], BatchSummary]:
        """Thread-to-issue classification; candidates are the issue signals"""
        return await self.classify_many(threads, signals_to_candidates(issues), min_similarity)

    async def match_features(
        self,
        signal: Signal,
        features: Sequence[Feature],
        min_similarity: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> List[ClassificationMatch]:
        """Signal-to-feature matching against the product taxonomy"""
        return await self.classify(signal, features_to_candidates(features), min_similarity, top_k)
