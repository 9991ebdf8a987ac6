"""
Similar-Fix Retrieval

Stores historical (issue, merged fix) pairs and retrieves the nearest ones
for a new issue by cosine similarity of issue-text embeddings.

Only fixes whose issue was labelled as a bug are searched. Diffs are
truncated in results to keep responses small.
"""

import logging
from typing import Dict, List, Optional, Tuple

from ..common.config import LearningConfig
from ..common.embedding_cache import EmbeddingCache, hash_content
from ..common.embedding_service import EmbeddingService, with_retry
from ..common.errors import ContentValidationError, QuotaExceededError
from ..common.schemas.records import (
    EmbeddingKind,
    HistoricalFix,
    IssueContext,
    IssueType,
    SimilarFix,
    create_fix_hash,
)
from ..common.similarity import cosine_similarity, keyword_similarity
from ..common.store import DurableStore
from ..correlate.fallback import FALLBACK_ERRORS, run_with_fallback
from .patterns import (
    detect_fix_patterns,
    detect_issue_type,
    detect_subsystem,
    summarize_fix_patterns,
)

logger = logging.getLogger("signalhub.learning.retrieval")

TRUNCATION_MARKER = "\n\n... (truncated)"
FIX_KIND = EmbeddingKind.FIX.value


def truncate_diff(diff: str, max_chars: int = 3000) -> str:
    """Cut a diff to ``max_chars`` and append an explicit marker when cut"""
    if len(diff) <= max_chars:
        return diff
    return diff[:max_chars] + TRUNCATION_MARKER


class SimilarFixRetriever:
    """Learns historical fixes and finds the ones closest to an issue."""

    def __init__(
        self,
        store: DurableStore,
        cache: EmbeddingCache,
        embedding_service: Optional[EmbeddingService] = None,
        config: Optional[LearningConfig] = None,
        retry_base_delay: float = 1.0,
    ):
        """
        Initialize retriever.

        Args:
            store: Durable store holding historical fix rows
            cache: Embedding cache; fix vectors live under kind "fixes"
            embedding_service: Provider for issue-text embeddings
            config: Result limits, diff cap and subsystem table
            retry_base_delay: First backoff delay for transient provider errors
        """
        self._store = store
        self._cache = cache
        self._embedding = embedding_service
        self._config = config or LearningConfig()
        self._retry_base_delay = retry_base_delay

    @property
    def embedding_available(self) -> bool:
        return self._embedding is not None and self._embedding.is_available

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def annotate(self, fix: HistoricalFix) -> HistoricalFix:
        """Fill hash, issue type, subsystem and patterns where not already set"""
        update = {}
        if not fix.content_hash:
            update["content_hash"] = create_fix_hash(fix.repo, fix.issue_number, fix.fix_number)
        if fix.issue_type == IssueType.OTHER:
            update["issue_type"] = detect_issue_type(fix.issue_labels)
        if fix.subsystem is None:
            update["subsystem"] = detect_subsystem(
                fix.files_changed, self._config.subsystem_patterns or None
            )
        if not fix.fix_patterns:
            update["fix_patterns"] = detect_fix_patterns(fix.diff, fix.files_changed)
        return fix.model_copy(update=update) if update else fix

    async def learn(self, fix: HistoricalFix) -> bool:
        """
        Store a historical fix and embed its issue text.

        An embedding failure leaves the row stored without a vector; it is
        picked up by the next re-embedding run.

        Returns:
            True if the fix was new, False if the triple was already known

        Raises:
            QuotaExceededError: after the row is stored, so batch callers stop
                instead of spending more calls on the same credential
        """
        fix = self.annotate(fix)
        if self._store.has_historical_fix(fix.content_hash):
            logger.debug("Fix %s#%d -> #%d already learned", fix.repo, fix.issue_number, fix.fix_number)
            return False

        created = self._store.save_historical_fix(fix)
        if not created:
            return False

        if self.embedding_available and fix.issue_text():
            try:
                await with_retry(
                    lambda: self._cache.get_or_compute(
                        FIX_KIND, fix.content_hash, fix.issue_text(), self._embedding
                    ),
                    base_delay=self._retry_base_delay,
                )
            except QuotaExceededError as e:
                logger.warning("Stored fix %s without embedding, quota exhausted: %s", fix.content_hash, e)
                raise
            except FALLBACK_ERRORS as e:
                logger.warning("Learned fix %s without embedding: %s", fix.content_hash, e)

        logger.info(
            "Learned fix %s#%d -> #%d (%s, subsystem=%s)",
            fix.repo, fix.issue_number, fix.fix_number, fix.issue_type.value, fix.subsystem,
        )
        return True

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def _fix_vectors(self, fixes: List[HistoricalFix]) -> Dict[str, List[float]]:
        vectors: Dict[str, List[float]] = {}
        missing: List[Tuple[str, str, str]] = []
        for fix in fixes:
            text = fix.issue_text()
            content_hash = hash_content(text)
            cached = self._cache.get(FIX_KIND, fix.content_hash, content_hash)
            if cached is not None:
                vectors[fix.content_hash] = cached
            elif text:
                missing.append((fix.content_hash, content_hash, text))

        if missing:
            texts = [text for _, _, text in missing]
            embedded = await with_retry(
                lambda: self._embedding.aembed(texts), base_delay=self._retry_base_delay
            )
            self._cache.set_many(
                FIX_KIND,
                [(fix_id, content_hash, vec) for (fix_id, content_hash, _), vec in zip(missing, embedded)],
            )
            for (fix_id, _, _), vec in zip(missing, embedded):
                vectors[fix_id] = vec
        return vectors

    async def _semantic_scores(self, issue: IssueContext, fixes: List[HistoricalFix]) -> List[float]:
        query_text = issue.retrieval_text()
        if not query_text:
            raise ContentValidationError(f"Issue #{issue.number} has no text to embed")
        query = await with_retry(
            lambda: self._embedding.aembed_single(query_text), base_delay=self._retry_base_delay
        )
        vectors = await self._fix_vectors(fixes)

        scores = []
        for fix in fixes:
            vector = vectors.get(fix.content_hash)
            if vector is None:
                scores.append(keyword_similarity(query_text, fix.issue_text()))
            else:
                scores.append(cosine_similarity(query, vector))
        return scores

    async def _keyword_scores(self, issue: IssueContext, fixes: List[HistoricalFix]) -> List[float]:
        query_text = issue.retrieval_text()
        return [keyword_similarity(query_text, fix.issue_text()) for fix in fixes]

    async def find_similar(self, issue: IssueContext, max_results: Optional[int] = None) -> List[SimilarFix]:
        """
        Rank learned bug fixes by similarity to ``issue``.

        Falls back to keyword overlap (same 0-1 range) when the embedding
        provider is unavailable or fails.

        Args:
            issue: Issue to find precedents for
            max_results: Result cap; None uses config (5)

        Returns:
            SimilarFix list, most similar first, diffs truncated
        """
        limit = max_results if max_results is not None else self._config.max_similar_fixes
        fixes = self._store.list_historical_fixes(IssueType.BUG, limit=self._config.candidate_pool)
        if not fixes or limit <= 0:
            return []

        async def keyword():
            return await self._keyword_scores(issue, fixes)

        if self.embedding_available:
            async def semantic():
                return await self._semantic_scores(issue, fixes)

            outcome = await run_with_fallback(semantic, keyword, label=f"issue #{issue.number}")
            scores = outcome.value
        else:
            scores = await keyword()

        ranked = sorted(zip(fixes, scores), key=lambda pair: -pair[1])[:limit]
        return [
            SimilarFix(
                issue_number=fix.issue_number,
                issue_title=fix.issue_title,
                fix_number=fix.fix_number,
                fix_title=fix.fix_title,
                repo=fix.repo,
                diff=truncate_diff(fix.diff, self._config.max_diff_chars),
                files_changed=fix.files_changed,
                fix_patterns=fix.fix_patterns,
                subsystem=fix.subsystem,
                similarity=score,
            )
            for fix, score in ranked
        ]

    def recommend_patterns(self, similar: List[SimilarFix], top_n: int = 3) -> List[str]:
        """Patterns most of the retrieved fixes share"""
        return summarize_fix_patterns(similar, top_n=top_n)
