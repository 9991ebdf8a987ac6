"""Tests for the classifier: ranking, scales and per-item fallback."""

import pytest

from signalhub.common.config import ClassificationConfig
from signalhub.common.errors import QuotaExceededError
from signalhub.common.schemas.records import Feature
from signalhub.common.schemas.signal import Signal, SignalSource
from signalhub.common.similarity import Scale
from signalhub.correlate.classifier import Candidate, Classifier, rank_matches, ClassificationMatch

from conftest import FakeEmbeddingService


def thread(source_id, body, title=None):
    return Signal(source=SignalSource.DISCORD, source_id=source_id, body=body, title=title)


CANDIDATES = [
    Candidate(id="101", text="login page crashes after oauth redirect"),
    Candidate(id="102", text="dark mode colors wrong in settings"),
    Candidate(id="103", text="login page crashes after oauth redirect"),
]


@pytest.fixture
def keyword_classifier():
    return Classifier(ClassificationConfig(use_semantic_classification=False))


@pytest.fixture
def semantic_config():
    return ClassificationConfig(use_semantic_classification=True)


class TestRanking:
    def test_ties_keep_insertion_order(self):
        matches = [
            ClassificationMatch("a", 0.7, Scale.COSINE, "semantic"),
            ClassificationMatch("b", 0.9, Scale.COSINE, "semantic"),
            ClassificationMatch("c", 0.7, Scale.COSINE, "semantic"),
        ]
        ranked = rank_matches(matches, 0.5, top_k=5)
        assert [m.candidate_id for m in ranked] == ["b", "a", "c"]

    def test_truncates_then_filters(self):
        matches = [ClassificationMatch(str(i), 0.9 - i * 0.1, Scale.COSINE, "semantic") for i in range(8)]
        ranked = rank_matches(matches, 0.65, top_k=5)
        assert [m.candidate_id for m in ranked] == ["0", "1", "2"]


class TestKeywordMode:
    @pytest.mark.asyncio
    async def test_percent_scale_matches(self, keyword_classifier):
        signal = thread("t1", "login page crashes after oauth redirect")
        matches = await keyword_classifier.classify(signal, CANDIDATES)

        assert [m.candidate_id for m in matches] == ["101", "103"]
        assert all(m.scale == Scale.PERCENT and m.score == 100.0 for m in matches)
        assert "oauth" in matches[0].matched_terms

    @pytest.mark.asyncio
    async def test_below_default_threshold_dropped(self, keyword_classifier):
        signal = thread("t1", "login page is slow")
        assert await keyword_classifier.classify(signal, CANDIDATES) == []

    @pytest.mark.asyncio
    async def test_cosine_threshold_rejected_in_keyword_mode(self, keyword_classifier):
        with pytest.raises(ValueError):
            await keyword_classifier.classify(thread("t1", "login page crashes"), CANDIDATES, min_similarity=0.5)

    @pytest.mark.asyncio
    async def test_batch_with_cosine_threshold_returns_summary(self, keyword_classifier, caplog):
        signals = [
            thread("t1", "login page crashes after oauth redirect"),
            thread("t2", "dark mode colors wrong in settings"),
        ]

        results, summary = await keyword_classifier.classify_many(signals, CANDIDATES, min_similarity=0.5)

        assert summary.processed == 2
        assert summary.succeeded == 2
        assert summary.errors == []
        # configured percent default (60) applies instead
        assert [m.candidate_id for m in results["discord:t1"]] == ["101", "103"]
        assert [m.candidate_id for m in results["discord:t2"]] == ["102"]
        assert "does not fit the percent scale" in caplog.text

    @pytest.mark.asyncio
    async def test_deterministic(self, keyword_classifier):
        signal = thread("t1", "login crashes after redirect")
        first = await keyword_classifier.classify(signal, CANDIDATES, min_similarity=0)
        second = await keyword_classifier.classify(signal, CANDIDATES, min_similarity=0)
        assert first == second


class TestSemanticMode:
    @pytest.mark.asyncio
    async def test_cosine_scale_and_cache_reuse(self, semantic_config, cache, fake_embedder):
        classifier = Classifier(semantic_config, cache, fake_embedder)
        signal = thread("t1", "login page crashes after oauth redirect")

        matches = await classifier.classify(signal, CANDIDATES)
        assert [m.candidate_id for m in matches][:2] == ["101", "103"]
        assert matches[0].scale == Scale.COSINE
        assert matches[0].score == pytest.approx(1.0)

        calls_before = len(fake_embedder.calls)
        await classifier.classify(signal, CANDIDATES)
        assert len(fake_embedder.calls) == calls_before

    @pytest.mark.asyncio
    async def test_quota_error_falls_back_to_keyword(self, semantic_config, cache):
        failing = FakeEmbeddingService(error=QuotaExceededError("quota"))
        classifier = Classifier(semantic_config, cache, failing)
        signal = thread("t1", "login page crashes after oauth redirect")

        matches = await classifier.classify(signal, CANDIDATES)
        assert matches and all(m.method == "keyword" and m.scale == Scale.PERCENT for m in matches)

    @pytest.mark.asyncio
    async def test_batch_reports_fallback_count(self, semantic_config, cache):
        failing = FakeEmbeddingService(error=QuotaExceededError("quota"))
        classifier = Classifier(semantic_config, cache, failing)
        signals = [
            thread("t1", "login page crashes after oauth redirect"),
            thread("t2", "dark mode colors wrong in settings"),
            thread("t3", "   "),
        ]

        results, summary = await classifier.classify_many(signals, CANDIDATES)

        assert summary.processed == 3
        assert summary.succeeded == 2
        assert summary.fallbacks == 2
        assert summary.skipped == 1
        assert summary.errors[0].kind == "validation"
        assert set(results) == {"discord:t1", "discord:t2"}

    @pytest.mark.asyncio
    async def test_unavailable_service_uses_keyword(self, semantic_config, cache):
        offline = FakeEmbeddingService()
        offline.is_available = False
        classifier = Classifier(semantic_config, cache, offline)

        assert classifier.semantic_enabled is False
        matches = await classifier.classify(thread("t1", "login page crashes after oauth redirect"), CANDIDATES)
        assert matches[0].scale == Scale.PERCENT

    @pytest.mark.asyncio
    async def test_match_features(self, semantic_config, cache, fake_embedder):
        classifier = Classifier(semantic_config, cache, fake_embedder)
        features = [
            Feature(id="f-auth", name="oauth login", description="login page oauth redirect crashes"),
            Feature(id="f-theme", name="themes", description="dark mode colors"),
        ]
        matches = await classifier.match_features(thread("t1", "login page crashes after oauth redirect"), features)
        assert matches[0].candidate_id == "f-auth"

    @pytest.mark.asyncio
    async def test_match_threads_to_issues(self, keyword_classifier):
        issues = [
            Signal(source=SignalSource.GITHUB, source_id="7", title="Login crash", body="oauth redirect crashes login page"),
            Signal(source=SignalSource.GITHUB, source_id="8", title="Dark mode", body="colors wrong"),
        ]
        threads = [thread("t1", "oauth redirect crashes login page", title="Login crash")]

        results, summary = await keyword_classifier.match_threads_to_issues(threads, issues)
        assert [m.candidate_id for m in results["discord:t1"]] == ["7"]
        assert summary.fallbacks == 0
