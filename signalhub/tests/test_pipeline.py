"""Tests for the correlation pipeline and the paced re-embedding job."""

import asyncio

import pytest

from signalhub.common.config import ClassificationConfig
from signalhub.common.embedding_cache import hash_content
from signalhub.common.errors import QuotaExceededError
from signalhub.common.schemas.records import Feature
from signalhub.common.schemas.signal import Signal, SignalSource
from signalhub.correlate.pipeline import CorrelationPipeline, ReembedItem

from conftest import FakeEmbeddingService


class SleepRecorder:
    def __init__(self, on_sleep=None):
        self.calls = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)


def signals():
    return [
        Signal(source=SignalSource.GITHUB, source_id="1", title="OAuth callback fails", body="invalid state on oauth callback"),
        Signal(source=SignalSource.DISCORD, source_id="t1", body="OAuth callback fails invalid state on oauth callback"),
        Signal(source=SignalSource.SLACK, source_id="s1", body="dark mode colors look wrong"),
        Signal(source=SignalSource.DISCORD, source_id="t2", body="   "),
    ]


FEATURES = [
    Feature(id="f-auth", name="OAuth login", description="oauth callback state handling"),
    Feature(id="f-theme", name="Themes", description="dark mode colors"),
]


def items(count):
    return [ReembedItem("discord", f"t{i}", f"message number {i}") for i in range(count)]


class TestRun:
    @pytest.mark.asyncio
    async def test_keyword_run_groups_and_skips_empty(self, cache):
        pipeline = CorrelationPipeline(ClassificationConfig(), cache)
        report = await pipeline.run(signals())

        assert report.summary.processed == 4
        assert report.summary.skipped == 1
        assert report.summary.succeeded == 3
        assert report.summary.errors[0].item_id == "discord:t2"
        assert [sorted(g.member_keys) for g in report.grouping.groups] == [["discord:t1", "github:1"]]
        assert report.grouping.groups[0].canonical.key == "github:1"
        assert [u.signal.key for u in report.grouping.ungrouped] == ["slack:s1"]

    @pytest.mark.asyncio
    async def test_semantic_run(self, cache, fake_embedder):
        config = ClassificationConfig(use_semantic_classification=True)
        pipeline = CorrelationPipeline(config, cache, fake_embedder)

        report = await pipeline.run(signals())

        assert [sorted(g.member_keys) for g in report.grouping.groups] == [["discord:t1", "github:1"]]
        assert report.summary.fallbacks == 0
        assert fake_embedder.calls

    @pytest.mark.asyncio
    async def test_feature_annotation(self, cache):
        pipeline = CorrelationPipeline(ClassificationConfig(min_similarity_percent=30.0), cache)
        report = await pipeline.run(signals(), features=FEATURES)

        group = report.grouping.groups[0]
        assert group.affected_features == ["OAuth login"]
        assert group.is_cross_cutting is False
        assert [m.candidate_id for m in report.feature_matches["slack:s1"]] == ["f-theme"]

    @pytest.mark.asyncio
    async def test_empty_input(self, cache):
        report = await CorrelationPipeline(ClassificationConfig(), cache).run([])
        assert report.summary.processed == 0
        assert report.grouping.groups == []


class TestReembed:
    @pytest.mark.asyncio
    async def test_paced_batches_and_skip_unchanged(self, cache, fake_embedder):
        sleep = SleepRecorder()
        config = ClassificationConfig(batch_size=2, item_delay_ms=100, batch_delay_ms=1000)
        pipeline = CorrelationPipeline(config, cache, fake_embedder, sleep=sleep)

        summary = await pipeline.reembed(items(3))

        assert summary.processed == 3
        assert summary.succeeded == 3
        assert sleep.calls == [0.1, 0.1, 1.0, 0.1]

        again = await pipeline.reembed(items(3))
        assert again.succeeded == 0
        assert again.skipped == 3

        forced = await pipeline.reembed(items(3), force=True)
        assert forced.succeeded == 3

    @pytest.mark.asyncio
    async def test_stop_event_checked_between_batches(self, cache, fake_embedder):
        stop = asyncio.Event()
        sleep = SleepRecorder(on_sleep=lambda seconds: stop.set() if seconds == 1.0 else None)
        pipeline = CorrelationPipeline(ClassificationConfig(batch_size=2), cache, fake_embedder, sleep=sleep)

        summary = await pipeline.reembed(items(5), stop_event=stop)

        assert summary.cancelled is True
        assert summary.processed == 2
        assert cache.get("discord", "t1", hash_content("message number 1")) is not None
        assert cache.get("discord", "t2", hash_content("message number 2")) is None

    @pytest.mark.asyncio
    async def test_quota_stops_run(self, cache):
        failing = FakeEmbeddingService(error=QuotaExceededError("quota"))
        pipeline = CorrelationPipeline(ClassificationConfig(), cache, failing, sleep=SleepRecorder())

        summary = await pipeline.reembed(items(4))

        assert summary.cancelled is True
        assert summary.processed == 1
        assert summary.errors[0].kind == "quota"

    @pytest.mark.asyncio
    async def test_unavailable_service_skips_everything(self, cache):
        offline = FakeEmbeddingService()
        offline.is_available = False
        pipeline = CorrelationPipeline(ClassificationConfig(), cache, offline, sleep=SleepRecorder())

        summary = await pipeline.reembed(items(2))
        assert summary.skipped == 2
        assert summary.succeeded == 0
