"""Tests for group export with dedup through stored mappings."""

import pytest

from signalhub.common.schemas.signal import GroupStatus, Signal, SignalSource
from signalhub.correlate.export import ExportedIssue, ExportTarget, GroupExporter, build_export_payload, export_key
from signalhub.correlate.grouper import group_signals


class RecordingTarget(ExportTarget):
    def __init__(self, fail_on=None, known=None):
        self.created = []
        self.updated = []
        self.fail_on = fail_on
        self.known = known or {}

    async def create_issue(self, payload):
        if payload.source_id == self.fail_on:
            raise RuntimeError("target rejected payload")
        self.created.append(payload)
        number = len(self.created)
        return ExportedIssue(id=f"LIN-{number}", url=f"https://linear.app/acme/issue/LIN-{number}")

    async def update_issue(self, issue_id, payload):
        self.updated.append((issue_id, payload))

    async def find_issue(self, source_id):
        return self.known.get(source_id)


def make_group(text, prefix, extra_members=0):
    signals = [
        Signal(source=SignalSource.GITHUB, source_id=f"{prefix}1", title=text, body=text),
        Signal(source=SignalSource.DISCORD, source_id=f"{prefix}2", body=text),
    ]
    signals += [
        Signal(source=SignalSource.SLACK, source_id=f"{prefix}s{i}", body=text) for i in range(extra_members)
    ]
    return group_signals(signals).groups[0]


class TestPayload:
    def test_title_and_labels(self):
        group = make_group("Webhook retries never stop", "w")
        payload = build_export_payload(group)

        assert payload.source_id == "github:w1"
        assert payload.title == "[2 reports] Webhook retries never stop"
        assert payload.labels == ["signalhub"]
        assert f"signalhub-group: {group.id}" in payload.body

    def test_cross_cutting_label(self):
        group = make_group("Webhook retries never stop", "w").model_copy(update={"is_cross_cutting": True})
        assert "cross-cutting" in build_export_payload(group).labels


class TestExporter:
    @pytest.mark.asyncio
    async def test_reexport_updates_instead_of_duplicating(self, store):
        target = RecordingTarget()
        exporter = GroupExporter(target, store)
        group = make_group("Webhook retries never stop", "w")

        first, exported = await exporter.export_groups([group])
        assert first.created == 1
        assert exported[0].status == GroupStatus.EXPORTED
        assert exported[0].export_id == "LIN-1"

        # same group, fresh object without export fields
        second, _ = await exporter.export_groups([group])
        assert second.created == 0
        assert second.updated == 1
        assert target.updated[0][0] == "LIN-1"
        assert len(target.created) == 1

    @pytest.mark.asyncio
    async def test_new_member_updates_existing_issue(self, store):
        target = RecordingTarget()
        exporter = GroupExporter(target, store)
        group = make_group("Webhook retries never stop", "w")
        grown = make_group("Webhook retries never stop", "w", extra_members=1)
        assert grown.id != group.id
        assert export_key(grown) == export_key(group)

        await exporter.export_groups([group])
        result, exported = await exporter.export_groups([grown])

        assert result.created == 0
        assert result.updated == 1
        assert len(target.created) == 1
        assert target.updated[0][0] == "LIN-1"
        assert "[3 reports]" in target.updated[0][1].title
        assert exported[0].export_id == "LIN-1"

    @pytest.mark.asyncio
    async def test_target_lookup_used_without_store(self):
        group = make_group("Webhook retries never stop", "w")
        target = RecordingTarget(known={export_key(group): ExportedIssue(id="JIRA-9", url="")})

        result, exported = await GroupExporter(target).export_groups([group])

        assert result.updated == 1
        assert result.urls == []
        assert exported[0].export_id == "JIRA-9"

    @pytest.mark.asyncio
    async def test_failures_counted_and_others_exported(self, store):
        bad = make_group("Invoice totals wrong", "i")
        good = make_group("Webhook retries never stop", "w")
        target = RecordingTarget(fail_on=export_key(bad))

        result, exported = await GroupExporter(target, store).export_groups([bad, good])

        assert result.success is False
        assert result.created == 1
        assert result.skipped == 1
        assert result.errors[0]["source_id"] == bad.id
        assert exported[0].status == GroupStatus.PENDING
        assert exported[1].status == GroupStatus.EXPORTED
        assert store.get_export_mapping(export_key(bad)) is None
