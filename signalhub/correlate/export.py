"""
Group Export

Hands groups to a project-management target (Linear, Jira, ...) and
records the returned identifier so a later export updates the same
external issue instead of creating a duplicate.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from ..common.schemas.signal import Group, GroupStatus
from ..common.schemas.templates import render_export_body, render_export_title
from ..common.store import DurableStore

logger = logging.getLogger("signalhub.correlate.export")


class ExportPayload(BaseModel):
    """Well-formed issue payload for an export target"""
    source_id: str
    title: str
    body: str
    labels: List[str] = Field(default_factory=list)


@dataclass
class ExportedIssue:
    id: str
    url: str = ""
    identifier: Optional[str] = None


class ExportTarget(ABC):
    """
    Abstract project-management target.

    Implementations wrap a concrete API client; they are outside the core.
    """

    @abstractmethod
    async def create_issue(self, payload: ExportPayload) -> ExportedIssue:
        pass

    @abstractmethod
    async def update_issue(self, issue_id: str, payload: ExportPayload) -> None:
        pass

    async def find_issue(self, source_id: str) -> Optional[ExportedIssue]:
        """Look up an issue by source ID; most targets cannot, so default None"""
        return None


@dataclass
class ExportResult:
    success: bool = True
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)


def export_key(group: Group) -> str:
    """
    Identity of a group at the export target: its canonical signal key.

    Stays the same when signals join the group on a later pass, unlike
    ``group.id`` which hashes the member list.
    """
    return group.canonical.key


def build_export_payload(group: Group) -> ExportPayload:
    labels = ["signalhub"]
    if group.is_cross_cutting:
        labels.append("cross-cutting")
    return ExportPayload(
        source_id=export_key(group),
        title=render_export_title(group),
        body=render_export_body(group),
        labels=labels,
    )


class GroupExporter:
    """Exports groups with dedup via stored mappings."""

    def __init__(self, target: ExportTarget, store: Optional[DurableStore] = None):
        self._target = target
        self._store = store

    async def _existing(self, group: Group) -> Optional[ExportedIssue]:
        if group.export_id:
            return ExportedIssue(id=group.export_id, url=group.export_url or "")
        if self._store is not None:
            mapping = self._store.get_export_mapping(export_key(group))
            if mapping:
                return ExportedIssue(id=mapping["external_id"], url=mapping["url"])
        return await self._target.find_issue(export_key(group))

    async def export_groups(self, groups: Sequence[Group]) -> Tuple[ExportResult, List[Group]]:
        """
        Create or update one external issue per group.

        Returns:
            (result counts, groups with export_id/url and status updated)
        """
        result = ExportResult()
        exported: List[Group] = []

        for group in groups:
            payload = build_export_payload(group)
            try:
                existing = await self._existing(group)
                if existing:
                    await self._target.update_issue(existing.id, payload)
                    result.updated += 1
                    issue = existing
                else:
                    issue = await self._target.create_issue(payload)
                    result.created += 1

                if issue.url:
                    result.urls.append(issue.url)
                if self._store is not None:
                    self._store.save_export_mapping(export_key(group), issue.id, issue.url)

                exported.append(group.model_copy(update={
                    "export_id": issue.id,
                    "export_url": issue.url or None,
                    "status": GroupStatus.EXPORTED,
                }))
            except Exception as e:
                logger.error("Failed to export group %s: %s", group.id, e)
                result.errors.append({"source_id": group.id, "error": str(e)})
                result.skipped += 1
                exported.append(group)

        result.success = not result.errors
        logger.info(
            "Export finished: %d created, %d updated, %d skipped",
            result.created, result.updated, result.skipped,
        )
        return result, exported
