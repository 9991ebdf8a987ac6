"""
SignalHub Schemas

Signals, groups, triage outcomes and historical fixes.
"""

from .signal import (
    Signal,
    SignalRef,
    SignalSource,
    Group,
    GroupMember,
    GroupStatus,
    GroupingResult,
    UngroupedSignal,
    generate_group_id,
)
from .records import (
    EmbeddingEntry,
    EmbeddingKind,
    Feature,
    IssueContext,
    LinkedPR,
    TriageResult,
    TriageFactor,
    TriageOutcome,
    IssueType,
    ReviewOutcome,
    HistoricalFix,
    SimilarFix,
    BatchSummary,
    ItemError,
    create_fix_hash,
)
from .templates import render_export_title, render_export_body

__all__ = [
    "Signal",
    "SignalRef",
    "SignalSource",
    "Group",
    "GroupMember",
    "GroupStatus",
    "GroupingResult",
    "UngroupedSignal",
    "generate_group_id",
    "EmbeddingEntry",
    "EmbeddingKind",
    "Feature",
    "IssueContext",
    "LinkedPR",
    "TriageResult",
    "TriageFactor",
    "TriageOutcome",
    "IssueType",
    "ReviewOutcome",
    "HistoricalFix",
    "SimilarFix",
    "BatchSummary",
    "ItemError",
    "create_fix_hash",
    "render_export_title",
    "render_export_body",
]
