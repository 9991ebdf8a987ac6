"""
SignalHub Correlation

Classifies signals against candidate pools, groups related signals and
exports groups to project-management targets.

Pipeline:
1. Classifier: rank issues/features for a signal (semantic or keyword)
2. Grouper: greedy seed clustering and duplicate detection
3. Export: create or update one external issue per group
"""

from .classifier import Candidate, ClassificationMatch, Classifier
from .export import ExportPayload, ExportTarget, GroupExporter
from .grouper import SemanticGrouper, find_duplicates, group_signals
from .pipeline import CorrelationPipeline, PipelineReport

__all__ = [
    "Candidate",
    "ClassificationMatch",
    "Classifier",
    "ExportPayload",
    "ExportTarget",
    "GroupExporter",
    "SemanticGrouper",
    "find_duplicates",
    "group_signals",
    "CorrelationPipeline",
    "PipelineReport",
]
