"""
SignalHub Learning

Issue triage and retrieval of similar historical fixes.
"""

from .investigate import Investigation, investigate
from .patterns import (
    detect_fix_patterns,
    detect_issue_type,
    detect_subsystem,
    determine_review_outcome,
    extract_issue_refs,
    summarize_fix_patterns,
)
from .retrieval import SimilarFixRetriever, truncate_diff
from .seeding import SeedResult, seed_learnings
from .triage import TRIAGE_FACTORS, TriageEngine

__all__ = [
    "Investigation",
    "investigate",
    "detect_fix_patterns",
    "detect_issue_type",
    "detect_subsystem",
    "determine_review_outcome",
    "extract_issue_refs",
    "summarize_fix_patterns",
    "SimilarFixRetriever",
    "truncate_diff",
    "SeedResult",
    "seed_learnings",
    "TRIAGE_FACTORS",
    "TriageEngine",
]
