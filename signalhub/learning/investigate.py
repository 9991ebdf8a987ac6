"""
Issue Investigation

Combines triage and similar-fix retrieval into a recommendation on
whether an automated fix attempt makes sense for an issue.
"""

import logging
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from ..common.schemas.records import IssueContext, SimilarFix, TriageOutcome, TriageResult
from .retrieval import SimilarFixRetriever
from .triage import TriageEngine

logger = logging.getLogger("signalhub.learning.investigate")

MIN_FIX_CONFIDENCE = 0.50


class Investigation(BaseModel):
    issue: IssueContext
    triage: TriageOutcome
    similar_fixes: List[SimilarFix] = Field(default_factory=list)
    recommended_patterns: List[str] = Field(default_factory=list)
    recommendation: str
    should_attempt_fix: bool = False


def recommend(issue: IssueContext, triage: TriageOutcome, similar: List[SimilarFix]) -> Tuple[str, bool]:
    """(recommendation, should_attempt_fix) for a triaged issue"""
    if issue.state == "closed":
        return "Issue is already closed. No fix needed.", False

    open_pr = next((pr for pr in issue.linked_prs if pr.state == "open"), None)
    if open_pr is not None:
        return f"Issue has an open PR (#{open_pr.number}). Wait for PR resolution.", False

    if issue.assignees:
        return f"Issue is assigned to: {', '.join(issue.assignees)}. Avoid duplicate work.", False

    if triage.result == TriageResult.BUG and triage.confidence >= MIN_FIX_CONFIDENCE:
        if similar:
            refs = ", ".join(f"PR #{fix.fix_number}" for fix in similar[:2])
            return (
                f"Bug with similar historical fixes found. Recommend attempting fix based on patterns from: {refs}.",
                True,
            )
        return "Bug identified but no similar fixes found. Proceed with caution.", True

    if triage.result in (TriageResult.CONFIG, TriageResult.QUESTION):
        return (
            "Issue appears to be a configuration problem or question. "
            "Consider adding a helpful comment instead of code changes.",
            False,
        )
    if triage.result == TriageResult.FEATURE:
        return "Issue appears to be a feature request. Not suitable for automated fix.", False
    return "Issue type is unclear. Manual review recommended before attempting fix.", False


async def investigate(
    issue: IssueContext,
    triage_engine: TriageEngine,
    retriever: Optional[SimilarFixRetriever] = None,
    max_similar_fixes: Optional[int] = None,
) -> Investigation:
    """
    Triage an issue and look for precedent fixes.

    Args:
        issue: Issue to investigate
        triage_engine: Scoring engine
        retriever: Similar-fix retriever; None skips retrieval
        max_similar_fixes: Result cap passed to the retriever

    Returns:
        Investigation with the recommendation and fix-attempt flag
    """
    triage = triage_engine.triage(issue)
    logger.info("Triage result for #%d: %s (%.1f%%)", issue.number, triage.result.value, triage.confidence * 100)

    similar: List[SimilarFix] = []
    patterns: List[str] = []
    if retriever is not None:
        similar = await retriever.find_similar(issue, max_similar_fixes)
        patterns = retriever.recommend_patterns(similar)
        logger.info("Found %d similar fixes for #%d", len(similar), issue.number)

    recommendation, should_attempt = recommend(issue, triage, similar)
    return Investigation(
        issue=issue,
        triage=triage,
        similar_fixes=similar,
        recommended_patterns=patterns,
        recommendation=recommendation,
        should_attempt_fix=should_attempt,
    )
