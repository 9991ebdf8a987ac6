"""
Record Schemas

Embedding entries, product features, issue context for triage,
historical fixes and batch summaries.
"""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Embeddings
# ============================================================================

class EmbeddingKind(str, Enum):
    """Owning entity type of a cached embedding"""
    ISSUE = "issues"
    DISCORD = "discord"
    GROUP = "groups"
    FEATURE = "features"
    DOCUMENTATION = "documentation"
    FIX = "fixes"


class EmbeddingEntry(BaseModel):
    """
    A cached vector.

    Valid only while ``content_hash`` matches the owning entity's current
    content and ``model`` matches the configured model.
    """
    kind: str
    entity_id: str
    embedding: List[float]
    content_hash: str
    model: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ============================================================================
# Features
# ============================================================================

class Feature(BaseModel):
    """An entry in the product feature taxonomy (read-only here)"""
    id: str
    name: str
    description: str = ""
    category: Optional[str] = None
    priority: str = "medium"
    related_keywords: List[str] = Field(default_factory=list)
    documentation_urls: List[str] = Field(default_factory=list)

    def embedding_text(self) -> str:
        """Text embedded for feature matching"""
        text = f"{self.name}: {self.description}".strip()
        if self.related_keywords:
            text += f" Keywords: {', '.join(self.related_keywords)}"
        return text


# ============================================================================
# Issues and triage
# ============================================================================

class LinkedPR(BaseModel):
    number: int
    title: str = ""
    state: str = "open"  # open, closed, merged
    url: str = ""


class IssueContext(BaseModel):
    """Issue as seen by triage and similar-fix retrieval"""
    number: int
    title: str
    body: str = ""
    labels: List[str] = Field(default_factory=list)
    state: str = "open"
    author: str = ""
    url: str = ""
    repo: str = ""
    assignees: List[str] = Field(default_factory=list)
    linked_prs: List[LinkedPR] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def retrieval_text(self) -> str:
        """Text embedded when looking for similar historical fixes"""
        return f"{self.title} {self.body} {' '.join(self.labels)}".strip()


class TriageResult(str, Enum):
    BUG = "bug"
    CONFIG = "config"
    FEATURE = "feature"
    QUESTION = "question"
    UNCLEAR = "unclear"


class TriageFactor(BaseModel):
    """One evaluated factor; ``weight`` is the signed contribution if matched"""
    name: str
    weight: float
    matched: bool
    detail: str = ""


class TriageOutcome(BaseModel):
    result: TriageResult
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str
    factors: List[TriageFactor] = Field(default_factory=list)

    @property
    def matched_factors(self) -> List[TriageFactor]:
        return [f for f in self.factors if f.matched]


# ============================================================================
# Historical fixes
# ============================================================================

class IssueType(str, Enum):
    BUG = "bug"
    FEATURE = "feature"
    DOCS = "docs"
    SECURITY = "security"
    PERFORMANCE = "performance"
    REFACTOR = "refactor"
    TEST = "test"
    OTHER = "other"


class ReviewOutcome(str, Enum):
    MERGED_WITHOUT_REVIEW = "merged_without_review"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    COMMENTED_ONLY = "commented_only"


class HistoricalFix(BaseModel):
    """
    A past (issue, merged fix) pair.

    Unique per (issue_number, fix_number, repo). Never edited after
    learning except for re-embedding on a model change.
    """
    repo: str
    issue_number: int
    issue_title: str
    issue_body: str = ""
    issue_labels: List[str] = Field(default_factory=list)
    fix_number: int
    fix_title: str = ""
    fix_description: str = ""
    diff: str = ""
    files_changed: List[str] = Field(default_factory=list)
    lines_added: int = 0
    lines_removed: int = 0
    merged_at: Optional[datetime] = None
    issue_type: IssueType = IssueType.OTHER
    subsystem: Optional[str] = None
    fix_patterns: List[str] = Field(default_factory=list)
    review_outcome: Optional[ReviewOutcome] = None
    content_hash: str = ""
    embedding: Optional[List[float]] = None

    def issue_text(self) -> str:
        """Text embedded for retrieval, mirrors IssueContext.retrieval_text"""
        return f"{self.issue_title} {self.issue_body} {' '.join(self.issue_labels)}".strip()


def create_fix_hash(repo: str, issue_number: int, fix_number: int) -> str:
    """Dedup hash for a (repo, issue, fix) triple"""
    raw = f"{repo}:{issue_number}:{fix_number}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


class SimilarFix(BaseModel):
    """A retrieved historical fix with its cosine similarity to the query"""
    issue_number: int
    issue_title: str
    fix_number: int
    fix_title: str
    repo: str
    diff: str
    files_changed: List[str] = Field(default_factory=list)
    fix_patterns: List[str] = Field(default_factory=list)
    subsystem: Optional[str] = None
    similarity: float


# ============================================================================
# Batch summaries
# ============================================================================

class ItemError(BaseModel):
    item_id: str
    error: str
    kind: str = "error"  # validation, quota, transient, error


class BatchSummary(BaseModel):
    """Always returned from batch operations, never a bare exception"""
    processed: int = 0
    succeeded: int = 0
    skipped: int = 0
    fallbacks: int = 0
    errors: List[ItemError] = Field(default_factory=list)
    cancelled: bool = False

    def record_error(self, item_id: str, error: Exception, kind: str = "error") -> None:
        self.errors.append(ItemError(item_id=item_id, error=str(error), kind=kind))
