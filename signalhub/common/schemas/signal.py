"""
Signal and Group Schemas

A Signal is the normalized unit of input from any source (chat message,
chat thread, issue). Groups are sets of related signals produced by a
grouping pass; signals that did not join any group are reported as
ungrouped together with the reason.
"""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Enums
# ============================================================================

class SignalSource(str, Enum):
    """Where a signal came from"""
    DISCORD = "discord"
    GITHUB = "github"
    SLACK = "slack"


class GroupStatus(str, Enum):
    """Export lifecycle of a group"""
    PENDING = "pending"
    EXPORTED = "exported"


# ============================================================================
# Signals
# ============================================================================

class Signal(BaseModel):
    """
    Normalized unit of input.

    ``source_id`` is unique within ``source``. Signals are not edited after
    creation; a newer ``updated_at`` only triggers re-embedding.
    """
    model_config = ConfigDict(frozen=True)

    source: SignalSource
    source_id: str = Field(..., min_length=1)
    permalink: str = ""
    title: Optional[str] = None
    body: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        """Identifier unique across sources, e.g. ``github:123``"""
        return f"{self.source.value}:{self.source_id}"

    @property
    def text(self) -> str:
        """Title and body joined, the text used for embeddings"""
        if self.title:
            return f"{self.title}\n\n{self.body}".strip()
        return self.body.strip()

    @property
    def last_activity(self) -> datetime:
        return self.updated_at or self.created_at

    @property
    def content_hash(self) -> str:
        return hashlib.md5(self.text.encode("utf-8")).hexdigest()

    def ref(self) -> "SignalRef":
        return SignalRef(
            source=self.source,
            source_id=self.source_id,
            permalink=self.permalink,
            title=self.title,
        )


class SignalRef(BaseModel):
    """Lightweight pointer to a signal"""
    source: SignalSource
    source_id: str
    permalink: str = ""
    title: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.source.value}:{self.source_id}"


# ============================================================================
# Groups
# ============================================================================

class GroupMember(BaseModel):
    """A grouped signal with its similarity to the group seed"""
    signal: SignalRef
    similarity_score: float


class Group(BaseModel):
    """
    A set of related signals.

    Always has at least two members. ``avg_similarity`` is the mean of all
    pairwise similarities among members, not only similarity to the seed.
    """
    id: str
    members: List[GroupMember]
    canonical: SignalRef
    avg_similarity: float
    is_cross_cutting: bool = False
    affected_features: List[str] = Field(default_factory=list)
    status: GroupStatus = GroupStatus.PENDING
    export_id: Optional[str] = None
    export_url: Optional[str] = None

    @field_validator("members")
    @classmethod
    def _at_least_two(cls, members: List[GroupMember]) -> List[GroupMember]:
        if len(members) < 2:
            raise ValueError("a group needs at least 2 members")
        return members

    @property
    def member_keys(self) -> List[str]:
        return [m.signal.key for m in self.members]


class UngroupedSignal(BaseModel):
    """A signal that ended the pass without a group"""
    signal: SignalRef
    reason: str


class GroupingResult(BaseModel):
    """Output of a grouping pass: every input is in exactly one list"""
    groups: List[Group] = Field(default_factory=list)
    ungrouped: List[UngroupedSignal] = Field(default_factory=list)


def generate_group_id(member_keys: List[str]) -> str:
    """Deterministic group ID from member keys (order-independent)"""
    digest = hashlib.sha256("|".join(sorted(member_keys)).encode("utf-8")).hexdigest()
    return f"grp_{digest[:16]}"
