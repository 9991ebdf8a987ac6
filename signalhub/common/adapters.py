"""
Source Adapters

Convert already-fetched Discord messages and GitHub issues (plain dicts as
returned by their REST APIs) into Signals and IssueContexts. No wire
protocol lives here.
"""

from typing import Any, Dict, List, Optional

from .schemas.records import IssueContext, LinkedPR
from .schemas.signal import Signal, SignalSource


def _label_names(labels: Optional[List[Any]]) -> List[str]:
    names = []
    for label in labels or []:
        if isinstance(label, dict):
            if label.get("name"):
                names.append(label["name"])
        elif label:
            names.append(str(label))
    return names


def discord_message_to_signal(message: Dict[str, Any]) -> Signal:
    """
    Convert a Discord message dict to a Signal.

    The permalink falls back to a channel URL built from guild and channel
    IDs, then to the bare message ID.
    """
    thread = message.get("thread") or {}
    guild_id = message.get("guild_id")
    channel_id = message.get("channel_id")

    permalink = message.get("url")
    if not permalink:
        if guild_id and channel_id:
            permalink = f"https://discord.com/channels/{guild_id}/{channel_id}/{message['id']}"
        else:
            permalink = str(message["id"])

    metadata = {
        "author": message.get("author"),
        "channel_id": channel_id,
        "channel_name": message.get("channel_name"),
        "guild_id": guild_id,
        "guild_name": message.get("guild_name"),
        "thread_id": thread.get("id"),
        "thread_name": thread.get("name"),
        "attachments": message.get("attachments"),
        "mentions": message.get("mentions"),
        "reactions": message.get("reactions"),
        "message_reference": message.get("message_reference"),
    }

    fields: Dict[str, Any] = {
        "source": SignalSource.DISCORD,
        "source_id": str(message["id"]),
        "permalink": permalink,
        "title": thread.get("name"),
        "body": message.get("content") or "",
        "updated_at": message.get("edited_at") or None,
        "metadata": {k: v for k, v in metadata.items() if v is not None},
    }
    created_at = message.get("created_at") or message.get("timestamp")
    if created_at:
        fields["created_at"] = created_at
    return Signal(**fields)


def github_issue_to_signal(issue: Dict[str, Any], owner: str, repo: str) -> Signal:
    """Convert a GitHub issue dict to a Signal keyed by issue number"""
    return Signal(
        source=SignalSource.GITHUB,
        source_id=str(issue["number"]),
        permalink=issue.get("html_url", ""),
        title=issue.get("title"),
        body=issue.get("body") or "",
        created_at=issue["created_at"],
        updated_at=issue.get("updated_at"),
        metadata={
            "id": issue.get("id"),
            "number": issue["number"],
            "state": issue.get("state"),
            "user": issue.get("user"),
            "labels": _label_names(issue.get("labels")),
            "owner": owner,
            "repo": repo,
        },
    )


def github_issue_to_context(issue: Dict[str, Any], repo: str = "") -> IssueContext:
    """Convert a GitHub issue dict (optionally with ``linked_prs``) for triage"""
    user = issue.get("user") or {}
    return IssueContext(
        number=issue["number"],
        title=issue.get("title", ""),
        body=issue.get("body") or "",
        labels=_label_names(issue.get("labels")),
        state=issue.get("state", "open"),
        author=user.get("login", "") if isinstance(user, dict) else str(user),
        url=issue.get("html_url", ""),
        repo=repo,
        assignees=[a.get("login", "") for a in issue.get("assignees") or [] if isinstance(a, dict)],
        linked_prs=[LinkedPR(**pr) for pr in issue.get("linked_prs") or []],
        created_at=issue.get("created_at"),
        updated_at=issue.get("updated_at"),
    )
