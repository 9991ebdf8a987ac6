"""
Export Templates

Renders a Group into the title/body pair handed to a project-management
export target.
"""

from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from .signal import Group


EXPORT_BODY_TEMPLATE = """## Related reports
{members}

Canonical: {canonical}
Average similarity: {avg_similarity}%
{cross_cutting}
## Affected features
{features}

---
signalhub-group: {group_id}
"""


def _format_members(group: "Group") -> str:
    lines = []
    for member in group.members:
        ref = member.signal
        label = ref.title or f"{ref.source.value} {ref.source_id}"
        score = round(member.similarity_score * 100)
        if ref.permalink:
            lines.append(f"- [{label}]({ref.permalink}) ({ref.source.value}, {score}%)")
        else:
            lines.append(f"- {label} ({ref.source.value}, {score}%)")
    return "\n".join(lines)


def _format_features(features: List[str]) -> str:
    if not features:
        return "- (none matched)"
    return "\n".join(f"- {f}" for f in features)


def render_export_title(group: "Group") -> str:
    """Title from the canonical item, falling back to its source reference"""
    canonical = group.canonical
    title = canonical.title or f"{canonical.source.value} {canonical.source_id}"
    return f"[{len(group.members)} reports] {title}"


def render_export_body(group: "Group") -> str:
    canonical = group.canonical
    return EXPORT_BODY_TEMPLATE.format(
        members=_format_members(group),
        canonical=canonical.permalink or canonical.key,
        avg_similarity=round(group.avg_similarity * 100),
        cross_cutting="Cross-cutting: spans multiple features\n" if group.is_cross_cutting else "",
        features=_format_features(group.affected_features),
        group_id=group.id,
    )
