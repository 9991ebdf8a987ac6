"""
Fix Pattern Detection

Regex tagging of historical fixes:
- fix patterns from the lines a diff adds
- subsystem from changed file paths (first match wins)
- issue type from labels
- review outcome from review states

All tag tables share one matcher so adding a category is a table edit.
"""

import re
from collections import Counter
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from ..common.schemas.records import IssueType, ReviewOutcome, SimilarFix

TagTable = Mapping[str, Sequence[str]]

FIX_PATTERNS: Dict[str, List[str]] = {
    "null_check": [r"\bnull\b", r"\bundefined\b", r"\?\.", r"\bis (not )?None\b"],
    "error_handling": [r"try\s*[{:]", r"catch\s*\(", r"\.catch\(", r"\bexcept\b"],
    "type_fix": [r":\s*(string|number|boolean|any)\b", r"<[A-Z]\w*>"],
    "async_fix": [r"async\s", r"await\s", r"Promise"],
    "conditional_logic": [r"if\s*\(", r"else\s*{", r"\?\s*:", r"^\s*(el)?if\s.+:\s*$"],
    "return_fix": [r"return\s", r"throw\s", r"raise\s"],
    "import_fix": [r"import\s", r"export\s"],
    "logging": [r"console\.", r"log\(", r"debug\("],
    "test_added": [r"test\(", r"describe\(", r"it\(", r"expect\(", r"def test_"],
}

FILE_PATTERNS: Dict[str, List[str]] = {
    "test_added": [r"\.test\.", r"\.spec\.", r"__tests__", r"(^|/)test_[^/]*\.py$"],
    "type_definition": [r"\.d\.ts$", r"types?\."],
}

SUBSYSTEM_PATTERNS: Dict[str, List[str]] = {
    "oauth": [r"oauth", r"providers?/"],
    "sso": [r"sso", r"saml", r"oidc"],
    "organization": [r"organization", r"org/", r"teams?/"],
    "api-key": [r"api-key", r"apikey"],
    "passkey": [r"passkey", r"webauthn"],
    "two-factor": [r"two-factor", r"2fa", r"totp", r"otp"],
    "admin": [r"admin"],
    "stripe": [r"stripe", r"payment"],
    "adapter": [r"adapter", r"database", r"prisma", r"drizzle"],
    "cli": [r"cli", r"command"],
    "client": [r"client", r"react", r"vue", r"svelte"],
    "db": [r"schema", r"migration", r"model"],
}

ISSUE_TYPE_LABELS = [
    (IssueType.BUG, {"bug", "fix", "bugfix"}),
    (IssueType.FEATURE, {"feature", "enhancement", "feat"}),
    (IssueType.DOCS, {"docs", "documentation"}),
    (IssueType.SECURITY, {"security"}),
    (IssueType.PERFORMANCE, {"performance", "perf"}),
    (IssueType.REFACTOR, {"refactor", "cleanup"}),
    (IssueType.TEST, {"test", "testing"}),
]

ISSUE_REF_PATTERN = re.compile(r"(?:closes?|fixes?|resolves?)\s*#(\d+)", re.IGNORECASE)


def match_tags(table: TagTable, texts: Iterable[str], first_only: bool = False) -> List[str]:
    """
    Tags whose patterns match any of ``texts``.

    Args:
        table: Tag name -> regex patterns, scanned in table order
        texts: Lines or paths to test (case-insensitive)
        first_only: Stop at the first matching tag

    Returns:
        Matching tags in table order, without duplicates
    """
    texts = list(texts)
    tags: List[str] = []
    for tag, patterns in table.items():
        compiled = [re.compile(p, re.IGNORECASE) for p in patterns]
        if any(p.search(text) for text in texts for p in compiled):
            tags.append(tag)
            if first_only:
                break
    return tags


def added_lines(diff: str) -> List[str]:
    """Content of lines a unified diff adds (file headers excluded)"""
    return [
        line[1:]
        for line in (diff or "").splitlines()
        if line.startswith("+") and not line.startswith("+++")
    ]


def detect_fix_patterns(diff: str, file_paths: Sequence[str] = ()) -> List[str]:
    """Fix-pattern tags for a diff; only added lines count"""
    patterns = match_tags(FIX_PATTERNS, added_lines(diff))
    for tag in match_tags(FILE_PATTERNS, file_paths):
        if tag not in patterns:
            patterns.append(tag)
    return patterns


def detect_subsystem(file_paths: Sequence[str], table: Optional[TagTable] = None) -> Optional[str]:
    """First subsystem whose patterns match any changed path, else None"""
    found = match_tags(table or SUBSYSTEM_PATTERNS, file_paths, first_only=True)
    return found[0] if found else None


def detect_issue_type(labels: Sequence[str]) -> IssueType:
    label_set = {label.lower() for label in labels}
    for issue_type, names in ISSUE_TYPE_LABELS:
        if label_set & names:
            return issue_type
    return IssueType.OTHER


def determine_review_outcome(review_states: Sequence[str]) -> ReviewOutcome:
    """Collapse GitHub review states (APPROVED, CHANGES_REQUESTED, ...) into one outcome"""
    if not review_states:
        return ReviewOutcome.MERGED_WITHOUT_REVIEW

    states = {s.upper() for s in review_states}
    if "CHANGES_REQUESTED" in states:
        return ReviewOutcome.CHANGES_REQUESTED
    if "APPROVED" in states:
        return ReviewOutcome.APPROVED
    return ReviewOutcome.COMMENTED_ONLY


def summarize_fix_patterns(fixes: Sequence[SimilarFix], top_n: int = 3) -> List[str]:
    """
    Majority vote over the patterns of retrieved fixes.

    Returns:
        Up to ``top_n`` patterns seen in more than half of ``fixes``,
        most common first; ties keep first-seen order
    """
    if not fixes:
        return []
    counts = Counter()
    for fix in fixes:
        counts.update(dict.fromkeys(fix.fix_patterns, 1))
    majority = [tag for tag, count in counts.most_common() if count * 2 > len(fixes)]
    return majority[:top_n]


def extract_issue_refs(text: str) -> List[int]:
    """Issue numbers referenced as "closes #N", "fixes #N" or "resolves #N", in order"""
    refs: List[int] = []
    for match in ISSUE_REF_PATTERN.finditer(text or ""):
        number = int(match.group(1))
        if number not in refs:
            refs.append(number)
    return refs
