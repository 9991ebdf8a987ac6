"""
Triage Engine

Stateless, rule-weighted scoring of an issue.

Starting from a neutral 0.5, every matched factor adds its signed weight;
the clamped score maps to a result through configurable breakpoints:

    >= 0.70  bug (high confidence)
    >= 0.50  bug (moderate confidence)
    >= 0.35  unclear
    >= 0.20  config
    >= 0.10  question
    <  0.10  feature when a feature indicator fired, otherwise question

The full factor list (matched or not) is returned so every score is
auditable.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..common.config import TriageConfig
from ..common.schemas.records import IssueContext, TriageFactor, TriageOutcome, TriageResult

logger = logging.getLogger("signalhub.learning.triage")

BASELINE = 0.5

CheckResult = Tuple[bool, str]


@dataclass(frozen=True)
class FactorDefinition:
    name: str
    weight: float
    category: str  # bug, config, feature
    check: Callable[[IssueContext], CheckResult]


def _label_check(*needles: str) -> Callable[[IssueContext], CheckResult]:
    def check(issue: IssueContext) -> CheckResult:
        for label in issue.labels:
            lowered = label.lower()
            if any(needle in lowered for needle in needles):
                return True, label
        return False, ""
    return check


def _regex_check(pattern: str, field: str, detail: Optional[str] = None) -> Callable[[IssueContext], CheckResult]:
    compiled = re.compile(pattern, re.IGNORECASE)

    def check(issue: IssueContext) -> CheckResult:
        if field == "title":
            text = issue.title
        elif field == "body":
            text = issue.body
        else:
            text = f"{issue.title} {issue.body}"
        match = compiled.search(text or "")
        if not match:
            return False, ""
        return True, detail if detail is not None else match.group(0)
    return check


TRIAGE_FACTORS: List[FactorDefinition] = [
    # Bug indicators
    FactorDefinition("has_bug_label", 0.25, "bug", _label_check("bug", "fix")),
    FactorDefinition(
        "error_in_title", 0.15, "bug",
        _regex_check(r"error|exception|crash|fail|broken|issue|not work", "title"),
    ),
    FactorDefinition(
        "stack_trace_in_body", 0.20, "bug",
        _regex_check(
            r"at\s+[\w.]+\s*\(|Error:|TypeError:|ReferenceError:|SyntaxError:|throw\s+new|Traceback \(most recent call last\)",
            "body", "Contains stack trace or error",
        ),
    ),
    FactorDefinition(
        "reproduction_steps", 0.15, "bug",
        _regex_check(r"steps?\s+to\s+reproduce|repro|how\s+to\s+reproduce|reproduction", "body", "Has reproduction steps"),
    ),
    FactorDefinition(
        "expected_vs_actual", 0.10, "bug",
        _regex_check(r"expected|actual|should|instead|but\s+got", "body", "Describes expected vs actual behavior"),
    ),

    # Config indicators
    FactorDefinition(
        "config_question", -0.20, "config",
        _regex_check(
            r"how\s+(do|can|to)|where\s+(do|can|is)|what\s+(is|are)|configure|configuration|setup|setting",
            "both", "Appears to be a configuration question",
        ),
    ),
    FactorDefinition("question_label", -0.20, "config", _label_check("question", "help", "support")),
    FactorDefinition(
        "missing_env_vars", -0.15, "config",
        _regex_check(
            r"env|environment\s+variable|\.env|process\.env|missing\s+.*key|api\s*key",
            "body", "Mentions environment variables",
        ),
    ),

    # Feature indicators
    FactorDefinition("feature_label", -0.15, "feature", _label_check("feature", "enhancement", "request")),
    FactorDefinition(
        "would_be_nice", -0.10, "feature",
        _regex_check(
            r"would\s+be\s+(nice|great|helpful)|feature\s+request|suggestion|propose|new\s+feature",
            "both", "Contains feature request language",
        ),
    ),

    # Code evidence
    FactorDefinition("code_snippet", 0.10, "bug", _regex_check(r"```[\s\S]*```", "body", "Contains code snippet")),
    FactorDefinition(
        "version_info", 0.05, "bug",
        _regex_check(r"version|v\d+\.\d+|\w+@\d", "body", "Includes version information"),
    ),
]

REASONS = {
    "bug_high": "High confidence bug: Issue has multiple bug indicators including error descriptions, "
                "reproduction steps, or bug labels.",
    "bug": "Moderate confidence bug: Issue shows some bug characteristics but may need clarification.",
    TriageResult.UNCLEAR: "Unclear issue type: Could be a bug or configuration issue. May need more information.",
    TriageResult.CONFIG: "Likely configuration issue: Issue appears to be about setup, configuration, "
                         "or usage questions.",
    TriageResult.QUESTION: "General question: User appears to be asking for help or clarification.",
    TriageResult.FEATURE: "Feature request: Issue appears to be requesting new functionality.",
}


class TriageEngine:
    """Scores issues against an ordered factor list."""

    def __init__(
        self,
        config: Optional[TriageConfig] = None,
        factors: Optional[List[FactorDefinition]] = None,
    ):
        self._config = config or TriageConfig()
        self._factors = factors if factors is not None else TRIAGE_FACTORS

    def _classify(self, score: float, feature_signal: bool) -> Tuple[TriageResult, str]:
        bp = self._config
        if score >= bp.bug_high:
            return TriageResult.BUG, REASONS["bug_high"]
        if score >= bp.bug:
            return TriageResult.BUG, REASONS["bug"]
        if score >= bp.unclear:
            return TriageResult.UNCLEAR, REASONS[TriageResult.UNCLEAR]
        if score >= bp.config:
            return TriageResult.CONFIG, REASONS[TriageResult.CONFIG]
        if score >= bp.question or not feature_signal:
            # Below the question band with no feature indicator: still a question
            return TriageResult.QUESTION, REASONS[TriageResult.QUESTION]
        return TriageResult.FEATURE, REASONS[TriageResult.FEATURE]

    def triage(self, issue: IssueContext) -> TriageOutcome:
        """
        Score one issue.

        Args:
            issue: Title, body and labels are inspected

        Returns:
            TriageOutcome with every evaluated factor, in definition order
        """
        score = BASELINE
        factors: List[TriageFactor] = []
        feature_signal = False

        for definition in self._factors:
            matched, detail = definition.check(issue)
            factors.append(TriageFactor(
                name=definition.name,
                weight=definition.weight,
                matched=matched,
                detail=detail,
            ))
            if matched:
                score += definition.weight
                if definition.category == "feature":
                    feature_signal = True

        confidence = round(max(0.0, min(1.0, score)), 4)
        result, reasoning = self._classify(confidence, feature_signal)

        bug_factors = [f.name for f in factors if f.matched and f.weight > 0]
        non_bug_factors = [f.name for f in factors if f.matched and f.weight < 0]
        if bug_factors:
            reasoning += f" Bug indicators: {', '.join(bug_factors)}."
        if non_bug_factors:
            reasoning += f" Non-bug indicators: {', '.join(non_bug_factors)}."

        logger.debug("Triaged #%s as %s (%.2f)", issue.number, result.value, confidence)
        return TriageOutcome(result=result, confidence=confidence, reasoning=reasoning, factors=factors)
