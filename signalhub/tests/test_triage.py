"""Tests for the rule-weighted triage engine."""

import pytest

from signalhub.common.config import TriageConfig
from signalhub.common.schemas.records import IssueContext, TriageResult
from signalhub.learning.triage import TRIAGE_FACTORS, TriageEngine


def issue(title, body="", labels=None, **kwargs):
    return IssueContext(number=1, title=title, body=body, labels=labels or [], **kwargs)


@pytest.fixture
def engine():
    return TriageEngine()


class TestScenarios:
    def test_clear_bug_report(self, engine):
        outcome = engine.triage(issue(
            "Crash on login - TypeError: cannot read property",
            body="TypeError: Cannot read properties of undefined\n    at handleLogin (src/auth.ts:42:7)",
            labels=["bug"],
        ))

        assert outcome.result == TriageResult.BUG
        assert outcome.confidence >= 0.70
        assert outcome.reasoning.startswith("High confidence bug")
        matched = {f.name for f in outcome.matched_factors}
        assert {"has_bug_label", "error_in_title", "stack_trace_in_body"} <= matched

    def test_setup_question(self, engine):
        outcome = engine.triage(issue(
            "How do I configure the OAuth redirect URI?",
            body="I set OAUTH_REDIRECT_URI in my .env file but the provider rejects the callback. "
                 "Where can I set the allowed redirect URI?",
            labels=["question"],
        ))

        assert outcome.result in (TriageResult.QUESTION, TriageResult.CONFIG)
        assert outcome.confidence < 0.35
        assert "Non-bug indicators: config_question, question_label, missing_env_vars." in outcome.reasoning

    def test_feature_request(self, engine):
        outcome = engine.triage(issue(
            "Feature request: how to configure dark mode",
            body="Dark mode for the dashboard.",
            labels=["enhancement", "question"],
        ))

        assert outcome.result == TriageResult.FEATURE
        assert outcome.confidence == 0.0


class TestBands:
    def test_moderate_bug(self, engine):
        outcome = engine.triage(issue("Dashboard totals", body="The totals should match the export."))
        assert outcome.result == TriageResult.BUG
        assert outcome.confidence == 0.6
        assert outcome.reasoning.startswith("Moderate confidence bug")

    def test_unclear(self, engine):
        outcome = engine.triage(issue(
            "Configuration for the dashboard",
            body="My current file:\n```\nport = 8080\n```",
        ))
        assert outcome.result == TriageResult.UNCLEAR
        assert outcome.confidence == 0.4

    def test_config(self, engine):
        outcome = engine.triage(issue("Configure dashboard totals", body="Totals on the dashboard."))
        assert outcome.result == TriageResult.CONFIG
        assert outcome.confidence == 0.3

    def test_question(self, engine):
        outcome = engine.triage(issue("Dashboard totals", body="Which env file is read?", labels=["help wanted"]))
        assert outcome.result == TriageResult.QUESTION
        assert outcome.confidence == 0.15

    def test_custom_breakpoints(self):
        strict = TriageEngine(TriageConfig(bug_high=0.9, bug=0.65))
        outcome = strict.triage(issue("Dashboard totals", body="The totals should match the export."))
        assert outcome.result == TriageResult.UNCLEAR


class TestScoreProperties:
    def test_confidence_clamped_high(self, engine):
        outcome = engine.triage(issue(
            "Crash: error after upgrade",
            body="Steps to reproduce: run it. Expected success but got TypeError: x\n"
                 "```\nthrow new Error()\n```\nversion 2.1.0",
            labels=["bug"],
        ))
        assert outcome.confidence == 1.0

    def test_all_factors_reported_in_order(self, engine):
        outcome = engine.triage(issue("Anything"))
        assert [f.name for f in outcome.factors] == [d.name for d in TRIAGE_FACTORS]
        assert not outcome.matched_factors
        assert outcome.confidence == 0.5

    def test_deterministic(self, engine):
        subject = issue("Login fails", body="Steps to reproduce: click login", labels=["bug", "auth"])
        first = engine.triage(subject)
        second = engine.triage(subject)
        assert (first.result, first.confidence, first.factors) == (second.result, second.confidence, second.factors)

    def test_label_detail_recorded(self, engine):
        outcome = engine.triage(issue("Anything", labels=["type: bugfix"]))
        factor = next(f for f in outcome.factors if f.name == "has_bug_label")
        assert factor.matched and factor.detail == "type: bugfix"
