"""Tests for data models."""

import dataclasses

import pytest

from consensus_loop.models.findings import ApplyTrigger, Finding, Severity, finding_problems
from consensus_loop.models.rounds import RoundDecision, RoundOutcome


class TestSeverity:
    """Tests for Severity ordering."""

    def test_ordering(self):
        assert Severity.LOW.rank < Severity.MEDIUM.rank < Severity.HIGH.rank < Severity.CRITICAL.rank

    def test_high_stakes(self):
        assert [s for s in Severity if s.is_high_stakes] == [Severity.HIGH, Severity.CRITICAL]


class TestFinding:
    """Tests for Finding."""

    def test_finding_is_immutable(self, make_finding):
        """Findings cannot be edited after creation."""
        finding = make_finding()
        with pytest.raises(dataclasses.FrozenInstanceError):
            finding.summary = "changed"

    def test_from_dict_stamps_round_and_source(self):
        """Missing round/source come from the caller."""
        finding = Finding.from_dict(
            {"severity": "HIGH", "location": "a.md#intro", "summary": "Broken link", "fix": "x"},
            round_number=2,
            source="links",
        )
        assert finding.round == 2
        assert finding.source == "links"
        assert finding.severity == Severity.HIGH
        assert finding.id.startswith("finding-")
        assert finding.auto_fixable is False

    def test_from_dict_id_is_stable(self):
        raw = {"severity": "low", "location": "a.md", "summary": "Typo"}
        first = Finding.from_dict(raw, round_number=1, source="style")
        second = Finding.from_dict(raw, round_number=1, source="style")
        assert first.id == second.id

    def test_from_dict_rejects_unknown_severity(self):
        with pytest.raises(ValueError):
            Finding.from_dict(
                {"severity": "blocker", "location": "a.md", "summary": "x"},
                round_number=1,
                source="r",
            )

    def test_from_dict_rejects_missing_location(self):
        with pytest.raises(KeyError):
            Finding.from_dict({"severity": "low", "summary": "x"}, round_number=1, source="r")

    def test_from_dict_rejects_blank_summary(self):
        with pytest.raises(ValueError):
            Finding.from_dict(
                {"severity": "low", "location": "a.md", "summary": "  "},
                round_number=1,
                source="r",
            )

    def test_round_trip(self, make_finding):
        finding = make_finding(fix={"find": "TBD", "replace": "Revert the deploy"}, auto_fixable=True)
        assert Finding.from_dict(finding.to_dict()) == finding

    def test_problems_for_invalid_severity(self, make_finding):
        finding = dataclasses.replace(make_finding(), severity="medium")
        assert finding_problems(finding) == ["invalid severity 'medium'"]


class TestRoundOutcome:
    """Tests for RoundOutcome."""

    def test_counts(self):
        outcome = RoundOutcome(round_number=1)
        outcome.findings_by_severity[Severity.LOW] = 2
        outcome.findings_by_severity[Severity.CRITICAL] = 1
        outcome.applied_by_trigger[ApplyTrigger.SEVERITY] = 1
        outcome.applied_by_trigger[ApplyTrigger.SAME_ROUND] = 1

        assert outcome.total_findings == 3
        assert outcome.applied == 2
        assert outcome.has_high_stakes is True

    def test_serialization(self):
        outcome = RoundOutcome(round_number=3, deferred=2, failed_reviewers=["slow (timeout)"])
        outcome.findings_by_severity[Severity.MEDIUM] = 2
        outcome.applied_by_trigger[ApplyTrigger.CROSS_ROUND] = 1
        outcome.decision = RoundDecision.CONVERGED

        restored = RoundOutcome.from_dict(outcome.to_dict())

        assert restored == outcome
