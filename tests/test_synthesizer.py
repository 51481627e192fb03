"""Tests for the finding synthesizer."""

import dataclasses

from consensus_loop.models.escalation import EscalationReason
from consensus_loop.models.findings import Action, ApplyTrigger, Severity
from consensus_loop.orchestrator.synthesizer import (
    FindingMatcher,
    FindingSynthesizer,
    SynthesizerConfig,
)
from consensus_loop.storage.store import ConsensusStore


class TestFindingMatcher:
    """Tests for FindingMatcher."""

    def test_location_normalization(self):
        assert FindingMatcher.location_key("  Docs\\Plan.md  #Scope ") == "docs/plan.md #scope"

    def test_fuzzy_summaries_match(self, make_finding):
        """Near-identical wording at the same location matches."""
        matcher = FindingMatcher()
        f1 = make_finding(location="docs/plan.md", summary="Missing error handling for timeout")
        f2 = make_finding(location="Docs/Plan.md", summary="Missing error handling for timeouts.")
        assert matcher.are_similar(f1, f2)

    def test_different_location_never_matches(self, make_finding):
        matcher = FindingMatcher()
        f1 = make_finding(location="a.md")
        f2 = make_finding(location="b.md")
        assert not matcher.are_similar(f1, f2)

    def test_unrelated_summaries_do_not_match(self, make_finding):
        matcher = FindingMatcher()
        f1 = make_finding(summary="Rollback section has no concrete steps")
        f2 = make_finding(summary="Owner for the migration is not named")
        assert not matcher.are_similar(f1, f2)


class TestFindingSynthesizer:
    """Tests for FindingSynthesizer."""

    def test_same_round_consensus(self, memory_store, make_finding):
        """Two reviewers raising the same MEDIUM finding merge and auto-apply."""
        synthesizer = FindingSynthesizer(memory_store)
        findings = [
            make_finding(source="security", severity=Severity.MEDIUM),
            make_finding(source="completeness", severity=Severity.MEDIUM),
        ]

        result = synthesizer.synthesize(findings, round_number=1)

        assert len(result.findings) == 1
        merged = result.to_apply[0]
        assert merged.same_round_matches == 1
        assert merged.action == Action.AUTO_APPLY
        assert merged.trigger == ApplyTrigger.SAME_ROUND
        assert merged.sources == ["completeness", "security"]
        assert memory_store.entries() == []

    def test_duplicates_from_one_reviewer_are_not_agreement(self, memory_store, make_finding):
        """A reviewer repeating itself folds but does not count as consensus."""
        synthesizer = FindingSynthesizer(memory_store)
        findings = [make_finding(source="security"), make_finding(source="security")]

        result = synthesizer.synthesize(findings, round_number=1)

        assert len(result.findings) == 1
        assert result.to_defer[0].same_round_matches == 0

    def test_single_source_low_is_deferred_to_registry(self, memory_store, make_finding):
        synthesizer = FindingSynthesizer(memory_store)

        result = synthesizer.synthesize([make_finding(severity=Severity.LOW)], round_number=1)

        assert len(result.to_defer) == 1
        entries = memory_store.entries()
        assert len(entries) == 1
        assert entries[0].round_deferred == 1
        assert entries[0].finding.summary == "Rollback section has no concrete steps"

    def test_cross_round_consensus_promotes_entry(self, memory_store, make_finding):
        """A deferred finding that recurs applies and leaves the registry."""
        synthesizer = FindingSynthesizer(memory_store)
        synthesizer.synthesize([make_finding(source="security", severity=Severity.LOW)], round_number=1)

        result = synthesizer.synthesize(
            [make_finding(source="completeness", severity=Severity.LOW, round=2)], round_number=2
        )

        assert len(result.to_apply) == 1
        item = result.to_apply[0]
        assert item.trigger == ApplyTrigger.CROSS_ROUND
        assert item.registry_match is True
        assert item.registry_entry.round_deferred == 1
        assert set(item.all_sources) == {"security", "completeness"}
        assert len(result.promoted) == 1
        assert memory_store.entries() == []

    def test_registry_entry_is_promoted_once(self, memory_store, make_finding):
        """Two findings cannot both claim the same deferred entry."""
        synthesizer = FindingSynthesizer(memory_store, SynthesizerConfig(similarity_threshold=0.75))
        synthesizer.synthesize([make_finding(severity=Severity.LOW, summary="aaaa bbbb")], round_number=1)

        # Each is similar to the deferred summary but not to the other
        findings = [
            make_finding(source="a", severity=Severity.LOW, round=2, summary="aaaa bbbb cccc"),
            make_finding(source="b", severity=Severity.LOW, round=2, summary="dddd aaaa bbbb"),
        ]
        result = synthesizer.synthesize(findings, round_number=2)

        assert len(result.promoted) == 1
        assert [item.finding.summary for item in result.to_apply] == ["aaaa bbbb cccc"]
        assert [item.finding.summary for item in result.to_defer] == ["dddd aaaa bbbb"]
        assert [entry.finding.summary for entry in memory_store.entries()] == ["dddd aaaa bbbb"]

    def test_escalations_bypass_registry(self, memory_store, make_finding):
        """Findings without a fix go straight to the pending escalations."""
        synthesizer = FindingSynthesizer(memory_store)

        result = synthesizer.synthesize(
            [make_finding(severity=Severity.CRITICAL, fix=None)], round_number=1
        )

        assert len(result.to_escalate) == 1
        assert memory_store.entries() == []
        pending = memory_store.pending()
        assert len(pending) == 1
        assert pending[0].reason == EscalationReason.NO_FIX

    def test_escalated_match_leaves_entry_in_place(self, memory_store, make_finding):
        """A fixless recurrence does not promote the deferred entry."""
        synthesizer = FindingSynthesizer(memory_store)
        synthesizer.synthesize([make_finding(severity=Severity.LOW)], round_number=1)

        result = synthesizer.synthesize(
            [make_finding(source="other", severity=Severity.LOW, fix=None, round=2)], round_number=2
        )

        assert result.to_escalate[0].registry_entry is None
        assert result.promoted == []
        assert len(memory_store.entries()) == 1

    def test_malformed_findings_are_dropped(self, memory_store, make_finding):
        """Bad findings are isolated; the rest of the round is synthesized."""
        synthesizer = FindingSynthesizer(memory_store)
        bad_severity = dataclasses.replace(make_finding(), severity="medium")
        no_location = dataclasses.replace(make_finding(location="x"), location="")
        good = make_finding(severity=Severity.HIGH, location="other.md")

        result = synthesizer.synthesize([bad_severity, no_location, None, good], round_number=1)

        assert result.dropped == 3
        assert [item.finding.id for item in result.findings] == [good.id]

    def test_merge_keeps_most_detailed_and_most_severe(self, make_finding, memory_store):
        synthesizer = FindingSynthesizer(memory_store)
        findings = [
            make_finding(source="a", severity=Severity.LOW, summary="Rollback has no steps", fix="short"),
            make_finding(
                source="b",
                severity=Severity.MEDIUM,
                summary="Rollback has no steps listed",
                fix="preferred",
                auto_fixable=True,
            ),
        ]

        result = synthesizer.synthesize(findings, round_number=1)

        merged = result.to_apply[0].finding
        assert merged.severity == Severity.MEDIUM
        assert merged.summary == "Rollback has no steps listed"
        assert merged.fix == "preferred"
        assert merged.round == 1

    def test_synthesis_is_deterministic(self, make_finding):
        """Input order does not change grouping, ids or actions."""
        findings = [
            make_finding(source="a", severity=Severity.LOW, id="1"),
            make_finding(source="b", severity=Severity.LOW, id="2"),
            make_finding(source="c", severity=Severity.MEDIUM, location="scope", summary="Scope is vague", id="3"),
            make_finding(source="a", severity=Severity.HIGH, location="owner", summary="No owner", id="4"),
        ]

        def run(order):
            with ConsensusStore(":memory:") as store:
                result = FindingSynthesizer(store).synthesize(order, round_number=1)
                return sorted((item.finding.id, item.action.value) for item in result.findings)

        assert run(findings) == run(list(reversed(findings)))

    def test_severity_counts(self, memory_store, make_finding):
        synthesizer = FindingSynthesizer(memory_store)
        findings = [
            make_finding(severity=Severity.CRITICAL, location="a"),
            make_finding(severity=Severity.LOW, location="b"),
            make_finding(severity=Severity.LOW, location="c"),
        ]

        result = synthesizer.synthesize(findings, round_number=1)

        assert result.findings_by_severity[Severity.CRITICAL] == 1
        assert result.findings_by_severity[Severity.LOW] == 2
