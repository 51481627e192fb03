"""Tests for the escalation surface."""

from consensus_loop.models.escalation import EscalationReason
from consensus_loop.models.findings import Severity
from consensus_loop.orchestrator.surface import EscalationSurface
from consensus_loop.storage.store import PendingEscalation, RegistryEntry


def _survivor(finding, round_deferred):
    return RegistryEntry(
        key="k",
        location_key=finding.location.lower(),
        finding=finding,
        round_deferred=round_deferred,
        entry_id=round_deferred,
    )


class TestEscalationSurface:
    """Tests for EscalationSurface."""

    def test_registry_survivors_never_reached_consensus(self, make_finding):
        finding = make_finding(severity=Severity.LOW)

        items = EscalationSurface().build_batch([], [_survivor(finding, 1)])

        assert len(items) == 1
        assert items[0].never_reached_consensus
        assert items[0].rounds == [1]
        assert items[0].sources == ["security"]
        assert "never achieved consensus" in items[0].note

    def test_matching_items_are_merged_with_provenance(self, make_finding):
        """The same issue seen in several rounds is presented once."""
        no_fix = make_finding(source="security", fix=None, round=1)
        later = make_finding(source="completeness", fix=None, round=3)
        deferred = make_finding(source="style", severity=Severity.LOW, round=2)

        items = EscalationSurface().build_batch(
            [
                PendingEscalation(round=1, reason=EscalationReason.NO_FIX, finding=no_fix),
                PendingEscalation(round=3, reason=EscalationReason.NO_FIX, finding=later),
            ],
            [_survivor(deferred, 2)],
        )

        assert len(items) == 1
        item = items[0]
        assert item.rounds == [1, 2, 3]
        assert item.sources == ["security", "completeness", "style"]
        assert item.reasons == [EscalationReason.NO_FIX, EscalationReason.NO_CONSENSUS]
        assert item.finding is later

    def test_unverified_items_are_already_applied(self, make_finding):
        finding = make_finding(severity=Severity.CRITICAL, round=3)

        items = EscalationSurface().build_batch(
            [PendingEscalation(round=3, reason=EscalationReason.UNVERIFIED, finding=finding, applied=True)], []
        )

        assert items[0].unverified
        assert items[0].already_applied
        assert not items[0].can_apply
        assert "unverified" in items[0].note

    def test_distinct_findings_stay_separate(self, make_finding):
        items = EscalationSurface().build_batch(
            [
                PendingEscalation(round=1, reason=EscalationReason.NO_FIX, finding=make_finding(location="a.md", fix=None)),
                PendingEscalation(round=1, reason=EscalationReason.NO_FIX, finding=make_finding(location="b.md", fix=None)),
            ],
            [],
        )

        assert [item.finding.location for item in items] == ["a.md", "b.md"]

    def test_unverified_failed_fix_can_still_be_applied(self, make_finding):
        """A HIGH finding whose fix failed in the last round stays applicable."""
        finding = make_finding(severity=Severity.HIGH, round=3)

        items = EscalationSurface().build_batch(
            [
                PendingEscalation(round=3, reason=EscalationReason.MUTATION_FAILED, finding=finding),
                PendingEscalation(round=3, reason=EscalationReason.UNVERIFIED, finding=finding),
            ],
            [],
        )

        assert len(items) == 1
        assert items[0].reasons == [EscalationReason.MUTATION_FAILED, EscalationReason.UNVERIFIED]
        assert not items[0].already_applied
        assert items[0].can_apply

    def test_item_ids_are_unique_when_finding_ids_collide(self, make_finding):
        """Reviewers that number findings from 1 still get distinct items."""
        items = EscalationSurface().build_batch(
            [
                PendingEscalation(
                    round=1,
                    reason=EscalationReason.NO_FIX,
                    finding=make_finding(id="1", location="a.md", summary="Owner is missing", fix=None),
                ),
                PendingEscalation(
                    round=1,
                    reason=EscalationReason.NO_FIX,
                    finding=make_finding(id="1", location="b.md", summary="Dates are inconsistent", fix=None),
                ),
            ],
            [],
        )

        assert [item.finding.id for item in items] == ["1", "1"]
        assert len({item.id for item in items}) == 2

    def test_every_reviewer_is_kept_as_a_source(self, make_finding):
        finding = make_finding(source="security", severity=Severity.CRITICAL, fix=None)

        items = EscalationSurface().build_batch(
            [
                PendingEscalation(
                    round=1,
                    reason=EscalationReason.NO_FIX,
                    finding=finding,
                    sources=["security", "completeness"],
                )
            ],
            [_survivor(make_finding(source="style", severity=Severity.LOW), 2)],
        )

        assert len(items) == 1
        assert items[0].sources == ["security", "completeness", "style"]
