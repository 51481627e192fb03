"""Escalation and final report models."""

from dataclasses import dataclass, field
from enum import Enum

from consensus_loop.models.findings import Finding
from consensus_loop.models.rounds import RoundOutcome, RunStatus


class EscalationReason(Enum):
    """Why an item ended up in front of the decision-maker."""

    NO_FIX = "no_fix"  # No mechanical fix was proposed
    MUTATION_FAILED = "mutation_failed"  # Auto-apply was attempted and rejected
    NO_CONSENSUS = "no_consensus"  # Deferred and never corroborated
    UNVERIFIED = "unverified"  # High-stakes fix applied in the final forced round


class DecisionChoice(Enum):
    """The decision-maker's answer for one pending item."""

    APPLY = "apply"
    SKIP = "skip"


@dataclass
class PendingItem:
    """A finding awaiting a human decision, with its provenance.

    ``id`` is unique within one escalation batch. Decisions refer to it, not
    to the reviewer-assigned finding id.
    """

    finding: Finding
    reasons: list[EscalationReason]
    rounds: list[int]
    sources: list[str]
    already_applied: bool = False
    note: str = ""
    id: str = ""

    @property
    def never_reached_consensus(self) -> bool:
        return EscalationReason.NO_CONSENSUS in self.reasons

    @property
    def unverified(self) -> bool:
        return EscalationReason.UNVERIFIED in self.reasons

    @property
    def can_apply(self) -> bool:
        """Whether an APPLY answer results in a mutation."""
        return self.finding.has_fix and not self.already_applied


@dataclass(frozen=True)
class Decision:
    """Per-item answer returned by the escalation interface."""

    item_id: str
    choice: DecisionChoice
    note: str = ""


@dataclass
class EscalationResult:
    """What happened to one pending item after the decision."""

    item: PendingItem
    choice: DecisionChoice
    applied: bool = False
    detail: str = ""


@dataclass
class RunReport:
    """Complete report of a finished run."""

    run_id: str
    status: RunStatus
    rounds: list[RoundOutcome]
    escalations: list[EscalationResult] = field(default_factory=list)

    @property
    def rounds_run(self) -> int:
        return len(self.rounds)

    @property
    def total_applied(self) -> int:
        """Fixes applied automatically plus those approved at escalation."""
        automatic = sum(outcome.applied for outcome in self.rounds)
        return automatic + sum(1 for result in self.escalations if result.applied)

    @property
    def failed_reviewers(self) -> list[str]:
        failures = []
        for outcome in self.rounds:
            failures.extend(f"round {outcome.round_number}: {name}" for name in outcome.failed_reviewers)
        return failures
