"""Round and run state models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from consensus_loop.models.findings import ApplyTrigger, Severity

if TYPE_CHECKING:
    from consensus_loop.storage.store import ConsensusStore


class RunStatus(Enum):
    """Lifecycle status of a run."""

    RUNNING = "running"
    CONVERGED = "converged"
    FORCED_HALT = "forced_halt"


class RoundDecision(Enum):
    """Convergence Evaluator verdict for a completed round."""

    CONTINUE = "continue"
    CONVERGED = "converged"
    FORCED_HALT = "forced_halt"


class SchedulerPhase(Enum):
    """States of the round scheduler."""

    IDLE = "idle"
    DISPATCHING = "dispatching"
    SYNTHESIZING = "synthesizing"
    APPLYING = "applying"
    EVALUATING = "evaluating"
    FINALIZING = "finalizing"
    CONVERGED = "converged"
    FORCED_HALT = "forced_halt"


@dataclass
class RoundOutcome:
    """Summary of one completed round, kept in the append-only run log."""

    round_number: int
    findings_by_severity: dict[Severity, int] = field(
        default_factory=lambda: dict.fromkeys(Severity, 0)
    )
    applied_by_trigger: dict[ApplyTrigger, int] = field(
        default_factory=lambda: dict.fromkeys(ApplyTrigger, 0)
    )
    deferred: int = 0
    escalated: int = 0
    promoted: int = 0
    mutation_failures: int = 0
    dropped_findings: int = 0
    failed_reviewers: list[str] = field(default_factory=list)
    decision: RoundDecision | None = None

    @property
    def total_findings(self) -> int:
        """Findings raised this round after same-round deduplication."""
        return sum(self.findings_by_severity.values())

    @property
    def applied(self) -> int:
        """Findings auto-applied this round, over all triggers."""
        return sum(self.applied_by_trigger.values())

    @property
    def has_high_stakes(self) -> bool:
        """Check if the round raised any HIGH or CRITICAL finding."""
        return any(
            count > 0 for severity, count in self.findings_by_severity.items()
            if severity.is_high_stakes
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "round_number": self.round_number,
            "findings_by_severity": {s.value: n for s, n in self.findings_by_severity.items()},
            "applied_by_trigger": {t.value: n for t, n in self.applied_by_trigger.items()},
            "deferred": self.deferred,
            "escalated": self.escalated,
            "promoted": self.promoted,
            "mutation_failures": self.mutation_failures,
            "dropped_findings": self.dropped_findings,
            "failed_reviewers": list(self.failed_reviewers),
            "decision": self.decision.value if self.decision else None,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "RoundOutcome":
        """Rebuild an outcome from its serialized form."""
        by_severity = dict.fromkeys(Severity, 0)
        for key, count in raw.get("findings_by_severity", {}).items():
            by_severity[Severity(key)] = int(count)

        by_trigger = dict.fromkeys(ApplyTrigger, 0)
        for key, count in raw.get("applied_by_trigger", {}).items():
            by_trigger[ApplyTrigger(key)] = int(count)

        decision = raw.get("decision")
        return cls(
            round_number=int(raw["round_number"]),
            findings_by_severity=by_severity,
            applied_by_trigger=by_trigger,
            deferred=int(raw.get("deferred", 0)),
            escalated=int(raw.get("escalated", 0)),
            promoted=int(raw.get("promoted", 0)),
            mutation_failures=int(raw.get("mutation_failures", 0)),
            dropped_findings=int(raw.get("dropped_findings", 0)),
            failed_reviewers=list(raw.get("failed_reviewers", [])),
            decision=RoundDecision(decision) if decision else None,
        )


@dataclass
class RunState:
    """Top-level session state, owned by the round scheduler."""

    run_id: str
    max_rounds: int
    current_round: int = 0
    status: RunStatus = RunStatus.RUNNING
    registry: "ConsensusStore | None" = None
    outcomes: list[RoundOutcome] = field(default_factory=list)
    finalized: bool = False
