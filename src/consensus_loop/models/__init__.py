"""Data models for Consensus Loop."""

from consensus_loop.models.escalation import (
    Decision,
    DecisionChoice,
    EscalationReason,
    EscalationResult,
    PendingItem,
    RunReport,
)
from consensus_loop.models.findings import Action, ApplyTrigger, Finding, Severity
from consensus_loop.models.rounds import (
    RoundDecision,
    RoundOutcome,
    RunState,
    RunStatus,
    SchedulerPhase,
)

__all__ = [
    "Action",
    "ApplyTrigger",
    "Decision",
    "DecisionChoice",
    "EscalationReason",
    "EscalationResult",
    "Finding",
    "PendingItem",
    "RoundDecision",
    "RoundOutcome",
    "RunReport",
    "RunState",
    "RunStatus",
    "SchedulerPhase",
    "Severity",
]
