"""Round scheduler driving the review/apply/evaluate loop.

State machine::

    IDLE -> DISPATCHING -> SYNTHESIZING -> APPLYING -> EVALUATING
    EVALUATING -> DISPATCHING | FINALIZING
    FINALIZING -> CONVERGED | FORCED_HALT

Reviewers only ever see a snapshot taken before dispatch, and the mutator
only runs after the join barrier, so the artifact is never read and written
at the same time. Everything a round writes to the store commits together
at the end of EVALUATING.
"""

import logging
import uuid
from typing import Any

from consensus_loop import InvalidTransitionError, RunAlreadyFinishedError
from consensus_loop.artifacts.base import MutationResult, Mutator
from consensus_loop.escalation.base import Escalator, SkipAllEscalator
from consensus_loop.models.escalation import (
    Decision,
    DecisionChoice,
    EscalationReason,
    EscalationResult,
    PendingItem,
    RunReport,
)
from consensus_loop.models.rounds import (
    RoundDecision,
    RoundOutcome,
    RunState,
    RunStatus,
    SchedulerPhase,
)
from consensus_loop.orchestrator.evaluator import ConvergenceEvaluator
from consensus_loop.orchestrator.pool import ReviewerPool
from consensus_loop.orchestrator.surface import EscalationSurface
from consensus_loop.orchestrator.synthesizer import (
    FindingSynthesizer,
    SynthesisResult,
    SynthesizedFinding,
    SynthesizerConfig,
)
from consensus_loop.storage.store import ConsensusStore

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[SchedulerPhase, set[SchedulerPhase]] = {
    SchedulerPhase.IDLE: {SchedulerPhase.DISPATCHING, SchedulerPhase.FINALIZING},
    SchedulerPhase.DISPATCHING: {SchedulerPhase.SYNTHESIZING},
    SchedulerPhase.SYNTHESIZING: {SchedulerPhase.APPLYING},
    SchedulerPhase.APPLYING: {SchedulerPhase.EVALUATING},
    SchedulerPhase.EVALUATING: {SchedulerPhase.DISPATCHING, SchedulerPhase.FINALIZING},
    SchedulerPhase.FINALIZING: {SchedulerPhase.CONVERGED, SchedulerPhase.FORCED_HALT},
    SchedulerPhase.CONVERGED: set(),
    SchedulerPhase.FORCED_HALT: set(),
}

_TERMINAL_STATUS = {
    RoundDecision.CONVERGED: RunStatus.CONVERGED,
    RoundDecision.FORCED_HALT: RunStatus.FORCED_HALT,
}


class RoundScheduler:
    """Runs bounded rounds of independent review over a mutable artifact."""

    def __init__(
        self,
        pool: ReviewerPool,
        mutator: Mutator,
        artifact: Any,
        store: ConsensusStore,
        escalator: Escalator | None = None,
        max_rounds: int = 5,
        synthesizer_config: SynthesizerConfig | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            pool: Reviewer pool to fan out to each round
            mutator: Applies approved fixes to the artifact
            artifact: The artifact under review; must provide ``snapshot()``
            store: Durable registry and run log
            escalator: End-of-run decision-maker (defaults to skipping everything)
            max_rounds: Hard ceiling on rounds for a fresh run
            synthesizer_config: Optional synthesizer configuration
        """
        if max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {max_rounds}")

        self.pool = pool
        self.mutator = mutator
        self.artifact = artifact
        self.store = store
        self.escalator = escalator or SkipAllEscalator()
        self.max_rounds = max_rounds
        self.synthesizer = FindingSynthesizer(store, synthesizer_config)
        self.surface = EscalationSurface(self.synthesizer.matcher)

        self.phase = SchedulerPhase.IDLE
        self.state: RunState | None = None

    def _transition(self, target: SchedulerPhase) -> None:
        if target not in VALID_TRANSITIONS[self.phase]:
            raise InvalidTransitionError(f"Cannot move from {self.phase.value} to {target.value}")
        logger.debug(f"Scheduler {self.phase.value} -> {target.value}")
        self.phase = target

    def start(self, fresh: bool = False, run_id: str | None = None) -> RunState:
        """Load the stored run, or start a new one.

        Args:
            fresh: Discard any stored run and start over
            run_id: Identifier for a new run (generated if omitted)

        Returns:
            The run state this scheduler now owns

        Raises:
            RegistryCorruptionError: If the stored run cannot be read
        """
        state = None if fresh else self.store.load_run()
        if state is None:
            state = self.store.start_run(run_id or f"run-{uuid.uuid4().hex[:8]}", self.max_rounds)
            logger.info(f"Started run {state.run_id} (max {state.max_rounds} rounds)")
        else:
            if state.max_rounds != self.max_rounds:
                logger.info(
                    f"Resuming with stored max_rounds={state.max_rounds} "
                    f"(ignoring {self.max_rounds})"
                )
            logger.info(
                f"Resuming run {state.run_id} after round {state.current_round} "
                f"({state.status.value})"
            )
        self.state = state
        return state

    async def run(self, fresh: bool = False) -> RunReport:
        """Run rounds until convergence or the round ceiling, then escalate.

        Args:
            fresh: Discard any stored run and start over

        Returns:
            Complete report of the run

        Raises:
            RunAlreadyFinishedError: If the stored run was already finalized
            RegistryCorruptionError: If the stored run cannot be read
        """
        state = self.start(fresh=fresh)
        if state.finalized:
            raise RunAlreadyFinishedError(
                f"Run {state.run_id} already finished ({state.status.value}); start a fresh run"
            )

        if state.status is RunStatus.RUNNING and state.current_round < state.max_rounds:
            self._transition(SchedulerPhase.DISPATCHING)
            while True:
                outcome = await self._run_round(state)
                if outcome.decision is RoundDecision.CONTINUE and state.current_round < state.max_rounds:
                    self._transition(SchedulerPhase.DISPATCHING)
                    continue
                break
        elif state.status is RunStatus.RUNNING:
            # Interrupted between a last CONTINUE round and finalization
            state.status = RunStatus.FORCED_HALT
            self.store.save_run(state)

        self._transition(SchedulerPhase.FINALIZING)
        return await self._finalize(state)

    async def _run_round(self, state: RunState) -> RoundOutcome:
        """Run one full round, from dispatch through evaluation."""
        round_number = state.current_round + 1

        snapshot = self.artifact.snapshot()
        results = await self.pool.dispatch(snapshot, round_number)

        self._transition(SchedulerPhase.SYNTHESIZING)
        findings = [finding for result in results for finding in result.findings]
        outcome = RoundOutcome(
            round_number=round_number,
            failed_reviewers=[f"{r.reviewer} ({r.error})" for r in results if r.failed],
            dropped_findings=sum(r.dropped for r in results),
        )

        with self.store.transaction():
            synthesis = self.synthesizer.synthesize(findings, round_number)
            outcome.findings_by_severity = synthesis.findings_by_severity
            outcome.dropped_findings += synthesis.dropped
            outcome.deferred = len(synthesis.to_defer)
            outcome.promoted = len(synthesis.promoted)

            self._transition(SchedulerPhase.APPLYING)
            applied, failed = await self._apply(synthesis, outcome)
            outcome.escalated = len(synthesis.to_escalate) + outcome.mutation_failures

            self._transition(SchedulerPhase.EVALUATING)
            decision = ConvergenceEvaluator(state.max_rounds).evaluate(outcome)
            outcome.decision = decision

            if decision is RoundDecision.FORCED_HALT:
                self._record_unverified(applied, failed + synthesis.to_escalate, round_number)

            self.store.append_outcome(outcome)
            state.current_round = round_number
            state.outcomes.append(outcome)
            if decision is not RoundDecision.CONTINUE:
                state.status = _TERMINAL_STATUS[decision]
            self.store.save_run(state)

        logger.info(
            f"Round {round_number} complete: {outcome.total_findings} findings, "
            f"{outcome.applied} applied, {outcome.deferred} deferred, {outcome.escalated} escalated"
        )
        return outcome

    async def _apply(
        self, synthesis: SynthesisResult, outcome: RoundOutcome
    ) -> tuple[list[SynthesizedFinding], list[SynthesizedFinding]]:
        """Apply approved fixes one at a time; failures become escalations.

        Returns:
            The findings whose fix was applied, and those whose fix failed
        """
        applied = []
        failed = []
        for item in synthesis.to_apply:
            result = await self._apply_fix(item.finding.fix)
            if result.success:
                applied.append(item)
                outcome.applied_by_trigger[item.trigger] += 1
                continue

            logger.warning(
                f"Could not apply fix for {item.finding.id} at {item.finding.location}: {result.reason}"
            )
            outcome.mutation_failures += 1
            failed.append(item)
            self.store.add_pending(
                item.finding,
                EscalationReason.MUTATION_FAILED,
                synthesis.round_number,
                sources=item.all_sources,
            )
            if item.registry_entry is not None:
                entry = item.registry_entry
                self.store.add_pending(entry.finding, EscalationReason.MUTATION_FAILED, entry.round_deferred)
        return applied, failed

    def _record_unverified(
        self,
        applied: list[SynthesizedFinding],
        unresolved: list[SynthesizedFinding],
        round_number: int,
    ) -> None:
        """Flag the final round's HIGH/CRITICAL findings; no later round will check them."""
        flagged = [(item, True) for item in applied] + [(item, False) for item in unresolved]
        for item, fix_applied in flagged:
            if item.finding.severity.is_high_stakes:
                self.store.add_pending(
                    item.finding,
                    EscalationReason.UNVERIFIED,
                    round_number,
                    sources=item.all_sources,
                    applied=fix_applied,
                )

    async def _apply_fix(self, fix: Any) -> MutationResult:
        try:
            return await self.mutator.apply(self.artifact, fix)
        except Exception as e:
            return MutationResult.failed(f"{type(e).__name__}: {e}")

    async def _finalize(self, state: RunState) -> RunReport:
        """Present the escalation batch once and record the answers."""
        survivors = self.store.entries()
        items = self.surface.build_batch(self.store.pending(), survivors)

        decisions: list[Decision] = []
        if items:
            try:
                decisions = await self.escalator.decide(items)
            except Exception as e:
                logger.warning(f"Escalation failed, skipping all {len(items)} items: {e}")

        escalations = await self._apply_decisions(items, decisions)

        with self.store.transaction():
            for entry in survivors:
                self.store.remove_entry(entry.entry_id)
            state.finalized = True
            self.store.save_run(state)

        self._transition(
            SchedulerPhase.CONVERGED
            if state.status is RunStatus.CONVERGED
            else SchedulerPhase.FORCED_HALT
        )
        logger.info(
            f"Run {state.run_id} finished: {state.status.value} after {state.current_round} rounds, "
            f"{len(items)} items escalated"
        )
        return RunReport(
            run_id=state.run_id,
            status=state.status,
            rounds=list(state.outcomes),
            escalations=escalations,
        )

    async def _apply_decisions(
        self, items: list[PendingItem], decisions: list[Decision]
    ) -> list[EscalationResult]:
        by_id = {decision.item_id: decision for decision in decisions}
        unknown = set(by_id) - {item.id for item in items}
        if unknown:
            logger.warning(f"Ignoring decisions for unknown items: {', '.join(sorted(unknown))}")

        results = []
        for item in items:
            decision = by_id.get(item.id)
            choice = decision.choice if decision else DecisionChoice.SKIP

            if choice is DecisionChoice.SKIP:
                results.append(EscalationResult(item=item, choice=choice, detail="skipped"))
            elif item.already_applied:
                results.append(EscalationResult(item=item, choice=choice, detail="fix already applied"))
            elif not item.finding.has_fix:
                results.append(
                    EscalationResult(item=item, choice=choice, detail="no mechanical fix; change by hand")
                )
            else:
                outcome = await self._apply_fix(item.finding.fix)
                if not outcome.success:
                    logger.warning(f"Approved fix for {item.id} failed: {outcome.reason}")
                results.append(
                    EscalationResult(
                        item=item,
                        choice=choice,
                        applied=outcome.success,
                        detail="applied" if outcome.success else f"failed: {outcome.reason}",
                    )
                )
        return results
