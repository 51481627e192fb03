"""Convergence evaluator deciding whether another round is needed."""

import logging

from consensus_loop.models.rounds import RoundDecision, RoundOutcome

logger = logging.getLogger(__name__)


class ConvergenceEvaluator:
    """Decides continue / converged / forced halt from a round's outcome."""

    def __init__(self, max_rounds: int) -> None:
        if max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {max_rounds}")
        self.max_rounds = max_rounds

    def evaluate(self, outcome: RoundOutcome) -> RoundDecision:
        """Judge one completed round.

        - A clean round (no findings at all) converges.
        - A round with any HIGH/CRITICAL finding must be followed by another
          round to verify the fix, unless the round ceiling has been reached.
        - Otherwise only LOW/MEDIUM findings remain and the run converges.
        """
        if outcome.total_findings == 0:
            decision = RoundDecision.CONVERGED
        elif outcome.has_high_stakes:
            if outcome.round_number >= self.max_rounds:
                decision = RoundDecision.FORCED_HALT
            else:
                decision = RoundDecision.CONTINUE
        else:
            decision = RoundDecision.CONVERGED

        logger.info(f"Round {outcome.round_number}/{self.max_rounds}: {decision.value}")
        return decision
