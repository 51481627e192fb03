"""Orchestrator components for Consensus Loop."""

from consensus_loop.orchestrator.evaluator import ConvergenceEvaluator
from consensus_loop.orchestrator.pool import PoolConfig, ReviewerPool, ReviewerResult
from consensus_loop.orchestrator.scheduler import RoundScheduler
from consensus_loop.orchestrator.surface import EscalationSurface
from consensus_loop.orchestrator.synthesizer import (
    FindingMatcher,
    FindingSynthesizer,
    SynthesisResult,
    SynthesizerConfig,
)

__all__ = [
    "ConvergenceEvaluator",
    "EscalationSurface",
    "FindingMatcher",
    "FindingSynthesizer",
    "PoolConfig",
    "ReviewerPool",
    "ReviewerResult",
    "RoundScheduler",
    "SynthesisResult",
    "SynthesizerConfig",
]
