"""Escalation decision-makers for Consensus Loop."""

from consensus_loop.escalation.base import Escalator, SkipAllEscalator
from consensus_loop.escalation.console import ConsoleEscalator

__all__ = [
    "ConsoleEscalator",
    "Escalator",
    "SkipAllEscalator",
]
