"""Consensus Loop - consensus-gated convergence controller for multi-reviewer workflows."""

__version__ = "0.1.0"


class ConsensusLoopError(Exception):
    """Base class for errors raised by consensus-loop."""

    pass


class RegistryCorruptionError(ConsensusLoopError):
    """Raised when persisted run state cannot be read back on resume."""

    pass


class RunAlreadyFinishedError(ConsensusLoopError):
    """Raised when resuming a run that was already finalized."""

    pass


class InvalidTransitionError(ConsensusLoopError):
    """Raised when the round scheduler attempts an undefined transition."""

    pass
