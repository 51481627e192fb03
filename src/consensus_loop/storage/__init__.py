"""Durable run state for Consensus Loop."""

from consensus_loop.storage.store import (
    ConsensusStore,
    PendingEscalation,
    RegistryEntry,
)

__all__ = [
    "ConsensusStore",
    "PendingEscalation",
    "RegistryEntry",
]
