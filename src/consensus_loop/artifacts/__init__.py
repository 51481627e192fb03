"""Artifacts and mutators for Consensus Loop."""

from consensus_loop.artifacts.base import Artifact, MutationResult, Mutator
from consensus_loop.artifacts.document import DocumentMutator, DocumentSnapshot, TextDocument

__all__ = [
    "Artifact",
    "DocumentMutator",
    "DocumentSnapshot",
    "MutationResult",
    "Mutator",
    "TextDocument",
]
