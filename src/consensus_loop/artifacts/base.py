"""Artifact and mutator interfaces."""

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class MutationResult:
    """Outcome of applying one fix."""

    success: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> "MutationResult":
        return cls(success=True)

    @classmethod
    def failed(cls, reason: str) -> "MutationResult":
        return cls(success=False, reason=reason)


@runtime_checkable
class Artifact(Protocol):
    """The shared object under review."""

    def snapshot(self) -> Any:
        """Return an immutable view of the current state for reviewers."""
        ...


@runtime_checkable
class Mutator(Protocol):
    """Applies fixes to an artifact.

    ``apply`` must be atomic: a failed call leaves the artifact exactly as it
    was before the call.
    """

    async def apply(self, artifact: Any, fix: Any) -> MutationResult:
        """Apply one fix to the artifact."""
        ...
