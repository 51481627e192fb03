"""Reviewer interface."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Reviewer(Protocol):
    """Anything that can inspect an artifact snapshot and report findings.

    Implementations return a list whose items are either ``Finding`` objects
    or mappings with ``severity``, ``location`` and ``summary`` keys (plus
    optional ``id``, ``fix`` and ``auto_fixable``). The pool stamps the round
    number and the reviewer's ``name`` onto mappings. A reviewer must never
    mutate the artifact.
    """

    name: str

    async def review(self, snapshot: Any) -> list[Any]:
        """Review one snapshot of the artifact."""
        ...
