"""Pytest configuration and shared fixtures."""

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from consensus_loop.models.findings import Finding, Severity
from consensus_loop.storage.store import ConsensusStore

SAMPLE_PLAN = """\
# Migration plan

## Scope
Move the billing service to the new queue.

## Rollback
TBD
"""


@pytest.fixture
def make_finding() -> Callable[..., Finding]:
    """Factory for findings with sensible defaults."""
    counter = {"n": 0}

    def _make(
        source: str = "security",
        severity: Severity = Severity.MEDIUM,
        location: str = "plan.md#rollback",
        summary: str = "Rollback section has no concrete steps",
        fix: Any = "add-rollback-steps",
        round: int = 1,
        auto_fixable: bool = False,
        id: str | None = None,
    ) -> Finding:
        counter["n"] += 1
        return Finding(
            id=id or f"f-{counter['n']}",
            round=round,
            source=source,
            severity=severity,
            location=location,
            summary=summary,
            fix=fix,
            auto_fixable=auto_fixable,
        )

    return _make


@pytest.fixture
def memory_store() -> Iterator[ConsensusStore]:
    """Throwaway in-memory store."""
    store = ConsensusStore(":memory:")
    yield store
    store.close()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Directory for on-disk run state."""
    return tmp_path / ".consensus"


@pytest.fixture
def sample_plan(tmp_path: Path) -> Path:
    """A small document to review."""
    path = tmp_path / "plan.md"
    path.write_text(SAMPLE_PLAN, encoding="utf-8")
    return path
