"""Durable SQLite store for the consensus registry and run log.

One database holds everything a resumed run needs:

- ``run``: the single run row (id, max rounds, current round, status).
- ``registry``: deferred findings awaiting cross-round corroboration.
- ``round_log``: append-only RoundOutcome records keyed by round number.
- ``pending_escalations``: findings routed straight to the escalation surface.

Writes for one round are grouped with ``transaction()`` so an interrupted
round leaves no trace and is re-run from the same registry state.
"""

import json
import logging
import os
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from consensus_loop import RegistryCorruptionError
from consensus_loop.models.escalation import EscalationReason
from consensus_loop.models.findings import Finding, Severity
from consensus_loop.models.rounds import RoundOutcome, RunState, RunStatus

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
DB_FILENAME = "consensus.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS run (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    run_id TEXT NOT NULL,
    max_rounds INTEGER NOT NULL,
    current_round INTEGER NOT NULL,
    status TEXT NOT NULL,
    finalized INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS registry (
    entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL,
    location_key TEXT NOT NULL,
    round_deferred INTEGER NOT NULL,
    finding_id TEXT NOT NULL,
    source TEXT NOT NULL,
    severity TEXT NOT NULL,
    summary TEXT NOT NULL,
    location TEXT NOT NULL,
    fix TEXT,
    auto_fixable INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS registry_location ON registry (location_key);
CREATE TABLE IF NOT EXISTS round_log (
    round_number INTEGER PRIMARY KEY,
    outcome TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS pending_escalations (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    round INTEGER NOT NULL,
    reason TEXT NOT NULL,
    finding TEXT NOT NULL,
    sources TEXT NOT NULL,
    applied INTEGER NOT NULL DEFAULT 0
);
"""


@dataclass(frozen=True)
class RegistryEntry:
    """A deferred finding held for possible promotion in a later round."""

    key: str
    location_key: str
    finding: Finding
    round_deferred: int
    entry_id: int | None = None


@dataclass(frozen=True)
class PendingEscalation:
    """A finding routed to the escalation surface during a round."""

    round: int
    reason: EscalationReason
    finding: Finding
    sources: list[str] = field(default_factory=list)
    applied: bool = False


class ConsensusStore:
    """SQLite-backed registry, run log and pending escalation list."""

    def __init__(self, path: Path | str) -> None:
        """Open (or create) the store.

        Args:
            path: Database file path, or ":memory:" for a throwaway store

        Raises:
            RegistryCorruptionError: If an existing database cannot be read
        """
        self.path = str(path)
        try:
            self._conn = sqlite3.connect(self.path, isolation_level=None)
        except sqlite3.DatabaseError as e:
            raise RegistryCorruptionError(f"Cannot open state database {self.path}: {e}") from e

        try:
            self._conn.row_factory = sqlite3.Row
            self._initialize()
        except sqlite3.DatabaseError as e:
            self._conn.close()
            raise RegistryCorruptionError(f"Cannot open state database {self.path}: {e}") from e
        except RegistryCorruptionError:
            self._conn.close()
            raise

    @classmethod
    def in_directory(cls, state_dir: Path | str, fresh: bool = False) -> "ConsensusStore":
        """Open the store kept in a state directory, creating the directory.

        Args:
            state_dir: Directory holding the state database
            fresh: Rebuild the database if it is unreadable or from another
                schema version, keeping the old file aside as ``*.corrupt-<ts>``

        Raises:
            RegistryCorruptionError: If the database is unreadable and ``fresh`` is not set
        """
        directory = Path(state_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / DB_FILENAME
        try:
            return cls(path)
        except RegistryCorruptionError as e:
            if not fresh or not path.exists():
                raise
            backup = _move_aside(path)
            logger.warning(f"{e}; moved it to {backup.name} and starting over")
            return cls(path)

    def _initialize(self) -> None:
        version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if version not in (0, SCHEMA_VERSION):
            raise RegistryCorruptionError(
                f"State database {self.path} has schema version {version}, "
                f"expected {SCHEMA_VERSION}"
            )
        check = self._conn.execute("PRAGMA quick_check").fetchone()[0]
        if check != "ok":
            raise RegistryCorruptionError(f"State database {self.path} failed integrity check: {check}")
        self._conn.executescript(_SCHEMA)
        self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> "ConsensusStore":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes atomically; nested calls join the outer transaction."""
        if self._conn.in_transaction:
            yield
            return

        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")

    # Run row

    def start_run(self, run_id: str, max_rounds: int) -> RunState:
        """Discard any previous run and start a fresh one."""
        with self.transaction():
            for table in ("run", "registry", "round_log", "pending_escalations"):
                self._conn.execute(f"DELETE FROM {table}")
            self._conn.execute(
                "INSERT INTO run (id, run_id, max_rounds, current_round, status, finalized) "
                "VALUES (1, ?, ?, 0, ?, 0)",
                (run_id, max_rounds, RunStatus.RUNNING.value),
            )
        logger.debug(f"Started run {run_id} in {self.path}")
        return RunState(run_id=run_id, max_rounds=max_rounds, registry=self)

    def load_run(self) -> RunState | None:
        """Reconstruct the run state of a previous run, if there is one.

        Raises:
            RegistryCorruptionError: If stored rows do not decode
        """
        try:
            row = self._conn.execute("SELECT * FROM run WHERE id = 1").fetchone()
            if row is None:
                return None
            state = RunState(
                run_id=row["run_id"],
                max_rounds=int(row["max_rounds"]),
                current_round=int(row["current_round"]),
                status=RunStatus(row["status"]),
                registry=self,
                outcomes=self.outcomes(),
                finalized=bool(row["finalized"]),
            )
        except (sqlite3.DatabaseError, ValueError, KeyError, TypeError) as e:
            raise RegistryCorruptionError(f"Cannot read run state from {self.path}: {e}") from e

        # The run row and the log are written in the same transaction
        logged = state.outcomes[-1].round_number if state.outcomes else 0
        if logged != state.current_round:
            raise RegistryCorruptionError(
                f"Run log ends at round {logged} but run row says round {state.current_round}"
            )
        return state

    def save_run(self, state: RunState) -> None:
        """Persist the mutable fields of the run row."""
        self._conn.execute(
            "UPDATE run SET max_rounds = ?, current_round = ?, status = ?, finalized = ? WHERE id = 1",
            (state.max_rounds, state.current_round, state.status.value, int(state.finalized)),
        )

    # Registry

    def add_entry(self, entry: RegistryEntry) -> RegistryEntry:
        """Append a deferred finding to the registry."""
        finding = entry.finding
        cursor = self._conn.execute(
            "INSERT INTO registry (key, location_key, round_deferred, finding_id, source, "
            "severity, summary, location, fix, auto_fixable) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.key,
                entry.location_key,
                entry.round_deferred,
                finding.id,
                finding.source,
                finding.severity.value,
                finding.summary,
                finding.location,
                json.dumps(finding.fix),
                int(finding.auto_fixable),
            ),
        )
        return replace(entry, entry_id=cursor.lastrowid)

    def remove_entry(self, entry_id: int) -> None:
        """Remove a registry entry (promotion or end-of-run escalation)."""
        self._conn.execute("DELETE FROM registry WHERE entry_id = ?", (entry_id,))

    def entries(self) -> list[RegistryEntry]:
        """All registry entries, oldest deferral first."""
        rows = self._conn.execute(
            "SELECT * FROM registry ORDER BY round_deferred, entry_id"
        ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def entries_for_location(self, location_key: str) -> list[RegistryEntry]:
        """Registry entries at a normalized location, oldest deferral first."""
        rows = self._conn.execute(
            "SELECT * FROM registry WHERE location_key = ? ORDER BY round_deferred, entry_id",
            (location_key,),
        ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def _row_to_entry(self, row: sqlite3.Row) -> RegistryEntry:
        try:
            finding = Finding(
                id=row["finding_id"],
                round=int(row["round_deferred"]),
                source=row["source"],
                severity=Severity(row["severity"]),
                location=row["location"],
                summary=row["summary"],
                fix=json.loads(row["fix"]) if row["fix"] is not None else None,
                auto_fixable=bool(row["auto_fixable"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise RegistryCorruptionError(f"Registry entry {row['entry_id']} is unreadable: {e}") from e

        return RegistryEntry(
            key=row["key"],
            location_key=row["location_key"],
            finding=finding,
            round_deferred=int(row["round_deferred"]),
            entry_id=int(row["entry_id"]),
        )

    # Run log

    def append_outcome(self, outcome: RoundOutcome) -> None:
        """Append a round outcome to the run log."""
        self._conn.execute(
            "INSERT INTO round_log (round_number, outcome) VALUES (?, ?)",
            (outcome.round_number, json.dumps(outcome.to_dict())),
        )

    def outcomes(self) -> list[RoundOutcome]:
        """The run log in round order."""
        rows = self._conn.execute("SELECT * FROM round_log ORDER BY round_number").fetchall()
        try:
            return [RoundOutcome.from_dict(json.loads(row["outcome"])) for row in rows]
        except (ValueError, KeyError, TypeError) as e:
            raise RegistryCorruptionError(f"Run log is unreadable: {e}") from e

    # Pending escalations

    def add_pending(
        self,
        finding: Finding,
        reason: EscalationReason,
        round_number: int,
        sources: list[str] | None = None,
        applied: bool = False,
    ) -> None:
        """Record a finding that bypasses the registry for the escalation surface.

        Args:
            finding: The finding to escalate
            reason: Why it is escalated
            round_number: Round it was raised in
            sources: Every reviewer that raised it (defaults to the finding's source)
            applied: Whether its fix is already in the artifact
        """
        self._conn.execute(
            "INSERT INTO pending_escalations (round, reason, finding, sources, applied) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                round_number,
                reason.value,
                json.dumps(finding.to_dict()),
                json.dumps(sources or [finding.source]),
                int(applied),
            ),
        )

    def pending(self) -> list[PendingEscalation]:
        """Pending escalations in the order they were recorded."""
        rows = self._conn.execute("SELECT * FROM pending_escalations ORDER BY seq").fetchall()
        try:
            return [
                PendingEscalation(
                    round=int(row["round"]),
                    reason=EscalationReason(row["reason"]),
                    finding=Finding.from_dict(json.loads(row["finding"])),
                    sources=[str(s) for s in json.loads(row["sources"])],
                    applied=bool(row["applied"]),
                )
                for row in rows
            ]
        except (ValueError, KeyError, TypeError) as e:
            raise RegistryCorruptionError(f"Pending escalations are unreadable: {e}") from e


def _move_aside(path: Path) -> Path:
    """Rename an unreadable database (and its journal) out of the way."""
    backup = path.with_name(f"{path.name}.corrupt-{int(time.time())}")
    os.replace(path, backup)
    for suffix in ("-journal", "-wal", "-shm"):
        leftover = path.with_name(path.name + suffix)
        if leftover.exists():
            leftover.unlink()
    return backup
