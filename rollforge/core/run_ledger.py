"""Append-only, hash-chained rollout ledger backed by SQLite.

One row per rollout state transition.  The artifact tag, digest and
registered revision are recorded in ``details`` as each becomes known, so
a failed run can be diagnosed from the ledger alone.  ``rollforge
history`` is a projection of this table.

Rows are never updated or deleted.  Each row carries the SHA-256 seal of
the previous row of the same run; ``verify_chain`` detects edits.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from rollforge.core.hasher import compute_entry_hash
from rollforge.models.ledger import LedgerEntry

_SCHEMA = """
CREATE TABLE IF NOT EXISTS rollout_transitions (
    seq               INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id          TEXT NOT NULL UNIQUE,
    run_id            TEXT NOT NULL,
    environment       TEXT NOT NULL,
    from_state        TEXT NOT NULL,
    to_state          TEXT NOT NULL,
    recorded_at       TEXT NOT NULL,
    details           TEXT NOT NULL DEFAULT '{}',
    pipeline_version  TEXT NOT NULL,
    prev_hash         TEXT NOT NULL DEFAULT '',
    entry_hash        TEXT NOT NULL UNIQUE
);
CREATE INDEX IF NOT EXISTS ix_transitions_run ON rollout_transitions(run_id, seq);
CREATE INDEX IF NOT EXISTS ix_transitions_env ON rollout_transitions(environment, seq);
"""


class LedgerIntegrityError(RuntimeError):
    """Raised when a run's hash chain does not verify."""


class RunLedger:
    """Hash-chained record of rollout transitions.

    Parameters
    ----------
    db_path:
        SQLite database file.  Parent directories are created as needed.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # Reading the chain head and inserting must not interleave.
        self._append_lock = threading.Lock()
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal *entry* onto its run's chain and store it.

        The only write path.  Returns the sealed copy.
        """
        from_state, _, to_state = entry.state_transition.partition("->")
        with self._append_lock, self._connect() as conn:
            head = conn.execute(
                "SELECT entry_hash FROM rollout_transitions "
                "WHERE run_id = ? ORDER BY seq DESC LIMIT 1",
                (entry.run_id,),
            ).fetchone()
            linked = entry.model_copy(
                update={"previous_entry_hash": head[0] if head else "", "entry_hash": ""}
            )
            sealed = linked.model_copy(
                update={"entry_hash": compute_entry_hash(linked.model_dump(mode="json"))}
            )
            conn.execute(
                "INSERT INTO rollout_transitions (entry_id, run_id, environment, "
                "from_state, to_state, recorded_at, details, pipeline_version, "
                "prev_hash, entry_hash) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    sealed.entry_id,
                    sealed.run_id,
                    sealed.environment,
                    from_state,
                    to_state,
                    sealed.timestamp_utc.isoformat(),
                    json.dumps(sealed.details, sort_keys=True),
                    sealed.pipeline_version,
                    sealed.previous_entry_hash,
                    sealed.entry_hash,
                ),
            )
        return sealed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_latest(self, run_id: str) -> LedgerEntry | None:
        """The most recent transition of *run_id*, or None."""
        entries = self._select("run_id = ?", (run_id,), newest_first=True, limit=1)
        return entries[0] if entries else None

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Every transition of *run_id*, oldest first."""
        return self._select("run_id = ?", (run_id,))

    def get_environment_run_ids(self, environment: str, limit: int = 20) -> list[str]:
        """Runs that touched *environment*, most recently active first."""
        return self._run_ids("WHERE environment = ?", (environment,), limit)

    def get_all_run_ids(self) -> list[str]:
        return self._run_ids("", (), -1)

    def _select(
        self,
        where: str,
        params: tuple[Any, ...],
        *,
        newest_first: bool = False,
        limit: int = -1,
    ) -> list[LedgerEntry]:
        order = "DESC" if newest_first else "ASC"
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM rollout_transitions WHERE {where} "
                f"ORDER BY seq {order} LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [_entry_from_row(row) for row in rows]

    def _run_ids(self, where: str, params: tuple[Any, ...], limit: int) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT run_id, MAX(seq) AS last_seq FROM rollout_transitions {where} "
                "GROUP BY run_id ORDER BY last_seq DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [row["run_id"] for row in rows]

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Return True if *run_id*'s chain verifies.

        Raises
        ------
        LedgerIntegrityError
            At the first entry whose link or seal does not match.
        """
        expected_prev = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != expected_prev:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id} "
                    f"({entry.state_transition}): previous hash does not match"
                )
            if entry.entry_hash != compute_entry_hash(entry.model_dump(mode="json")):
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id} ({entry.state_transition})"
                )
            expected_prev = entry.entry_hash
        return True


def _entry_from_row(row: sqlite3.Row) -> LedgerEntry:
    return LedgerEntry(
        entry_id=row["entry_id"],
        run_id=row["run_id"],
        environment=row["environment"],
        state_transition=f"{row['from_state']}->{row['to_state']}",
        timestamp_utc=row["recorded_at"],
        details=json.loads(row["details"]),
        pipeline_version=row["pipeline_version"],
        previous_entry_hash=row["prev_hash"],
        entry_hash=row["entry_hash"],
    )
