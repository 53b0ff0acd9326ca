"""SQLite ledger of archive runs.

Manages two tables:

- ``archive_runs``: one row per archive request (uuid, resolved URI,
  duplicate, final state, failing step, error, live-triple snapshot)
- ``archive_steps``: every state transition of a run with its outcome

The ledger makes partial failures inspectable and lets a retried archive
pick up the duplicate and triple snapshot captured by the failed run.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class ArchiveLedger:
    """SQLite store of archive runs and their steps.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Parent directories are created.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_tables()

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        return conn

    def _init_tables(self) -> None:
        conn = self._connect()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS archive_runs (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    uuid        TEXT NOT NULL,
                    mandataris  TEXT,
                    duplicate   TEXT,
                    state       TEXT NOT NULL DEFAULT 'pending',
                    failed_step TEXT,
                    error       TEXT,
                    snapshot    TEXT,
                    created_at  TEXT NOT NULL,
                    updated_at  TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_archive_runs_uuid
                    ON archive_runs (uuid);

                CREATE TABLE IF NOT EXISTS archive_steps (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id      INTEGER NOT NULL REFERENCES archive_runs (id),
                    state       TEXT NOT NULL,
                    outcome     TEXT NOT NULL,
                    capability  TEXT,
                    detail      TEXT,
                    at          TEXT NOT NULL
                );
            """)
            conn.commit()
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_run(self, uuid: str) -> int:
        """Create a run in 'pending' state. Returns row id."""
        now = _now_iso()
        conn = self._connect()
        try:
            cur = conn.execute(
                """INSERT INTO archive_runs (uuid, state, created_at, updated_at)
                   VALUES (?, 'pending', ?, ?)""",
                (uuid, now, now),
            )
            conn.commit()
            return cur.lastrowid  # type: ignore[return-value]
        finally:
            conn.close()

    def update_run(self, run_id: int, **kwargs: Any) -> None:
        """Update fields on a run.

        Valid keys: mandataris, duplicate, state, failed_step, error, snapshot.
        """
        valid_keys = {"mandataris", "duplicate", "state", "failed_step", "error", "snapshot"}
        invalid = set(kwargs) - valid_keys
        if invalid:
            raise ValueError(f"Invalid archive_runs keys: {invalid}")
        if not kwargs:
            return

        kwargs["updated_at"] = _now_iso()
        set_clause = ", ".join(f"{k} = ?" for k in kwargs)
        values = list(kwargs.values()) + [run_id]
        conn = self._connect()
        try:
            conn.execute(f"UPDATE archive_runs SET {set_clause} WHERE id = ?", values)
            conn.commit()
        finally:
            conn.close()

    def record_step(
        self,
        run_id: int,
        state: str,
        outcome: str,
        capability: str | None = None,
        detail: str | None = None,
    ) -> None:
        """Append a step and move the run to ``state`` in one transaction."""
        now = _now_iso()
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                """INSERT INTO archive_steps (run_id, state, outcome, capability, detail, at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (run_id, state, outcome, capability, detail, now),
            )
            conn.execute(
                "UPDATE archive_runs SET state = ?, updated_at = ? WHERE id = ?",
                (state, now, run_id),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_run(self, run_id: int) -> dict[str, Any] | None:
        """Get a single run record."""
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM archive_runs WHERE id = ?", (run_id,)
            ).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    def get_steps(self, run_id: int) -> list[dict[str, Any]]:
        """Get the steps of a run in execution order."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM archive_steps WHERE run_id = ? ORDER BY id", (run_id,)
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def get_recent_runs(self, uuid: str | None = None, limit: int = 10) -> list[dict[str, Any]]:
        """Get the most recent runs, optionally for one uuid."""
        conn = self._connect()
        try:
            if uuid is None:
                rows = conn.execute(
                    "SELECT * FROM archive_runs ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM archive_runs WHERE uuid = ? ORDER BY id DESC LIMIT ?",
                    (uuid, limit),
                ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def last_failed_run(self, uuid: str) -> dict[str, Any] | None:
        """Return the latest run for ``uuid`` if it ended in 'failed'.

        A later successful or not-found run supersedes it.
        """
        runs = self.get_recent_runs(uuid, limit=1)
        if runs and runs[0]["state"] == "failed":
            return runs[0]
        return None


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(timezone.utc).isoformat()
