"""Append-only, hash-chained Run Ledger backed by SQLite.

The ledger is the Deployment Record store.  The monitor and the ``status``
and ``history`` commands are projections of it; none of them keeps run
state of its own.

- Append-only: ``append()`` is the only write path.
- Hash-chained per run: every entry carries the seal of the run's previous
  entry, so editing or deleting a row breaks ``verify_chain()``.
- WAL journal so a ``monitor --live`` reader never blocks a running pipeline.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from shipwright.core.hasher import compute_entry_hash
from shipwright.models.ledger import LedgerEntry

_TABLE = "deployment_ledger"

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {_TABLE} (
    seq                   INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id              TEXT NOT NULL UNIQUE,
    run_id                TEXT NOT NULL,
    instance_name         TEXT NOT NULL DEFAULT '',
    stage_id              TEXT NOT NULL,
    state_transition      TEXT NOT NULL,
    timestamp_utc         TEXT NOT NULL,
    input_hash            TEXT NOT NULL DEFAULT '',
    output_hash           TEXT NOT NULL DEFAULT '',
    artifact_references   TEXT NOT NULL DEFAULT '[]',
    detail                TEXT NOT NULL DEFAULT '{{}}',
    pipeline_version      TEXT NOT NULL,
    previous_entry_hash   TEXT NOT NULL DEFAULT '',
    entry_hash            TEXT NOT NULL UNIQUE
);
CREATE INDEX IF NOT EXISTS idx_ledger_run ON {_TABLE}(run_id, seq);
CREATE INDEX IF NOT EXISTS idx_ledger_instance ON {_TABLE}(instance_name, seq);
"""

# LedgerEntry fields stored as columns of the same name.
_FIELDS = (
    "entry_id",
    "run_id",
    "instance_name",
    "stage_id",
    "state_transition",
    "timestamp_utc",
    "input_hash",
    "output_hash",
    "artifact_references",
    "detail",
    "pipeline_version",
    "previous_entry_hash",
    "entry_hash",
)
_JSON_FIELDS = frozenset({"artifact_references", "detail"})


class LedgerIntegrityError(RuntimeError):
    """Raised when a run's hash chain is broken or an entry was altered."""


class RunLedger:
    """Append-only, hash-chained ledger of run and stage transitions.

    Parameters
    ----------
    db_path:
        SQLite database file; it and its parent directory are created on
        first use.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            conn.executescript(_SCHEMA)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Link *entry* to its run's chain, seal it and store it.

        Reading the chain head and inserting happen in one immediate
        transaction, so concurrent writers cannot fork a run's chain.
        Returns the sealed entry.
        """
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                head = conn.execute(
                    f"SELECT entry_hash FROM {_TABLE} WHERE run_id = ? "
                    "ORDER BY seq DESC LIMIT 1",
                    (entry.run_id,),
                ).fetchone()
                linked = entry.model_copy(
                    update={
                        "previous_entry_hash": head["entry_hash"] if head else "",
                        "entry_hash": "",
                    }
                )
                sealed = linked.model_copy(
                    update={"entry_hash": compute_entry_hash(linked.model_dump(mode="json"))}
                )
                row = self._to_row(sealed)
                conn.execute(
                    f"INSERT INTO {_TABLE} ({', '.join(_FIELDS)}) "
                    f"VALUES ({', '.join('?' for _ in _FIELDS)})",
                    [row[name] for name in _FIELDS],
                )
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        return sealed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """All entries of a run, oldest first."""
        return self._select("run_id = ?", (run_id,))

    def get_latest(self, run_id: str) -> LedgerEntry | None:
        entries = self._select("run_id = ?", (run_id,), newest_first=True, limit=1)
        return entries[0] if entries else None

    def get_all_run_ids(self) -> list[str]:
        """Every run id, most recently started first."""
        return self._run_ids("", ())

    def get_instance_run_ids(self, instance_name: str) -> list[str]:
        """Run ids that targeted *instance_name*, most recently started first."""
        return self._run_ids("WHERE instance_name = ?", (instance_name,))

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Re-seal every entry of *run_id* and check each link.

        Returns True for an intact (or empty) chain; raises
        ``LedgerIntegrityError`` at the first broken link or altered entry.
        """
        expected_previous = ""
        for position, entry in enumerate(self.get_run_entries(run_id)):
            if entry.previous_entry_hash != expected_previous:
                raise LedgerIntegrityError(
                    f"Run {run_id}: entry #{position} ({entry.entry_id}) does not "
                    f"link to its predecessor"
                )
            resealed = compute_entry_hash(
                entry.model_copy(update={"entry_hash": ""}).model_dump(mode="json")
            )
            if resealed != entry.entry_hash:
                raise LedgerIntegrityError(
                    f"Run {run_id}: entry #{position} ({entry.entry_id}, "
                    f"{entry.stage_id} {entry.state_transition}) was altered"
                )
            expected_previous = entry.entry_hash
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _select(
        self,
        where: str,
        params: tuple[Any, ...],
        *,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[LedgerEntry]:
        sql = (
            f"SELECT {', '.join(_FIELDS)} FROM {_TABLE} WHERE {where} "
            f"ORDER BY seq {'DESC' if newest_first else 'ASC'}"
        )
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._from_row(row) for row in rows]

    def _run_ids(self, where: str, params: tuple[Any, ...]) -> list[str]:
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT run_id FROM {_TABLE} {where} "
                "GROUP BY run_id ORDER BY MIN(seq) DESC",
                params,
            ).fetchall()
        return [row["run_id"] for row in rows]

    @staticmethod
    def _to_row(entry: LedgerEntry) -> dict[str, Any]:
        data = entry.model_dump(mode="json")
        return {
            name: json.dumps(data[name], sort_keys=True) if name in _JSON_FIELDS else data[name]
            for name in _FIELDS
        }

    @staticmethod
    def _from_row(row: sqlite3.Row) -> LedgerEntry:
        return LedgerEntry.model_validate(
            {
                name: json.loads(row[name]) if name in _JSON_FIELDS else row[name]
                for name in _FIELDS
            }
        )
