from __future__ import annotations

"""
SQLite job history for Ticket Printer.

Features:
- DB path resolution with env/XDG defaults
- PRAGMAs for reliability: foreign_keys=ON, WAL, synchronous=NORMAL
- Schema bootstrap and simple migrations (schema_version)
- Upsert of terminal print jobs with their ordered attempts
- Lookups used once a job has left the in-memory retention window

Writes happen on print threads, so every call opens its own short-lived
connection; a module lock serializes writers.
"""

import logging
import os
import sqlite3
import threading
from contextlib import closing
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_WRITE_LOCK = threading.Lock()


# ----- Path resolution -------------------------------------------------------


def get_db_path() -> str:
    """
    Resolve the database path using:
    1) TICKETPRINTER_DB_PATH (env)
    2) $XDG_DATA_HOME/ticketprinter/history.db
    3) ~/.local/share/ticketprinter/history.db
    """
    if "TICKETPRINTER_DB_PATH" in os.environ:
        return os.environ["TICKETPRINTER_DB_PATH"]
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return str(Path(xdg) / "ticketprinter" / "history.db")
    return str(Path.home() / ".local" / "share" / "ticketprinter" / "history.db")


def _ensure_parent_dir(p: str) -> None:
    Path(p).parent.mkdir(parents=True, exist_ok=True)


# ----- Connection management -------------------------------------------------


def _apply_pragmas(db: sqlite3.Connection) -> None:
    db.execute("PRAGMA foreign_keys = ON")
    try:
        db.execute("PRAGMA journal_mode = WAL")
    except sqlite3.DatabaseError:
        pass
    db.execute("PRAGMA synchronous = NORMAL")


def _connect(path: Optional[str] = None) -> sqlite3.Connection:
    db_path = path or get_db_path()
    _ensure_parent_dir(db_path)
    conn = sqlite3.connect(db_path, timeout=10)
    conn.row_factory = sqlite3.Row
    _apply_pragmas(conn)
    _ensure_schema(conn)
    return conn


# ----- Schema and migrations -------------------------------------------------


def _ensure_schema(db: sqlite3.Connection) -> None:
    """
    Create tables if not present and ensure schema_version is initialized.
    """
    with db:
        db.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
              id            TEXT PRIMARY KEY,
              target        TEXT NOT NULL,
              status        TEXT NOT NULL,
              submitted_at  TEXT NOT NULL,
              started_at    TEXT,
              finished_at   TEXT,
              content_size  INTEGER NOT NULL DEFAULT 0,
              last_error    TEXT
            )
            """,
        )
        db.execute("CREATE INDEX IF NOT EXISTS idx_jobs_submitted ON jobs(submitted_at)")
        db.execute(
            """
            CREATE TABLE IF NOT EXISTS attempts (
              id           INTEGER PRIMARY KEY AUTOINCREMENT,
              job_id       TEXT NOT NULL,
              position     INTEGER NOT NULL,
              strategy     TEXT NOT NULL,
              outcome      TEXT NOT NULL,
              error        TEXT,
              duration_ms  INTEGER NOT NULL DEFAULT 0,
              FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
            )
            """,
        )
        db.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_attempts_order ON attempts(job_id, position)")

        row = db.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1").fetchone()
        if row is None:
            db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        elif int(row["version"]) < SCHEMA_VERSION:
            _migrate(db, int(row["version"]), SCHEMA_VERSION)


def _migrate(db: sqlite3.Connection, current: int, target: int) -> None:
    """
    Incremental migrations from `current` to `target`. Only v1 exists so far.
    """
    logger.info("Migrating history DB schema from v%s to v%s", current, target)
    db.execute("INSERT INTO schema_version (version) VALUES (?)", (target,))


# ----- Operations ------------------------------------------------------------


def record_job(job, path: Optional[str] = None) -> None:
    """
    Insert or replace a print job and its attempts (expects a terminal job).
    """
    data = job.to_dict()
    with _WRITE_LOCK, closing(_connect(path)) as db:
        with db:
            db.execute(
                """
                INSERT OR REPLACE INTO jobs (id, target, status, submitted_at, started_at, finished_at, content_size, last_error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["id"],
                    data["target"],
                    data["status"],
                    data["submitted_at"],
                    data.get("started_at"),
                    data.get("finished_at"),
                    data.get("content_size", 0),
                    data.get("last_error"),
                ),
            )
            db.execute("DELETE FROM attempts WHERE job_id = ?", (data["id"],))
            db.executemany(
                """
                INSERT INTO attempts (job_id, position, strategy, outcome, error, duration_ms)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (data["id"], pos, a["strategy"], a["outcome"], a.get("error"), a["duration_ms"])
                    for pos, a in enumerate(data["attempts"])
                ],
            )


def _row_to_job(db: sqlite3.Connection, row: sqlite3.Row) -> Dict[str, Any]:
    job = dict(row)
    if job.get("last_error") is None:
        job.pop("last_error", None)
    attempts = db.execute(
        "SELECT strategy, outcome, error, duration_ms FROM attempts WHERE job_id = ? ORDER BY position",
        (row["id"],),
    ).fetchall()
    job["attempts"] = []
    for a in attempts:
        item = {"strategy": a["strategy"], "outcome": a["outcome"], "duration_ms": a["duration_ms"]}
        if a["error"] is not None:
            item["error"] = a["error"]
        job["attempts"].append(item)
    return job


def get_job_db(job_id: str, path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    with closing(_connect(path)) as db:
        row = db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        return _row_to_job(db, row)


def list_jobs_db(limit: int = 200, path: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Return persisted jobs, newest first.
    """
    with closing(_connect(path)) as db:
        rows = db.execute("SELECT * FROM jobs ORDER BY submitted_at DESC, rowid DESC LIMIT ?", (int(limit),)).fetchall()
        return [_row_to_job(db, r) for r in rows]


__all__ = ["SCHEMA_VERSION", "get_db_path", "get_job_db", "list_jobs_db", "record_job"]
