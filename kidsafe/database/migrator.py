"""Numbered SQL migrations (migrations/NNN_name.sql), each applied once per
database and recorded in schema_version.

Several workers may open the database at the same moment, so each
migration runs inside BEGIN IMMEDIATE and the version is re-read under
that lock before anything is applied.
"""

from __future__ import annotations

import sqlite3
import logging
from pathlib import Path

from .connection import strip_pragmas

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def current_version(conn) -> int:
    row = conn.execute("SELECT MAX(version) as v FROM schema_version").fetchone()
    return row["v"] if row["v"] is not None else 0


def list_migrations() -> list[tuple[int, Path]]:
    found = []
    if not MIGRATIONS_DIR.exists():
        return found
    for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
        prefix = path.stem.split("_", 1)[0]
        if not prefix.isdigit():
            logger.warning(f"Skipping non-numbered migration file: {path.name}")
            continue
        found.append((int(prefix), path))
    return found


def _statements(sql: str):
    buffer = ""
    for line in sql.splitlines(keepends=True):
        buffer += line
        if sqlite3.complete_statement(buffer):
            if buffer.strip():
                yield buffer.strip()
            buffer = ""
    if buffer.strip() and not buffer.strip().startswith("--"):
        yield buffer.strip()


def run_migrations(conn) -> list[int]:
    """Apply pending migrations in version order. Returns the versions applied."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version     INTEGER PRIMARY KEY,
            description TEXT NOT NULL,
            applied_at  TEXT NOT NULL DEFAULT (datetime('now'))
        );
    """)

    applied: list[int] = []
    for version, path in list_migrations():
        if version <= current_version(conn):
            continue

        conn.execute("BEGIN IMMEDIATE")
        try:
            if version <= current_version(conn):
                # Another process got here first
                conn.rollback()
                continue
            for statement in _statements(strip_pragmas(path.read_text())):
                conn.execute(statement)
            conn.execute(
                "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                (version, path.stem),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise

        logger.debug(f"Applied migration {path.name}")
        applied.append(version)

    return applied
