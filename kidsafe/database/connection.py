import sqlite3
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"
BUSY_TIMEOUT = 30


def strip_pragmas(sql: str) -> str:
    """Drop PRAGMA lines from a SQL script; get_connection sets those per connection."""
    return "\n".join(
        line for line in sql.splitlines() if not line.strip().upper().startswith("PRAGMA")
    )


def get_connection(db_path: str, timeout: float = BUSY_TIMEOUT) -> sqlite3.Connection:
    """Open one worker's connection to the shared database file.

    WAL lets readers (the gate, status queries) proceed while a worker
    writes; writers queue on the busy timeout rather than erroring.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_database(db_path: str) -> sqlite3.Connection:
    """Open a connection with the schema in place and all migrations applied."""
    from .migrator import run_migrations

    conn = get_connection(db_path)
    conn.executescript(strip_pragmas(SCHEMA_PATH.read_text()))
    applied = run_migrations(conn)
    if applied:
        logger.info(f"Applied migrations {applied} to {db_path}")
    return conn
