"""Tests for database connection, schema init, and migrations."""
from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from kidsafe.database.connection import get_connection, init_database
from kidsafe.database.migrator import current_version, list_migrations, run_migrations


class TestConnection:
    def test_get_connection_creates_file(self, tmp_path):
        db_path = str(tmp_path / "new.db")
        conn = get_connection(db_path)
        assert Path(db_path).exists()
        conn.close()

    def test_get_connection_wal_mode(self, tmp_path):
        conn = get_connection(str(tmp_path / "wal.db"))
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"
        conn.close()

    def test_get_connection_row_factory(self, tmp_path):
        conn = get_connection(str(tmp_path / "rows.db"))
        assert conn.row_factory == sqlite3.Row
        conn.close()

    def test_creates_parent_directories(self, tmp_path):
        db_path = str(tmp_path / "deep" / "nested" / "db.sqlite3")
        conn = get_connection(db_path)
        assert Path(db_path).exists()
        conn.close()


class TestInitDatabase:
    def test_creates_all_tables(self, tmp_path):
        conn = init_database(str(tmp_path / "schema.db"))
        tables = {
            r["name"] for r in
            conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        }
        assert {"videos", "tasks", "task_events", "child_approved_channels",
                "schema_version"} <= tables
        conn.close()

    def test_idempotent(self, tmp_path):
        db_path = str(tmp_path / "twice.db")
        init_database(db_path).close()
        conn = init_database(db_path)
        assert current_version(conn) == 1
        conn.close()

    def test_migration_adds_reset_count(self, tmp_path):
        conn = init_database(str(tmp_path / "mig.db"))
        columns = {r["name"] for r in conn.execute("PRAGMA table_info(tasks)").fetchall()}
        assert "reset_count" in columns
        conn.close()

    def test_run_migrations_noop_when_current(self, tmp_path):
        conn = init_database(str(tmp_path / "noop.db"))
        assert run_migrations(conn) == []
        conn.close()


def _insert_video(conn, **verdict):
    cols = {
        "video_id": "v1", "channel_id": "UC1", "title": "t",
        "created_at": "2024-01-01", "updated_at": "2024-01-01",
    }
    cols.update(verdict)
    names = ", ".join(cols)
    marks = ", ".join("?" for _ in cols)
    conn.execute(f"INSERT INTO videos ({names}) VALUES ({marks})", list(cols.values()))


class TestVerdictConstraint:
    FULL = {
        "safe": 1, "loud_score": 2, "age_rating": "all", "junk_score": 3,
        "analysis_notes": "fine", "embedding": json.dumps([0.1]), "analyzed_at": "2024-01-02",
    }

    def test_row_without_verdict_allowed(self, tmp_db):
        conn = get_connection(tmp_db)
        _insert_video(conn)
        conn.close()

    def test_full_verdict_allowed(self, tmp_db):
        conn = get_connection(tmp_db)
        _insert_video(conn, **self.FULL)
        conn.close()

    @pytest.mark.parametrize("dropped", ["safe", "age_rating", "embedding", "analyzed_at"])
    def test_partial_verdict_rejected_on_insert(self, tmp_db, dropped):
        partial = {k: v for k, v in self.FULL.items() if k != dropped}
        conn = get_connection(tmp_db)
        with pytest.raises(sqlite3.IntegrityError):
            _insert_video(conn, **partial)
        conn.close()

    def test_out_of_range_scores_rejected(self, tmp_db):
        conn = get_connection(tmp_db)
        with pytest.raises(sqlite3.IntegrityError):
            _insert_video(conn, **{**self.FULL, "loud_score": 11})
        conn.close()

    def test_unknown_age_rating_rejected(self, tmp_db):
        conn = get_connection(tmp_db)
        with pytest.raises(sqlite3.IntegrityError):
            _insert_video(conn, **{**self.FULL, "age_rating": "18+"})
        conn.close()


class TestTaskConstraints:
    def test_unknown_status_rejected(self, tmp_db):
        conn = get_connection(tmp_db)
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO tasks (id, video_id, status, created_at, updated_at) "
                "VALUES ('t1', 'v1', 'queued', 'x', 'x')"
            )
        conn.close()

    def test_one_task_per_video(self, tmp_db):
        conn = get_connection(tmp_db)
        conn.execute(
            "INSERT INTO tasks (id, video_id, created_at, updated_at) VALUES ('t1', 'v1', 'x', 'x')"
        )
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO tasks (id, video_id, created_at, updated_at) VALUES ('t2', 'v1', 'x', 'x')"
            )
        conn.close()


class TestMigrator:
    def test_lists_numbered_files(self):
        versions = [v for v, _ in list_migrations()]
        assert versions == sorted(versions)
        assert 1 in versions

    def test_second_connection_skips_applied(self, tmp_db):
        conn = get_connection(tmp_db)
        assert run_migrations(conn) == []
        assert current_version(conn) == max(v for v, _ in list_migrations())
        conn.close()
