from __future__ import annotations

import json
import sqlite3
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..errors import InvalidTransition, TaskNotFound
from .connection import init_database
from .models import Task, TaskStatus, Verdict, Video

logger = logging.getLogger(__name__)

# Pairs a worker may claim; everything else moves through advance/mark_terminal
CLAIMABLE = {
    (TaskStatus.PENDING, TaskStatus.PROCESSING),
    (TaskStatus.TRANSCRIBED, TaskStatus.CLASSIFYING),
}


def utcnow() -> str:
    """ISO-8601 UTC with microseconds; sorts lexically in time order."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class Repository:
    """Task queue, video records and approved channels on one SQLite file.

    Each Repository owns one connection. Use one per worker/thread; the
    claim protocol below is what keeps concurrent workers apart.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = init_database(self.db_path)
        return self._conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def enqueue(self, video_id: str) -> Task:
        """Create the task for a video, or return the existing one untouched."""
        now = utcnow()
        task_id = uuid.uuid4().hex
        cur = self.conn.execute(
            """INSERT INTO tasks (id, video_id, status, created_at, updated_at)
               VALUES (?, ?, 'pending', ?, ?)
               ON CONFLICT(video_id) DO NOTHING""",
            (task_id, video_id, now, now),
        )
        if cur.rowcount == 1:
            self._log_event(task_id, None, TaskStatus.PENDING, "enqueued", now)
            logger.info(f"Enqueued {video_id} as task {task_id}")
        self.conn.commit()
        return self.get_task_by_video_id(video_id)

    def get_task(self, task_id: str) -> Optional[Task]:
        row = self.conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return Task.from_row(row) if row else None

    def get_task_by_video_id(self, video_id: str) -> Optional[Task]:
        row = self.conn.execute(
            "SELECT * FROM tasks WHERE video_id = ?", (video_id,)
        ).fetchone()
        return Task.from_row(row) if row else None

    def list_tasks(self, status: Optional[str] = None, limit: Optional[int] = None) -> list[Task]:
        sql = "SELECT * FROM tasks"
        params: list = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(status)
        sql += " ORDER BY created_at, rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [Task.from_row(r) for r in self.conn.execute(sql, params).fetchall()]

    def claim_next(self, from_status: str, to_status: str) -> Optional[Task]:
        """Atomically take the oldest task in from_status and move it to to_status.

        Compare-and-swap on the status column: the UPDATE only matches while
        the row still holds from_status, so of several workers racing for the
        same row exactly one sees rowcount == 1. Losers move on to the next
        oldest candidate.
        """
        if (from_status, to_status) not in CLAIMABLE:
            raise ValueError(f"Not a claimable transition: {from_status} -> {to_status}")

        while True:
            row = self.conn.execute(
                """SELECT id FROM tasks WHERE status = ?
                   ORDER BY created_at, rowid LIMIT 1""",
                (from_status,),
            ).fetchone()
            if row is None:
                return None

            now = utcnow()
            cur = self.conn.execute(
                "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (to_status, now, row["id"], from_status),
            )
            if cur.rowcount == 1:
                self._log_event(row["id"], from_status, to_status, "claimed", now)
                self.conn.commit()
                task = self.get_task(row["id"])
                logger.info(f"Claimed task {task.id} ({task.video_id}): {from_status} -> {to_status}")
                return task

            self.conn.commit()
            logger.debug(f"Lost claim race for task {row['id']}, retrying")

    def advance(self, task_id: str, from_status: str, to_status: str,
                note: Optional[str] = None) -> Task:
        """Move a task one step forward, guarded on its current status."""
        if to_status in TaskStatus.TERMINAL or not TaskStatus.can_move(from_status, to_status):
            raise InvalidTransition(task_id, from_status, to_status)

        now = utcnow()
        cur = self.conn.execute(
            "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
            (to_status, now, task_id, from_status),
        )
        if cur.rowcount != 1:
            self.conn.rollback()
            current = self.get_task(task_id)
            raise InvalidTransition(task_id, current.status if current else None, to_status)
        self._log_event(task_id, from_status, to_status, note, now)
        self.conn.commit()
        logger.info(f"Task {task_id}: {from_status} -> {to_status}")
        return self.get_task(task_id)

    def mark_terminal(self, task_id: str, status: str, reason: Optional[str] = None,
                      kind: Optional[str] = None,
                      expected_status: Optional[str] = None) -> Task:
        """Finish a task as done or failed.

        Repeating the terminal status a task already holds is a no-op.
        'done' is only reachable from classifying; 'failed' from any
        non-terminal status, keeping the previous status and reason. With
        expected_status the change only applies while the task still holds it.
        """
        if status not in TaskStatus.TERMINAL:
            raise ValueError(f"Not a terminal status: {status}")

        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if expected_status is not None and task.status != expected_status:
            raise InvalidTransition(task_id, task.status, status)
        if task.status == status:
            return task
        if not TaskStatus.can_move(task.status, status):
            raise InvalidTransition(task_id, task.status, status)

        now = utcnow()
        if status == TaskStatus.FAILED:
            cur = self.conn.execute(
                """UPDATE tasks SET status = 'failed', last_status = ?, failure_kind = ?,
                                    failure_reason = ?, updated_at = ?
                   WHERE id = ? AND status = ?""",
                (task.status, kind, reason, now, task_id, task.status),
            )
        else:
            cur = self.conn.execute(
                "UPDATE tasks SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (status, now, task_id, task.status),
            )

        if cur.rowcount != 1:
            # Someone else moved it between our read and write
            self.conn.rollback()
            return self.mark_terminal(task_id, status, reason, kind, expected_status)

        self._log_event(task_id, task.status, status, reason, now)
        self.conn.commit()
        if status == TaskStatus.FAILED:
            logger.warning(f"Task {task_id} ({task.video_id}) failed in {task.status}: [{kind}] {reason}")
        else:
            logger.info(f"Task {task_id} ({task.video_id}) done")
        return self.get_task(task_id)

    def reset_task(self, task_id: str) -> Task:
        """Operator recovery: put a failed task back to pending."""
        now = utcnow()
        cur = self.conn.execute(
            """UPDATE tasks SET status = 'pending', last_status = NULL, failure_kind = NULL,
                                failure_reason = NULL, reset_count = reset_count + 1,
                                updated_at = ?
               WHERE id = ? AND status = 'failed'""",
            (now, task_id),
        )
        if cur.rowcount != 1:
            self.conn.rollback()
            task = self.get_task(task_id)
            if task is None:
                raise TaskNotFound(task_id)
            raise InvalidTransition(task_id, task.status, TaskStatus.PENDING)
        self._log_event(task_id, TaskStatus.FAILED, TaskStatus.PENDING, "manual reset", now)
        self.conn.commit()
        logger.info(f"Task {task_id} reset to pending")
        return self.get_task(task_id)

    def reset_failed_tasks(self, limit: Optional[int] = None) -> int:
        """Reset failed tasks (oldest first) to pending. Returns how many."""
        count = 0
        for task in self.list_tasks(TaskStatus.FAILED, limit):
            try:
                self.reset_task(task.id)
                count += 1
            except InvalidTransition:
                pass  # Reset concurrently by someone else
        return count

    def find_stale_tasks(self, older_than: timedelta) -> list[Task]:
        """Claimed tasks with no progress for longer than older_than."""
        cutoff = (datetime.now(timezone.utc) - older_than).isoformat(timespec="microseconds")
        placeholders = ", ".join("?" for _ in TaskStatus.CLAIMED)
        rows = self.conn.execute(
            f"""SELECT * FROM tasks WHERE status IN ({placeholders}) AND updated_at < ?
                ORDER BY updated_at""",
            (*sorted(TaskStatus.CLAIMED), cutoff),
        ).fetchall()
        return [Task.from_row(r) for r in rows]

    def get_task_events(self, task_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM task_events WHERE task_id = ? ORDER BY id", (task_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def _log_event(self, task_id: str, from_status: Optional[str], to_status: str,
                   note: Optional[str], at: str):
        """Record a transition. Caller commits, so it lands with the transition."""
        self.conn.execute(
            """INSERT INTO task_events (task_id, from_status, to_status, note, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (task_id, from_status, to_status, note, at),
        )

    # ------------------------------------------------------------------
    # Videos
    # ------------------------------------------------------------------

    def upsert_video(self, data: dict) -> bool:
        """Insert or refresh catalog fields. Returns True when the row is new.

        Transcript and verdict columns are never touched here.
        """
        now = utcnow()
        existed = self.conn.execute(
            "SELECT 1 FROM videos WHERE video_id = ?", (data["video_id"],)
        ).fetchone() is not None
        self.conn.execute(
            """INSERT INTO videos (video_id, channel_id, title, description, thumbnail_url,
                                   published_at, created_at, updated_at)
               VALUES (:video_id, :channel_id, :title, :description, :thumbnail_url,
                       :published_at, :now, :now)
               ON CONFLICT(video_id) DO UPDATE SET
                   channel_id = excluded.channel_id,
                   title = excluded.title,
                   description = excluded.description,
                   thumbnail_url = excluded.thumbnail_url,
                   published_at = excluded.published_at,
                   updated_at = excluded.updated_at""",
            {
                "video_id": data["video_id"],
                "channel_id": data["channel_id"],
                "title": data["title"],
                "description": data.get("description"),
                "thumbnail_url": data.get("thumbnail_url"),
                "published_at": data.get("published_at"),
                "now": now,
            },
        )
        self.conn.commit()
        return not existed

    def get_video(self, video_id: str) -> Optional[Video]:
        row = self.conn.execute(
            "SELECT * FROM videos WHERE video_id = ?", (video_id,)
        ).fetchone()
        return Video.from_row(row) if row else None

    def get_videos_for_channels(self, channel_ids: list[str]) -> list[Video]:
        if not channel_ids:
            return []
        placeholders = ", ".join("?" for _ in channel_ids)
        rows = self.conn.execute(
            f"SELECT * FROM videos WHERE channel_id IN ({placeholders}) ORDER BY id",
            list(channel_ids),
        ).fetchall()
        return [Video.from_row(r) for r in rows]

    def set_transcript_path(self, video_id: str, path: str):
        self.conn.execute(
            "UPDATE videos SET transcript_path = ?, updated_at = ? WHERE video_id = ?",
            (path, utcnow(), video_id),
        )
        self.conn.commit()

    def write_verdict(self, video_id: str, verdict: Verdict, embedding: list[float]) -> str:
        """Write every verdict column plus analyzed_at in a single UPDATE.

        Overwrites any earlier verdict. Returns the analyzed_at timestamp.
        """
        analyzed_at = utcnow()
        try:
            cur = self.conn.execute(
                """UPDATE videos SET safe = ?, loud_score = ?, age_rating = ?, junk_score = ?,
                                     analysis_notes = ?, embedding = ?, analyzed_at = ?,
                                     updated_at = ?
                   WHERE video_id = ?""",
                (
                    int(verdict.safe),
                    verdict.loud,
                    verdict.age,
                    verdict.junk,
                    verdict.reason,
                    json.dumps(embedding),
                    analyzed_at,
                    analyzed_at,
                    video_id,
                ),
            )
            if cur.rowcount != 1:
                raise LookupError(f"Video not found: {video_id}")
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return analyzed_at

    # ------------------------------------------------------------------
    # Approved channels
    # ------------------------------------------------------------------

    def approve_channel(self, child_id: str, channel_id: str) -> bool:
        """Returns True if the binding is new."""
        cur = self.conn.execute(
            """INSERT INTO child_approved_channels (child_id, channel_id) VALUES (?, ?)
               ON CONFLICT(child_id, channel_id) DO NOTHING""",
            (child_id, channel_id),
        )
        self.conn.commit()
        return cur.rowcount == 1

    def revoke_channel(self, child_id: str, channel_id: str) -> bool:
        cur = self.conn.execute(
            "DELETE FROM child_approved_channels WHERE child_id = ? AND channel_id = ?",
            (child_id, channel_id),
        )
        self.conn.commit()
        return cur.rowcount == 1

    def get_approved_channel_ids(self, child_id: str) -> set[str]:
        rows = self.conn.execute(
            "SELECT channel_id FROM child_approved_channels WHERE child_id = ?", (child_id,)
        ).fetchall()
        return {r["channel_id"] for r in rows}

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_pipeline_stats(self) -> dict:
        stats = {}
        rows = self.conn.execute(
            "SELECT status, COUNT(*) as cnt FROM tasks GROUP BY status"
        ).fetchall()
        stats["tasks_by_status"] = {r["status"]: r["cnt"] for r in rows}
        stats["total_tasks"] = sum(stats["tasks_by_status"].values())

        row = self.conn.execute(
            """SELECT COUNT(*) as total,
                      COALESCE(SUM(safe IS NOT NULL), 0) as analyzed,
                      COALESCE(SUM(safe = 1), 0) as safe,
                      COALESCE(SUM(safe = 0), 0) as unsafe
               FROM videos"""
        ).fetchone()
        stats["videos"] = dict(row)

        row = self.conn.execute(
            "SELECT COUNT(DISTINCT channel_id) as cnt FROM videos"
        ).fetchone()
        stats["channels"] = row["cnt"]

        rows = self.conn.execute(
            """SELECT failure_kind, COUNT(*) as cnt FROM tasks
               WHERE status = 'failed' GROUP BY failure_kind"""
        ).fetchall()
        stats["failures_by_kind"] = {(r["failure_kind"] or "unknown"): r["cnt"] for r in rows}
        return stats
