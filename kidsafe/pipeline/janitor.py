from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from ..database.models import TaskStatus
from ..database.repository import Repository
from ..errors import InvalidTransition

logger = logging.getLogger(__name__)


class Janitor:
    """Fails tasks whose worker apparently died mid-stage.

    Only claimed statuses (processing, classifying) are swept. A task in
    transcribed is waiting in a queue, not held by anyone.
    """

    def __init__(self, repo: Repository, stale_after_seconds: float = 1800):
        self.repo = repo
        self.stale_after = timedelta(seconds=stale_after_seconds)

    def sweep(self) -> list[dict]:
        swept = []
        now = datetime.now(timezone.utc)
        for task in self.repo.find_stale_tasks(self.stale_after):
            age = now - datetime.fromisoformat(task.updated_at)
            reason = f"No progress in {task.status} for {int(age.total_seconds())}s"
            try:
                self.repo.mark_terminal(task.id, TaskStatus.FAILED, reason, "stale",
                                       expected_status=task.status)
            except InvalidTransition:
                # Finished between the scan and the update
                continue
            swept.append({"task_id": task.id, "video_id": task.video_id,
                          "status": task.status, "reason": reason})

        if swept:
            logger.warning(f"Janitor failed {len(swept)} stuck task(s)")
        return swept
