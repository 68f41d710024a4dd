from __future__ import annotations

import logging
from typing import Optional

from ..database.repository import Repository

logger = logging.getLogger(__name__)


class IngestionWorker:
    """Registers a channel's recent uploads and queues each one for analysis.

    Safe to rerun: the video upsert only refreshes catalog fields and
    enqueue leaves existing tasks alone, so verdicts and progress survive.
    """

    def __init__(self, catalog, repo: Repository, max_results: int = 10):
        self.catalog = catalog
        self.repo = repo
        self.max_results = max_results

    def run(self, channel_id: str, limit: Optional[int] = None) -> dict:
        """Ingest one channel. Catalog errors propagate before anything is written.

        Each item commits on its own, so a failure partway through leaves
        the items before it fully ingested and nothing half-written.
        """
        if limit is None:
            limit = self.max_results
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        videos = self.catalog.list_recent_uploads(channel_id, limit)
        logger.info(f"Ingesting {len(videos)} videos for channel {channel_id}")

        new_videos = 0
        new_tasks = 0
        for video in videos:
            data = dict(video)
            data.setdefault("channel_id", channel_id)
            if self.repo.upsert_video(data):
                new_videos += 1

            existing = self.repo.get_task_by_video_id(data["video_id"])
            self.repo.enqueue(data["video_id"])
            if existing is None:
                new_tasks += 1

        return {
            "channel_id": channel_id,
            "total_videos": len(videos),
            "new_videos": new_videos,
            "new_tasks": new_tasks,
        }
