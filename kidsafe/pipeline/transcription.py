from __future__ import annotations

import logging

from ..database.models import TaskStatus
from ..database.repository import Repository
from ..errors import InvalidTransition, InvariantViolation, MalformedResponseError, PipelineError
from ..storage.blob_store import transcript_key

logger = logging.getLogger(__name__)


class TranscriptionWorker:
    """Stage 1: pending -> processing -> transcribed.

    One task per run_once(). Service and invariant errors fail the task;
    storage errors propagate and leave the claim for the janitor.
    """

    def __init__(self, transcriber, blob_store, repo: Repository):
        self.transcriber = transcriber
        self.blob_store = blob_store
        self.repo = repo

    def run_once(self) -> dict:
        task = self.repo.claim_next(TaskStatus.PENDING, TaskStatus.PROCESSING)
        if task is None:
            return {"event": "idle", "stage": "transcription"}

        try:
            if self.repo.get_video(task.video_id) is None:
                raise InvariantViolation(f"Task {task.id} has no video row for {task.video_id}")

            text = self.transcriber.transcribe(task.video_id)
            if not text or not text.strip():
                raise MalformedResponseError(f"Empty transcript for {task.video_id}")
        except PipelineError as e:
            self.repo.mark_terminal(task.id, TaskStatus.FAILED, str(e), e.failure_kind)
            return {"event": "failed", "task_id": task.id, "video_id": task.video_id,
                    "kind": e.failure_kind, "error": str(e)}

        key = self.blob_store.put(transcript_key(task.video_id), text)
        self.repo.set_transcript_path(task.video_id, key)

        try:
            self.repo.advance(task.id, TaskStatus.PROCESSING, TaskStatus.TRANSCRIBED,
                              note=f"{len(text)} chars")
        except InvalidTransition as e:
            # The janitor gave up on us while we were working
            logger.warning(f"Transcript stored but task moved on: {e}")
            return {"event": "lost", "task_id": task.id, "video_id": task.video_id,
                    "error": str(e)}

        return {"event": "transcribed", "task_id": task.id, "video_id": task.video_id,
                "transcript_path": key, "chars": len(text)}
