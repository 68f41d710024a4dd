from __future__ import annotations

import logging

from ..database.models import TaskStatus
from ..database.repository import Repository
from ..errors import (
    BlobNotFound,
    InvalidTransition,
    InvariantViolation,
    MalformedResponseError,
    PipelineError,
)
from ..prompts.safety_classification import build_classification_prompt, truncate_transcript
from .verdict import parse_verdict

logger = logging.getLogger(__name__)


class ClassificationWorker:
    """Stage 2: transcribed -> classifying -> done.

    The verdict is written to the video row before the task is marked
    done. A crash in between leaves the task in classifying with a verdict
    already present; rerunning simply overwrites it.
    """

    def __init__(self, classifier, embedder, blob_store, repo: Repository,
                 max_transcript_chars: int = 12000, max_embedding_chars: int = 8000,
                 embedding_dimensions: int = 768):
        self.classifier = classifier
        self.embedder = embedder
        self.blob_store = blob_store
        self.repo = repo
        self.max_transcript_chars = max_transcript_chars
        self.max_embedding_chars = max_embedding_chars
        self.embedding_dimensions = embedding_dimensions

    def run_once(self) -> dict:
        task = self.repo.claim_next(TaskStatus.TRANSCRIBED, TaskStatus.CLASSIFYING)
        if task is None:
            return {"event": "idle", "stage": "classification"}

        try:
            verdict, embedding = self._classify(task)
        except PipelineError as e:
            self.repo.mark_terminal(task.id, TaskStatus.FAILED, str(e), e.failure_kind)
            return {"event": "failed", "task_id": task.id, "video_id": task.video_id,
                    "kind": e.failure_kind, "error": str(e)}

        self.repo.write_verdict(task.video_id, verdict, embedding)

        try:
            self.repo.mark_terminal(task.id, TaskStatus.DONE)
        except InvalidTransition as e:
            logger.warning(f"Verdict stored but task moved on: {e}")
            return {"event": "lost", "task_id": task.id, "video_id": task.video_id,
                    "error": str(e)}

        return {"event": "classified", "task_id": task.id, "video_id": task.video_id,
                "safe": verdict.safe, "age": verdict.age}

    def _classify(self, task):
        video = self.repo.get_video(task.video_id)
        if video is None:
            raise InvariantViolation(f"Task {task.id} has no video row for {task.video_id}")
        if not video.transcript_path:
            raise InvariantViolation(f"Video {task.video_id} reached classification without a transcript")

        try:
            transcript = self.blob_store.get(video.transcript_path)
        except BlobNotFound as e:
            raise InvariantViolation(f"Transcript blob missing: {video.transcript_path}") from e

        text = truncate_transcript(transcript, self.max_transcript_chars)
        if len(transcript) > len(text):
            logger.debug(f"Truncated transcript of {task.video_id} from {len(transcript)} chars")

        response = self.classifier.complete(build_classification_prompt(text))
        verdict = parse_verdict(response)

        embedding = self.embedder.embed(transcript[: self.max_embedding_chars])
        if len(embedding) != self.embedding_dimensions:
            raise MalformedResponseError(
                f"Embedding has {len(embedding)} dimensions, expected {self.embedding_dimensions}"
            )

        logger.info(
            f"Classified {task.video_id}: safe={verdict.safe} age={verdict.age} "
            f"loud={verdict.loud} junk={verdict.junk}"
        )
        return verdict, embedding
