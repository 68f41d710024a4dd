from __future__ import annotations

"""Exception taxonomy for the safety pipeline.

Workers turn UpstreamError, MalformedResponseError and InvariantViolation
into a failed task. Storage errors (sqlite3.Error, OSError) are not part of
this hierarchy and abort the worker invocation instead.
"""


class PipelineError(Exception):
    """Base class for pipeline errors that fail the owning task."""

    failure_kind = "error"


class UpstreamError(PipelineError):
    """An external service (catalog, transcription, classifier, embedder) failed."""

    failure_kind = "upstream"

    def __init__(self, service: str, message: str, status_code: int | None = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


class TranscriptUnavailable(UpstreamError):
    """The video has no transcript the configured backend can produce."""


class MalformedResponseError(PipelineError):
    """A service answered, but not in the shape the pipeline requires."""

    failure_kind = "malformed"


class InvariantViolation(PipelineError):
    """Pipeline state contradicts itself (e.g. a task with no video row)."""

    failure_kind = "invariant"


class InvalidTransition(Exception):
    """A task status change that would break the forward-only rule."""

    def __init__(self, task_id: str, current: str | None, requested: str):
        super().__init__(
            f"Task {task_id}: cannot move from {current or 'missing'} to {requested}"
        )
        self.task_id = task_id
        self.current = current
        self.requested = requested


class TaskNotFound(LookupError):
    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class BlobNotFound(KeyError):
    """No blob stored under the requested key."""
