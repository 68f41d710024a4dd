from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional


class TaskStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    TRANSCRIBED = "transcribed"
    CLASSIFYING = "classifying"
    DONE = "done"
    FAILED = "failed"

    ORDER = (PENDING, PROCESSING, TRANSCRIBED, CLASSIFYING, DONE)
    ALL = ORDER + (FAILED,)
    TERMINAL = frozenset({DONE, FAILED})
    # Held by a worker; a task sitting here too long means the worker died
    CLAIMED = frozenset({PROCESSING, CLASSIFYING})

    # Forward edges other than the universal "-> failed"
    FORWARD = {
        PENDING: PROCESSING,
        PROCESSING: TRANSCRIBED,
        TRANSCRIBED: CLASSIFYING,
        CLASSIFYING: DONE,
    }

    @classmethod
    def can_move(cls, current: str, target: str) -> bool:
        if current in cls.TERMINAL:
            return False
        if target == cls.FAILED:
            return True
        return cls.FORWARD.get(current) == target


AGE_RATINGS = ("all", "7+", "13+")


@dataclass
class Task:
    id: str
    video_id: str
    status: str
    created_at: str
    updated_at: str
    last_status: Optional[str] = None
    failure_kind: Optional[str] = None
    failure_reason: Optional[str] = None
    reset_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TaskStatus.TERMINAL

    @classmethod
    def from_row(cls, row) -> "Task":
        data = dict(row)
        return cls(
            id=data["id"],
            video_id=data["video_id"],
            status=data["status"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            last_status=data.get("last_status"),
            failure_kind=data.get("failure_kind"),
            failure_reason=data.get("failure_reason"),
            reset_count=data.get("reset_count") or 0,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "video_id": self.video_id,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "last_status": self.last_status,
            "failure_kind": self.failure_kind,
            "failure_reason": self.failure_reason,
            "reset_count": self.reset_count,
        }


@dataclass(frozen=True)
class Verdict:
    """Classifier output. Either the whole verdict exists or none of it does."""

    safe: bool
    loud: int
    age: str
    junk: int
    reason: str


@dataclass
class Video:
    video_id: str
    channel_id: str
    title: str
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    published_at: Optional[str] = None
    transcript_path: Optional[str] = None
    verdict: Optional[Verdict] = None
    embedding: Optional[list[float]] = None
    analyzed_at: Optional[str] = None
    id: Optional[int] = None

    @property
    def safe(self) -> Optional[bool]:
        return self.verdict.safe if self.verdict else None

    @property
    def age_rating(self) -> Optional[str]:
        return self.verdict.age if self.verdict else None

    @property
    def is_analyzed(self) -> bool:
        return self.verdict is not None

    @classmethod
    def from_row(cls, row) -> "Video":
        data = dict(row)
        verdict = None
        embedding = None
        if data.get("safe") is not None:
            verdict = Verdict(
                safe=bool(data["safe"]),
                loud=data["loud_score"],
                age=data["age_rating"],
                junk=data["junk_score"],
                reason=data["analysis_notes"],
            )
            embedding = json.loads(data["embedding"])
        return cls(
            id=data.get("id"),
            video_id=data["video_id"],
            channel_id=data["channel_id"],
            title=data["title"],
            description=data.get("description"),
            thumbnail_url=data.get("thumbnail_url"),
            published_at=data.get("published_at"),
            transcript_path=data.get("transcript_path"),
            verdict=verdict,
            embedding=embedding,
            analyzed_at=data.get("analyzed_at"),
        )

    def to_dict(self, include_embedding: bool = False) -> dict:
        out = {
            "video_id": self.video_id,
            "channel_id": self.channel_id,
            "title": self.title,
            "description": self.description,
            "thumbnail_url": self.thumbnail_url,
            "published_at": self.published_at,
            "transcript_path": self.transcript_path,
            "safe": self.safe,
            "loud_score": self.verdict.loud if self.verdict else None,
            "age_rating": self.age_rating,
            "junk_score": self.verdict.junk if self.verdict else None,
            "analysis_notes": self.verdict.reason if self.verdict else None,
            "analyzed_at": self.analyzed_at,
        }
        if include_embedding:
            out["embedding"] = self.embedding
        return out
