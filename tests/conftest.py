"""Shared test fixtures for the KidSafe pipeline tests."""
from __future__ import annotations

import json

import pytest

from kidsafe.database.connection import init_database
from kidsafe.database.repository import Repository
from kidsafe.errors import UpstreamError
from kidsafe.pipeline.factory import Pipeline
from kidsafe.storage.blob_store import LocalBlobStore

SAFE_VERDICT = {"safe": True, "loud": 3, "age": "all", "junk": 2, "reason": "Calm counting song"}
UNSAFE_VERDICT = {"safe": False, "loud": 8, "age": "13+", "junk": 7, "reason": "Graphic violence"}


class FakeCatalog:
    """Serves uploads from a dict of channel_id -> list of video dicts."""

    def __init__(self, uploads: dict = None):
        self.uploads = uploads or {}
        self.calls = []

    def list_recent_uploads(self, channel_id, limit=10):
        self.calls.append((channel_id, limit))
        if channel_id not in self.uploads:
            raise UpstreamError("catalog", f"Unknown channel {channel_id}", 404)
        return [dict(v) for v in self.uploads[channel_id][:limit]]


class FakeTranscriber:
    """Returns canned transcripts; a video mapped to an exception raises it."""

    def __init__(self, transcripts: dict = None, default: str = "Let's count to ten together."):
        self.transcripts = transcripts or {}
        self.default = default
        self.calls = []

    def transcribe(self, video_id):
        self.calls.append(video_id)
        result = self.transcripts.get(video_id, self.default)
        if isinstance(result, Exception):
            raise result
        return result


class FakeClassifier:
    """Answers with a fixed response, or a per-transcript response by substring."""

    def __init__(self, response=None, by_keyword: dict = None):
        self.response = json.dumps(SAFE_VERDICT) if response is None else response
        self.by_keyword = by_keyword or {}
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        for keyword, response in self.by_keyword.items():
            if keyword in prompt:
                result = response
                break
        else:
            result = self.response
        if isinstance(result, Exception):
            raise result
        return result


class FakeEmbedder:
    def __init__(self, dimensions: int = 768, error: Exception = None):
        self.dimensions = dimensions
        self.error = error
        self.texts = []

    def embed(self, text):
        self.texts.append(text)
        if self.error:
            raise self.error
        return [0.1] * self.dimensions


def make_video(video_id, channel_id="UC_kids", **overrides):
    data = {
        "video_id": video_id,
        "channel_id": channel_id,
        "title": f"Video {video_id}",
        "description": f"Description for {video_id}",
        "thumbnail_url": f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg",
        "published_at": "2024-01-01T00:00:00Z",
    }
    data.update(overrides)
    return data


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database with full schema + migrations."""
    db_path = str(tmp_path / "test.db")
    conn = init_database(db_path)
    conn.close()
    return db_path


@pytest.fixture
def repo(tmp_db):
    """Create a Repository backed by the temp database."""
    r = Repository(tmp_db)
    yield r
    r.close()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"))


@pytest.fixture
def config(tmp_db, tmp_path):
    """A config dict pointing every path into tmp_path."""
    return {
        "db_path": tmp_db,
        "log_file": None,
        "log_level": "INFO",
        "storage": {"root": str(tmp_path / "blobs")},
        "pipeline": {"stale_after_seconds": 1800, "poll_interval": 0},
    }


@pytest.fixture
def services(blob_store):
    """Deterministic stand-ins for every external service."""
    return {
        "catalog": FakeCatalog({
            "UC_kids": [make_video(f"kid_{i}", published_at=f"2024-01-{i:02d}T00:00:00Z")
                        for i in range(1, 4)],
        }),
        "transcriber": FakeTranscriber(),
        "classifier": FakeClassifier(),
        "embedder": FakeEmbedder(),
        "blob_store": blob_store,
    }


@pytest.fixture
def pipeline(config, repo, services):
    return Pipeline(config, repo, services)


@pytest.fixture
def seeded_repo(repo):
    """Repository with one approved channel and a few registered, queued videos."""
    repo.approve_channel("child_1", "UC_kids")
    for i in range(1, 4):
        repo.upsert_video(make_video(f"kid_{i}", published_at=f"2024-01-{i:02d}T00:00:00Z"))
        repo.enqueue(f"kid_{i}")
    repo.upsert_video(make_video("other_1", channel_id="UC_other"))
    repo.enqueue("other_1")
    return repo


@pytest.fixture
def flask_app(config, services):
    """Create a Flask test app with all routes registered."""
    from kidsafe.web.app import create_app

    app = create_app(config, services)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(flask_app):
    """Flask test client."""
    return flask_app.test_client()
