"""Tests for the ingestion, transcription and classification workers."""
from __future__ import annotations

import json

import pytest

from conftest import (
    SAFE_VERDICT,
    UNSAFE_VERDICT,
    FakeCatalog,
    FakeClassifier,
    FakeEmbedder,
    FakeTranscriber,
    make_video,
)
from kidsafe.database.models import TaskStatus
from kidsafe.errors import TranscriptUnavailable, UpstreamError
from kidsafe.pipeline.classification import ClassificationWorker
from kidsafe.pipeline.factory import Pipeline
from kidsafe.pipeline.ingestion import IngestionWorker
from kidsafe.pipeline.transcription import TranscriptionWorker
from kidsafe.storage.blob_store import transcript_key


def _transcribed(repo, blob_store, video_id, text="Once upon a time."):
    """Put a video straight into the transcribed state."""
    repo.upsert_video(make_video(video_id))
    task = repo.enqueue(video_id)
    repo.claim_next(TaskStatus.PENDING, TaskStatus.PROCESSING)
    key = blob_store.put(transcript_key(video_id), text)
    repo.set_transcript_path(video_id, key)
    repo.advance(task.id, TaskStatus.PROCESSING, TaskStatus.TRANSCRIBED)
    return task


class TestIngestion:
    def test_registers_and_enqueues(self, repo):
        catalog = FakeCatalog({"UC1": [make_video("a", "UC1"), make_video("b", "UC1")]})
        result = IngestionWorker(catalog, repo).run("UC1")

        assert result == {"channel_id": "UC1", "total_videos": 2, "new_videos": 2, "new_tasks": 2}
        assert repo.get_video("a").channel_id == "UC1"
        assert repo.get_task_by_video_id("b").status == TaskStatus.PENDING

    def test_rerun_is_idempotent(self, repo):
        catalog = FakeCatalog({"UC1": [make_video("a", "UC1")]})
        worker = IngestionWorker(catalog, repo)
        worker.run("UC1")
        task = repo.get_task_by_video_id("a")
        repo.claim_next(TaskStatus.PENDING, TaskStatus.PROCESSING)

        result = worker.run("UC1")
        assert result["new_videos"] == 0
        assert result["new_tasks"] == 0
        assert repo.get_task_by_video_id("a").id == task.id
        assert repo.get_task_by_video_id("a").status == TaskStatus.PROCESSING

    def test_limit_defaults_to_max_results(self, repo):
        catalog = FakeCatalog({"UC1": [make_video(f"v{i}", "UC1") for i in range(10)]})
        IngestionWorker(catalog, repo, max_results=3).run("UC1")
        assert catalog.calls == [("UC1", 3)]
        assert len(repo.list_tasks()) == 3

    def test_explicit_limit(self, repo):
        catalog = FakeCatalog({"UC1": [make_video(f"v{i}", "UC1") for i in range(10)]})
        IngestionWorker(catalog, repo).run("UC1", limit=5)
        assert catalog.calls == [("UC1", 5)]

    @pytest.mark.parametrize("limit", [0, -3])
    def test_non_positive_limit_rejected(self, repo, limit):
        catalog = FakeCatalog({"UC1": [make_video("a", "UC1")]})
        with pytest.raises(ValueError):
            IngestionWorker(catalog, repo).run("UC1", limit=limit)
        assert catalog.calls == []

    def test_catalog_error_writes_nothing(self, repo):
        with pytest.raises(UpstreamError):
            IngestionWorker(FakeCatalog(), repo).run("UC_missing")
        assert repo.list_tasks() == []


class TestTranscription:
    def test_idle_when_queue_empty(self, repo, blob_store):
        event = TranscriptionWorker(FakeTranscriber(), blob_store, repo).run_once()
        assert event == {"event": "idle", "stage": "transcription"}

    def test_success(self, repo, blob_store):
        repo.upsert_video(make_video("v1"))
        task = repo.enqueue("v1")
        worker = TranscriptionWorker(FakeTranscriber({"v1": "Hello kids"}), blob_store, repo)

        event = worker.run_once()
        assert event["event"] == "transcribed"
        assert event["chars"] == len("Hello kids")
        assert repo.get_task(task.id).status == TaskStatus.TRANSCRIBED

        video = repo.get_video("v1")
        assert video.transcript_path == transcript_key("v1")
        assert blob_store.get(video.transcript_path) == "Hello kids"
        assert video.verdict is None

    def test_one_task_per_call(self, repo, blob_store):
        for vid in ("a", "b"):
            repo.upsert_video(make_video(vid))
            repo.enqueue(vid)
        worker = TranscriptionWorker(FakeTranscriber(), blob_store, repo)
        worker.run_once()
        assert len(repo.list_tasks(TaskStatus.PENDING)) == 1
        assert len(repo.list_tasks(TaskStatus.TRANSCRIBED)) == 1

    def test_no_captions_fails_upstream(self, repo, blob_store):
        repo.upsert_video(make_video("v1"))
        task = repo.enqueue("v1")
        transcriber = FakeTranscriber({"v1": TranscriptUnavailable("transcription", "no captions")})

        event = TranscriptionWorker(transcriber, blob_store, repo).run_once()
        assert event["event"] == "failed"
        assert event["kind"] == "upstream"

        failed = repo.get_task(task.id)
        assert failed.status == TaskStatus.FAILED
        assert failed.last_status == TaskStatus.PROCESSING
        assert repo.get_video("v1").transcript_path is None
        assert not blob_store.exists(transcript_key("v1"))

    def test_empty_transcript_is_malformed(self, repo, blob_store):
        repo.upsert_video(make_video("v1"))
        task = repo.enqueue("v1")
        event = TranscriptionWorker(FakeTranscriber({"v1": "   "}), blob_store, repo).run_once()
        assert event["kind"] == "malformed"
        assert repo.get_task(task.id).failure_kind == "malformed"

    def test_missing_video_row_is_invariant(self, repo, blob_store):
        task = repo.enqueue("ghost")
        transcriber = FakeTranscriber()
        event = TranscriptionWorker(transcriber, blob_store, repo).run_once()
        assert event["kind"] == "invariant"
        assert transcriber.calls == []
        assert repo.get_task(task.id).status == TaskStatus.FAILED

    def test_storage_error_propagates(self, repo, blob_store, monkeypatch):
        repo.upsert_video(make_video("v1"))
        task = repo.enqueue("v1")

        def broken_put(key, text):
            raise OSError("disk full")

        monkeypatch.setattr(blob_store, "put", broken_put)
        with pytest.raises(OSError):
            TranscriptionWorker(FakeTranscriber(), blob_store, repo).run_once()
        # Left claimed for the janitor
        assert repo.get_task(task.id).status == TaskStatus.PROCESSING


class TestClassification:
    def _worker(self, repo, blob_store, classifier=None, embedder=None, **kwargs):
        return ClassificationWorker(
            classifier or FakeClassifier(), embedder or FakeEmbedder(), blob_store, repo, **kwargs
        )

    def test_idle_when_queue_empty(self, repo, blob_store):
        assert self._worker(repo, blob_store).run_once() == {"event": "idle", "stage": "classification"}

    def test_pending_tasks_not_classified(self, repo, blob_store):
        repo.upsert_video(make_video("v1"))
        repo.enqueue("v1")
        assert self._worker(repo, blob_store).run_once()["event"] == "idle"

    def test_success_writes_full_verdict(self, repo, blob_store):
        task = _transcribed(repo, blob_store, "v1")
        event = self._worker(repo, blob_store).run_once()

        assert event == {"event": "classified", "task_id": task.id, "video_id": "v1",
                         "safe": True, "age": "all"}
        assert repo.get_task(task.id).status == TaskStatus.DONE

        video = repo.get_video("v1")
        assert video.verdict.safe is True
        assert video.verdict.loud == SAFE_VERDICT["loud"]
        assert video.verdict.junk == SAFE_VERDICT["junk"]
        assert video.verdict.reason == SAFE_VERDICT["reason"]
        assert len(video.embedding) == 768
        assert video.analyzed_at is not None

    def test_invalid_json_leaves_verdict_null(self, repo, blob_store):
        task = _transcribed(repo, blob_store, "v1")
        classifier = FakeClassifier("I think this video is lovely!")
        embedder = FakeEmbedder()

        event = self._worker(repo, blob_store, classifier, embedder).run_once()
        assert event["event"] == "failed"
        assert event["kind"] == "malformed"

        failed = repo.get_task(task.id)
        assert failed.status == TaskStatus.FAILED
        assert failed.last_status == TaskStatus.CLASSIFYING
        assert repo.get_video("v1").verdict is None
        assert embedder.texts == []

    def test_missing_field_leaves_verdict_null(self, repo, blob_store):
        _transcribed(repo, blob_store, "v1")
        partial = {k: v for k, v in SAFE_VERDICT.items() if k != "junk"}
        self._worker(repo, blob_store, FakeClassifier(json.dumps(partial))).run_once()
        assert repo.get_video("v1").verdict is None

    def test_classifier_unreachable(self, repo, blob_store):
        task = _transcribed(repo, blob_store, "v1")
        classifier = FakeClassifier(UpstreamError("classifier", "connection refused"))
        event = self._worker(repo, blob_store, classifier).run_once()
        assert event["kind"] == "upstream"
        assert repo.get_task(task.id).failure_kind == "upstream"

    def test_embedding_failure_leaves_verdict_null(self, repo, blob_store):
        task = _transcribed(repo, blob_store, "v1")
        embedder = FakeEmbedder(error=UpstreamError("embedding", "timeout"))
        self._worker(repo, blob_store, embedder=embedder).run_once()
        assert repo.get_task(task.id).status == TaskStatus.FAILED
        assert repo.get_video("v1").verdict is None

    def test_wrong_embedding_dimensions(self, repo, blob_store):
        task = _transcribed(repo, blob_store, "v1")
        event = self._worker(repo, blob_store, embedder=FakeEmbedder(dimensions=384)).run_once()
        assert event["kind"] == "malformed"
        assert repo.get_task(task.id).status == TaskStatus.FAILED
        assert repo.get_video("v1").verdict is None

    def test_missing_transcript_blob_is_invariant(self, repo, blob_store):
        task = _transcribed(repo, blob_store, "v1")
        blob_store._path(transcript_key("v1")).unlink()
        event = self._worker(repo, blob_store).run_once()
        assert event["kind"] == "invariant"
        assert repo.get_task(task.id).status == TaskStatus.FAILED

    def test_transcript_truncated_for_prompt_and_embedding(self, repo, blob_store):
        _transcribed(repo, blob_store, "v1", text="x" * 50 + "TAIL")
        classifier = FakeClassifier()
        embedder = FakeEmbedder()
        self._worker(repo, blob_store, classifier, embedder,
                     max_transcript_chars=50, max_embedding_chars=20).run_once()
        assert "TAIL" not in classifier.prompts[0]
        assert "x" * 50 in classifier.prompts[0]
        assert embedder.texts == ["x" * 20]

    def test_fenced_json_accepted(self, repo, blob_store):
        task = _transcribed(repo, blob_store, "v1")
        fenced = "```json\n" + json.dumps(UNSAFE_VERDICT) + "\n```"
        self._worker(repo, blob_store, FakeClassifier(fenced)).run_once()
        assert repo.get_task(task.id).status == TaskStatus.DONE
        assert repo.get_video("v1").verdict.safe is False


class TestEndToEnd:
    def test_safe_video_flows_to_done(self, pipeline, repo):
        """A registered channel's upload ends up done with a full safe verdict."""
        repo.approve_channel("child_1", "UC_kids")
        pipeline.ingestion().run("UC_kids")

        for _ in range(3):
            assert pipeline.transcription().run_once()["event"] == "transcribed"
        for _ in range(3):
            assert pipeline.classification().run_once()["event"] == "classified"

        assert {t.status for t in repo.list_tasks()} == {TaskStatus.DONE}
        video = repo.get_video("kid_1")
        assert video.safe is True
        assert pipeline.gate().is_visible_to_child(video, "child_1")

    def test_bad_classifier_output_keeps_video_hidden(self, config, repo, services):
        """Unparseable classifier output fails the task and the video stays hidden."""
        services["classifier"] = FakeClassifier("Sure! Here is my analysis: totally safe.")
        pipeline = Pipeline(config, repo, services)
        repo.approve_channel("child_1", "UC_kids")
        pipeline.ingestion().run("UC_kids", limit=1)

        pipeline.transcription().run_once()
        event = pipeline.classification().run_once()
        assert event["event"] == "failed"

        task = repo.get_task_by_video_id("kid_1")
        assert task.status == TaskStatus.FAILED
        video = repo.get_video("kid_1")
        assert video.verdict is None
        assert not pipeline.gate().is_visible_to_child(video, "child_1")
