"""Tests for the safety gate."""
from __future__ import annotations

import pytest

from conftest import make_video
from kidsafe.database.models import Verdict, Video
from kidsafe.pipeline.gate import SafetyGate, is_visible


def _video(safe=True, age="all", channel_id="UC1", junk=2, published_at="2024-01-01"):
    return Video(
        video_id="v1", channel_id=channel_id, title="t", published_at=published_at,
        verdict=Verdict(safe=safe, loud=1, age=age, junk=junk, reason="r"),
    )


class TestIsVisible:
    def test_safe_and_approved(self):
        assert is_visible(_video(), {"UC1"}) is True

    def test_unsafe_hidden(self):
        assert is_visible(_video(safe=False), {"UC1"}) is False

    def test_unanalyzed_hidden(self):
        video = Video(video_id="v1", channel_id="UC1", title="t")
        assert is_visible(video, {"UC1"}) is False

    def test_missing_video_hidden(self):
        assert is_visible(None, {"UC1"}) is False

    def test_unapproved_channel_hidden(self):
        assert is_visible(_video(channel_id="UC2"), {"UC1"}) is False

    def test_junk_never_hides(self):
        assert is_visible(_video(junk=10), {"UC1"}) is True

    def test_age_filter(self):
        video = _video(age="7+")
        assert is_visible(video, {"UC1"}) is True
        assert is_visible(video, {"UC1"}, max_age_rating="all") is False
        assert is_visible(video, {"UC1"}, max_age_rating="7+") is True
        assert is_visible(video, {"UC1"}, max_age_rating="13+") is True

    def test_unknown_age_filter(self):
        with pytest.raises(ValueError):
            is_visible(_video(), {"UC1"}, max_age_rating="18+")


class TestSafetyGate:
    def _analyze(self, repo, video_id, safe=True, age="all", junk=2, **video_fields):
        repo.upsert_video(make_video(video_id, **video_fields))
        repo.write_verdict(video_id, Verdict(safe=safe, loud=1, age=age, junk=junk, reason="r"), [0.1])
        return repo.get_video(video_id)

    def test_uses_child_approvals(self, repo):
        video = self._analyze(repo, "v1")
        gate = SafetyGate(repo)
        assert gate.is_visible_to_child(video, "kid") is False
        repo.approve_channel("kid", "UC_kids")
        assert gate.is_visible_to_child(video, "kid") is True

    def test_visible_videos_filters_and_orders(self, repo):
        repo.approve_channel("kid", "UC_kids")
        self._analyze(repo, "junky", junk=8, published_at="2024-03-01")
        self._analyze(repo, "old_good", junk=1, published_at="2024-01-01")
        self._analyze(repo, "new_good", junk=1, published_at="2024-02-01")
        self._analyze(repo, "scary", safe=False)
        self._analyze(repo, "teen", age="13+")
        self._analyze(repo, "elsewhere", channel_id="UC_other")
        repo.upsert_video(make_video("pending"))

        visible = [v.video_id for v in SafetyGate(repo).visible_videos("kid", max_age_rating="7+")]
        assert visible == ["new_good", "old_good", "junky"]

    def test_undated_videos_sort_after_dated(self, repo):
        repo.approve_channel("kid", "UC_kids")
        self._analyze(repo, "undated", junk=1, published_at=None)
        self._analyze(repo, "dated", junk=1, published_at="2024-02-01T00:00:00Z")

        visible = [v.video_id for v in SafetyGate(repo).visible_videos("kid")]
        assert visible == ["dated", "undated"]

    def test_visible_videos_no_approvals(self, repo):
        self._analyze(repo, "v1")
        assert SafetyGate(repo).visible_videos("kid") == []
