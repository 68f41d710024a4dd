from __future__ import annotations

"""The one check every viewing surface makes before showing a child a video.

`safe` is a hard gate. Age rating only filters when the caller asks for it,
and junk/loudness scores never hide a video; they are for ranking and labels.
"""

from typing import Iterable, Optional

from ..database.models import AGE_RATINGS, Video
from ..database.repository import Repository

_AGE_RANK = {rating: i for i, rating in enumerate(AGE_RATINGS)}


def is_visible(video: Video, approved_channel_ids: Iterable[str],
               max_age_rating: Optional[str] = None) -> bool:
    if video is None or video.safe is not True:
        return False
    if video.channel_id not in set(approved_channel_ids):
        return False
    if max_age_rating is not None:
        if max_age_rating not in _AGE_RANK:
            raise ValueError(f"Unknown age rating: {max_age_rating}")
        if _AGE_RANK[video.age_rating] > _AGE_RANK[max_age_rating]:
            return False
    return True


class SafetyGate:
    def __init__(self, repo: Repository):
        self.repo = repo

    def is_visible_to_child(self, video: Video, child_id: str,
                            max_age_rating: Optional[str] = None) -> bool:
        approved = self.repo.get_approved_channel_ids(child_id)
        return is_visible(video, approved, max_age_rating)

    def visible_videos(self, child_id: str, max_age_rating: Optional[str] = None) -> list[Video]:
        """Everything the child may watch, least junky and newest first."""
        approved = self.repo.get_approved_channel_ids(child_id)
        videos = [
            v for v in self.repo.get_videos_for_channels(sorted(approved))
            if is_visible(v, approved, max_age_rating)
        ]
        # Stable sorts: secondary key first
        videos.sort(key=lambda v: v.published_at or "", reverse=True)
        videos.sort(key=lambda v: v.verdict.junk)
        return videos
