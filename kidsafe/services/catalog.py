from __future__ import annotations

import json
import re
import logging

import requests

from ..errors import MalformedResponseError, UpstreamError

logger = logging.getLogger(__name__)

API_BASE = "https://www.googleapis.com/youtube/v3"
MAX_PAGE_SIZE = 50

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}


def _get(url: str, service: str, timeout: float, **kwargs) -> requests.Response:
    try:
        resp = requests.get(url, timeout=timeout, **kwargs)
        resp.raise_for_status()
    except requests.HTTPError as e:
        raise UpstreamError(service, str(e), e.response.status_code) from e
    except requests.RequestException as e:
        raise UpstreamError(service, str(e)) from e
    return resp


def _json(resp: requests.Response) -> dict:
    try:
        return resp.json()
    except ValueError as e:
        raise MalformedResponseError(f"Catalog returned non-JSON body: {e}") from e


class YouTubeApiCatalog:
    """Recent uploads through the YouTube Data API v3 (needs YT_API_KEY)."""

    def __init__(self, api_key: str, timeout: float = 15):
        if not api_key:
            raise ValueError("YouTube API key not configured (set YT_API_KEY)")
        self.api_key = api_key
        self.timeout = timeout

    def list_recent_uploads(self, channel_id: str, limit: int = 10) -> list[dict]:
        """Newest uploads first, in the order the API reports them."""
        resp = _get(
            f"{API_BASE}/channels",
            "catalog",
            self.timeout,
            params={"part": "contentDetails", "id": channel_id, "key": self.api_key},
        )
        items = _json(resp).get("items") or []
        uploads = (
            items[0].get("contentDetails", {}).get("relatedPlaylists", {}).get("uploads")
            if items else None
        )
        if not uploads:
            raise UpstreamError("catalog", f"Could not find uploads playlist for {channel_id}")

        videos = []
        for item in self._playlist_items(uploads, limit):
            try:
                video_id = item["contentDetails"]["videoId"]
                snippet = item["snippet"]
            except (KeyError, TypeError) as e:
                raise MalformedResponseError(f"Unexpected playlist item shape: {e}") from e
            thumbs = snippet.get("thumbnails") or {}
            thumbnail = (thumbs.get("high") or thumbs.get("default") or {}).get("url")
            videos.append({
                "video_id": video_id,
                "channel_id": channel_id,
                "title": snippet.get("title", ""),
                "description": snippet.get("description"),
                "thumbnail_url": thumbnail,
                "published_at": snippet.get("publishedAt"),
            })

        logger.info(f"Catalog returned {len(videos)} uploads for channel {channel_id}")
        return videos[:limit]

    def _playlist_items(self, playlist_id: str, limit: int):
        """Follow nextPageToken until `limit` items or the end of the playlist."""
        fetched = 0
        page_token = None
        while fetched < limit:
            params = {
                "part": "contentDetails,snippet",
                "playlistId": playlist_id,
                "maxResults": min(limit - fetched, MAX_PAGE_SIZE),
                "key": self.api_key,
            }
            if page_token:
                params["pageToken"] = page_token
            page = _json(_get(f"{API_BASE}/playlistItems", "catalog", self.timeout, params=params))
            items = page.get("items") or []
            yield from items[: limit - fetched]
            fetched += len(items)
            page_token = page.get("nextPageToken")
            if not items or not page_token:
                return


class ChannelPageCatalog:
    """Recent uploads scraped from the channel's /videos tab. No API key."""

    def __init__(self, timeout: float = 15):
        self.timeout = timeout

    def list_recent_uploads(self, channel_id: str, limit: int = 10) -> list[dict]:
        page_url = f"https://www.youtube.com/channel/{channel_id}/videos"
        resp = _get(page_url, "catalog", self.timeout, headers=HEADERS)

        match = re.search(r"var ytInitialData = ({.*?});</script>", resp.text)
        if not match:
            raise MalformedResponseError(f"Could not parse videos page for channel {channel_id}")
        try:
            data = json.loads(match.group(1))
        except ValueError as e:
            raise MalformedResponseError(f"Bad ytInitialData for channel {channel_id}: {e}") from e

        videos = []
        tabs = (
            data.get("contents", {})
            .get("twoColumnBrowseResultsRenderer", {})
            .get("tabs", [])
        )
        for tab in tabs:
            grid = tab.get("tabRenderer", {}).get("content", {}).get("richGridRenderer", {})
            for item in grid.get("contents", []):
                video = self._extract_video(item, channel_id)
                if video:
                    videos.append(video)

        logger.info(f"Channel page listed {len(videos)} uploads for channel {channel_id}")
        return videos[:limit]

    def _extract_video(self, item: dict, channel_id: str) -> dict | None:
        renderer = (
            item.get("richItemRenderer", {}).get("content", {}).get("videoRenderer", {})
        )
        vid = renderer.get("videoId")
        if not vid:
            return None

        title = renderer.get("title", {}).get("runs", [{}])[0].get("text", "")
        snippet = renderer.get("descriptionSnippet", {})
        description = "".join(r.get("text", "") for r in snippet.get("runs", [])) or None

        thumbs = renderer.get("thumbnail", {}).get("thumbnails", [])
        return {
            "video_id": vid,
            "channel_id": channel_id,
            "title": title,
            "description": description,
            "thumbnail_url": thumbs[-1].get("url") if thumbs else None,
            # The page only shows relative text like "3 days ago"
            "published_at": None,
        }
