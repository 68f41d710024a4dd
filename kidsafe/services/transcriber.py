from __future__ import annotations

import logging
import subprocess
import tempfile
from pathlib import Path

import requests
from requests import Session
from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from ..errors import MalformedResponseError, TranscriptUnavailable, UpstreamError

logger = logging.getLogger(__name__)


class CaptionTranscriber:
    """Transcript text from YouTube captions via youtube-transcript-api.

    Uses a fresh requests Session per fetch so cookies don't pile up
    across videos.
    """

    def __init__(self, preferred_languages: list[str] = None):
        self.preferred_languages = preferred_languages or ["en", "en-US", "en-GB"]

    def _make_api(self) -> YouTubeTranscriptApi:
        session = Session()
        session.headers.update({"Accept-Language": "en-US,en;q=0.9"})
        return YouTubeTranscriptApi(http_client=session)

    def transcribe(self, video_id: str) -> str:
        try:
            transcript = self._make_api().fetch(video_id, languages=self.preferred_languages)
        except (TranscriptsDisabled, NoTranscriptFound, VideoUnavailable) as e:
            raise TranscriptUnavailable(
                "transcription", f"No captions for {video_id}: {type(e).__name__}"
            ) from e
        except CouldNotRetrieveTranscript as e:
            # IP blocks, throttling and other YouTube-side refusals
            raise UpstreamError("transcription", f"{type(e).__name__} for {video_id}") from e
        except requests.RequestException as e:
            raise UpstreamError("transcription", str(e)) from e

        text = " ".join(s["text"] for s in transcript.to_raw_data()).strip()
        logger.info(
            f"Fetched {transcript.language_code} captions for {video_id} "
            f"({len(text.split())} words, generated={transcript.is_generated})"
        )
        return text


def download_audio(video_id: str, output_dir: Path, ytdlp_binary: str = "yt-dlp",
                   timeout: float = 600) -> Path:
    """Extract the best audio stream of a video to mp3 using yt-dlp."""
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"{video_id}.mp3"
    args = [
        ytdlp_binary,
        "--no-playlist",
        "-f", "ba",
        "-x",
        "--audio-format", "mp3",
        "--audio-quality", "128K",
        "-o", str(output_dir / f"{video_id}.%(ext)s"),
        f"https://www.youtube.com/watch?v={video_id}",
    ]
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise UpstreamError("audio", f"yt-dlp could not run: {e}") from e

    if result.returncode != 0:
        raise UpstreamError(
            "audio", f"yt-dlp failed (rc={result.returncode}): {(result.stderr or '')[:300]}"
        )
    if not output_path.exists():
        raise UpstreamError("audio", "No audio file found after download")

    logger.info(f"Downloaded audio for {video_id}: {output_path}")
    return output_path


class WhisperTranscriber:
    """Downloads audio with yt-dlp and posts it to a Whisper server.

    The server must speak the OpenAI /v1/audio/transcriptions protocol
    (faster-whisper-server, speaches, whisper.cpp server, ...).
    """

    def __init__(self, whisper_url: str = "http://localhost:8000",
                 model: str = "Systran/faster-whisper-small",
                 ytdlp_binary: str = "yt-dlp", download_timeout: float = 600,
                 timeout: float = 900):
        self.whisper_url = whisper_url.rstrip("/")
        self.model = model
        self.ytdlp_binary = ytdlp_binary
        self.download_timeout = download_timeout
        self.timeout = timeout

    def transcribe(self, video_id: str) -> str:
        with tempfile.TemporaryDirectory(prefix="kidsafe-audio-") as tmp:
            audio = download_audio(
                video_id, Path(tmp), self.ytdlp_binary, self.download_timeout
            )
            return self._transcribe_file(audio)

    def _transcribe_file(self, audio: Path) -> str:
        try:
            with open(audio, "rb") as f:
                resp = requests.post(
                    f"{self.whisper_url}/v1/audio/transcriptions",
                    files={"file": (audio.name, f, "audio/mpeg")},
                    data={"model": self.model, "response_format": "json"},
                    timeout=self.timeout,
                )
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise UpstreamError("transcription", str(e), e.response.status_code) from e
        except requests.RequestException as e:
            raise UpstreamError("transcription", str(e)) from e

        try:
            text = resp.json()["text"]
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedResponseError(f"Whisper response missing text: {e}") from e
        if not isinstance(text, str):
            raise MalformedResponseError(f"Whisper text is {type(text).__name__}, not a string")
        return text.strip()
