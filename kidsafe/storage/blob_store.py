from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from ..errors import BlobNotFound

logger = logging.getLogger(__name__)

TRANSCRIPT_BUCKET = "transcripts"


def transcript_key(video_id: str) -> str:
    """Deterministic blob key for a video's transcript."""
    return f"{TRANSCRIPT_BUCKET}/{video_id}.txt"


class LocalBlobStore:
    """Key -> text blobs as files under a root directory.

    put() writes to a temp file in the target directory and renames it over
    the destination, so readers see either the old blob or the new one.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Blob key escapes storage root: {key}")
        return path

    def put(self, key: str, text: str) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Stored blob {key} ({len(text)} chars)")
        return key

    def get(self, key: str) -> str:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise BlobNotFound(key) from None

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()
