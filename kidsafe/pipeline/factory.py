from __future__ import annotations

"""Builds workers and their service clients from config.

Clients are created on first use, so commands that never touch a service
(status, reset, ...) don't need its credentials. Tests pass fakes through
`services`.
"""

import logging
from typing import Optional

from ..config import (
    get_catalog_config,
    get_classifier_config,
    get_embedding_config,
    get_pipeline_config,
    get_storage_config,
    get_transcription_config,
)
from ..database.repository import Repository
from ..services import (
    CaptionTranscriber,
    ChannelPageCatalog,
    HuggingFaceEmbedder,
    OllamaClassifier,
    OllamaEmbedder,
    WhisperTranscriber,
    YouTubeApiCatalog,
)
from ..storage.blob_store import LocalBlobStore
from .classification import ClassificationWorker
from .gate import SafetyGate
from .ingestion import IngestionWorker
from .janitor import Janitor
from .transcription import TranscriptionWorker

logger = logging.getLogger(__name__)


def build_catalog(config: dict):
    cfg = get_catalog_config(config)
    if cfg["backend"] == "page":
        return ChannelPageCatalog(timeout=cfg["timeout"])
    if cfg["backend"] == "api":
        return YouTubeApiCatalog(cfg["api_key"], timeout=cfg["timeout"])
    raise ValueError(f"Unknown catalog backend: {cfg['backend']}")


def build_transcriber(config: dict):
    cfg = get_transcription_config(config)
    if cfg["backend"] == "captions":
        return CaptionTranscriber(cfg["preferred_languages"])
    if cfg["backend"] == "whisper":
        return WhisperTranscriber(
            whisper_url=cfg["whisper_url"],
            model=cfg["whisper_model"],
            ytdlp_binary=cfg["ytdlp_binary"],
            download_timeout=cfg["download_timeout"],
            timeout=cfg["timeout"],
        )
    raise ValueError(f"Unknown transcription backend: {cfg['backend']}")


def build_classifier(config: dict):
    cfg = get_classifier_config(config)
    return OllamaClassifier(model=cfg["model"], ollama_url=cfg["ollama_url"], timeout=cfg["timeout"])


def build_embedder(config: dict):
    cfg = get_embedding_config(config)
    if cfg["backend"] == "ollama":
        return OllamaEmbedder(model=cfg["model"], ollama_url=cfg["ollama_url"], timeout=cfg["timeout"])
    if cfg["backend"] == "huggingface":
        return HuggingFaceEmbedder(cfg["hf_token"], model=cfg["hf_model"], timeout=cfg["timeout"])
    raise ValueError(f"Unknown embedding backend: {cfg['backend']}")


def build_blob_store(config: dict) -> LocalBlobStore:
    return LocalBlobStore(get_storage_config(config)["root"])


_BUILDERS = {
    "catalog": build_catalog,
    "transcriber": build_transcriber,
    "classifier": build_classifier,
    "embedder": build_embedder,
    "blob_store": build_blob_store,
}


class Pipeline:
    """Wires the repository, service clients and workers together."""

    def __init__(self, config: dict, repo: Repository, services: Optional[dict] = None):
        self.config = config
        self.repo = repo
        self._services = services if services is not None else {}
        self.settings = get_pipeline_config(config)

    def service(self, name: str):
        if name not in self._services:
            logger.debug(f"Building {name} client")
            self._services[name] = _BUILDERS[name](self.config)
        return self._services[name]

    def ingestion(self) -> IngestionWorker:
        return IngestionWorker(
            self.service("catalog"),
            self.repo,
            max_results=get_catalog_config(self.config)["max_results"],
        )

    def transcription(self) -> TranscriptionWorker:
        return TranscriptionWorker(self.service("transcriber"), self.service("blob_store"), self.repo)

    def classification(self) -> ClassificationWorker:
        return ClassificationWorker(
            self.service("classifier"),
            self.service("embedder"),
            self.service("blob_store"),
            self.repo,
            max_transcript_chars=self.settings["max_transcript_chars"],
            max_embedding_chars=self.settings["max_embedding_chars"],
            embedding_dimensions=get_embedding_config(self.config)["dimensions"],
        )

    def janitor(self) -> Janitor:
        return Janitor(self.repo, self.settings["stale_after_seconds"])

    def gate(self) -> SafetyGate:
        return SafetyGate(self.repo)

    def tick(self) -> list[dict]:
        """One poll-loop step: sweep, then one pass of each stage."""
        events = [{"event": "swept", **s} for s in self.janitor().sweep()]
        events.append(self.transcription().run_once())
        events.append(self.classification().run_once())
        return events
