from __future__ import annotations

from .catalog import ChannelPageCatalog, YouTubeApiCatalog
from .classifier import OllamaClassifier
from .embedder import HuggingFaceEmbedder, OllamaEmbedder
from .transcriber import CaptionTranscriber, WhisperTranscriber

__all__ = [
    "ChannelPageCatalog",
    "YouTubeApiCatalog",
    "OllamaClassifier",
    "HuggingFaceEmbedder",
    "OllamaEmbedder",
    "CaptionTranscriber",
    "WhisperTranscriber",
]
