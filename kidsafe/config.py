import os
import logging
from pathlib import Path

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent

# Vector sizes of the default model for each embedding backend
DEFAULT_DIMENSIONS = {"ollama": 768, "huggingface": 384}


def load_config() -> dict:
    """Load configuration from .env and config.yaml. Env vars take precedence."""
    load_dotenv(PROJECT_ROOT / ".env")

    config_path = Path(os.environ.get("KIDSAFE_CONFIG", PROJECT_ROOT / "config.yaml"))
    if config_path.exists():
        with open(config_path) as f:
            config = yaml.safe_load(f) or {}
    else:
        config = {}

    # Resolve database path relative to project root
    db_rel = os.environ.get("KIDSAFE_DB_PATH") or config.get("database", {}).get(
        "path", "data/kidsafe.db"
    )
    config["db_path"] = str(PROJECT_ROOT / db_rel)

    # Resolve log file path
    log_rel = config.get("logging", {}).get("file")
    if log_rel:
        config["log_file"] = str(PROJECT_ROOT / log_rel)
    else:
        config["log_file"] = None

    config["log_level"] = config.get("logging", {}).get("level", "INFO")

    return config


def get_storage_config(config: dict) -> dict:
    """Blob storage root for transcripts."""
    storage = config.get("storage", {})
    root = storage.get("root")
    if root is None:
        root = str(Path(config.get("db_path", PROJECT_ROOT / "data" / "kidsafe.db")).parent / "blobs")
    return {"root": str(PROJECT_ROOT / root)}


def get_catalog_config(config: dict) -> dict:
    """Extract catalog (YouTube) settings with defaults."""
    catalog = config.get("catalog", {})
    return {
        "backend": catalog.get("backend", "api"),
        "api_key": os.environ.get("YT_API_KEY") or catalog.get("api_key"),
        "max_results": catalog.get("max_results", 10),
        "timeout": catalog.get("timeout", 15),
    }


def get_transcription_config(config: dict) -> dict:
    """Extract transcription settings with defaults."""
    tc = config.get("transcription", {})
    return {
        "backend": tc.get("backend", "captions"),
        "preferred_languages": tc.get("preferred_languages", ["en", "en-US", "en-GB"]),
        "whisper_url": tc.get("whisper_url", "http://localhost:8000"),
        "whisper_model": tc.get("whisper_model", "Systran/faster-whisper-small"),
        "ytdlp_binary": tc.get("ytdlp_binary", "yt-dlp"),
        "download_timeout": tc.get("download_timeout", 600),
        "timeout": tc.get("timeout", 900),
    }


def get_classifier_config(config: dict) -> dict:
    """Extract Ollama classifier settings with defaults."""
    ollama = config.get("ollama", {})
    return {
        "model": ollama.get("model", "llama3.2"),
        "ollama_url": ollama.get("url", "http://localhost:11434"),
        "timeout": ollama.get("timeout", 300),
    }


def get_embedding_config(config: dict) -> dict:
    """Extract embedding settings with defaults."""
    emb = config.get("embedding", {})
    backend = emb.get("backend", "ollama")
    return {
        "backend": backend,
        "model": emb.get("model", "nomic-embed-text"),
        "ollama_url": emb.get("url", config.get("ollama", {}).get("url", "http://localhost:11434")),
        "hf_token": os.environ.get("HF_TOKEN") or emb.get("hf_token"),
        "hf_model": emb.get("hf_model", "sentence-transformers/all-MiniLM-L6-v2"),
        "dimensions": emb.get("dimensions", DEFAULT_DIMENSIONS.get(backend, 768)),
        "timeout": emb.get("timeout", 60),
    }


def get_pipeline_config(config: dict) -> dict:
    """Extract worker/janitor settings with defaults."""
    pipeline = config.get("pipeline", {})
    return {
        "max_transcript_chars": pipeline.get("max_transcript_chars", 12000),
        "max_embedding_chars": pipeline.get("max_embedding_chars", 8000),
        "stale_after_seconds": pipeline.get("stale_after_seconds", 1800),
        "poll_interval": pipeline.get("poll_interval", 30),
    }
