from __future__ import annotations

import logging

import requests

from ..errors import MalformedResponseError, UpstreamError

logger = logging.getLogger(__name__)

HF_INFERENCE_URL = "https://api-inference.huggingface.co/models"


def _post(url: str, timeout: float, **kwargs) -> requests.Response:
    try:
        resp = requests.post(url, timeout=timeout, **kwargs)
        resp.raise_for_status()
    except requests.HTTPError as e:
        raise UpstreamError("embedding", str(e), e.response.status_code) from e
    except requests.RequestException as e:
        raise UpstreamError("embedding", str(e)) from e
    return resp


def _as_vector(value) -> list[float]:
    if not isinstance(value, list) or not value:
        raise MalformedResponseError("Embedding is not a non-empty list")
    # Some feature-extraction endpoints wrap a single vector in another list
    if len(value) == 1 and isinstance(value[0], list):
        value = value[0]
    if not all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in value):
        raise MalformedResponseError("Embedding contains non-numeric values")
    return [float(x) for x in value]


class OllamaEmbedder:
    def __init__(self, model: str = "nomic-embed-text",
                 ollama_url: str = "http://localhost:11434", timeout: float = 60):
        self.model = model
        self.ollama_url = ollama_url.rstrip("/")
        self.timeout = timeout

    def embed(self, text: str) -> list[float]:
        resp = _post(
            f"{self.ollama_url}/api/embeddings",
            self.timeout,
            json={"model": self.model, "prompt": text},
        )
        try:
            return _as_vector(resp.json()["embedding"])
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedResponseError(f"Ollama embedding response malformed: {e}") from e


class HuggingFaceEmbedder:
    """Sentence embeddings from the Hugging Face inference API."""

    def __init__(self, token: str,
                 model: str = "sentence-transformers/all-MiniLM-L6-v2", timeout: float = 60):
        if not token:
            raise ValueError("Hugging Face token not configured (set HF_TOKEN)")
        self.token = token
        self.model = model
        self.timeout = timeout

    def embed(self, text: str) -> list[float]:
        resp = _post(
            f"{HF_INFERENCE_URL}/{self.model}",
            self.timeout,
            headers={"Authorization": f"Bearer {self.token}"},
            json={"inputs": text},
        )
        try:
            return _as_vector(resp.json())
        except ValueError as e:
            raise MalformedResponseError(f"Hugging Face embedding response malformed: {e}") from e
