from __future__ import annotations

import logging

import requests

from ..errors import MalformedResponseError, UpstreamError
from ..prompts.safety_classification import SYSTEM_PROMPT

DEFAULT_OLLAMA_URL = "http://localhost:11434"

logger = logging.getLogger(__name__)


class OllamaClassifier:
    """Sends a classification prompt to a local Ollama model.

    Returns the raw response text; turning it into a verdict is the
    caller's job, so a chatty or broken model surfaces as a parse failure.
    """

    def __init__(self, model: str = "llama3.2", ollama_url: str = DEFAULT_OLLAMA_URL,
                 timeout: float = 300):
        self.model = model
        self.ollama_url = ollama_url.rstrip("/")
        self.timeout = timeout

    def complete(self, prompt: str) -> str:
        try:
            resp = requests.post(
                f"{self.ollama_url}/api/chat",
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    "format": "json",
                    "stream": False,
                    "options": {"temperature": 0},
                },
                timeout=self.timeout,  # Local models can be slow
            )
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise UpstreamError("classifier", str(e), e.response.status_code) from e
        except requests.RequestException as e:
            raise UpstreamError("classifier", str(e)) from e

        try:
            content = resp.json()["message"]["content"]
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedResponseError(f"Ollama chat response missing message content: {e}") from e

        logger.debug(f"Classifier answered {len(content)} chars")
        return content
