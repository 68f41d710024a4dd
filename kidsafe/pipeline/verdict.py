from __future__ import annotations

import json

from ..database.models import AGE_RATINGS, Verdict
from ..errors import MalformedResponseError


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1]) if lines[-1].strip() == "```" else "\n".join(lines[1:])
    return text.strip()


def _score(data: dict, key: str) -> int:
    value = data.get(key)
    # bool is an int subclass; true/false is not a score
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedResponseError(f"'{key}' must be an integer, got {value!r}")
    if not 0 <= value <= 10:
        raise MalformedResponseError(f"'{key}' must be between 0 and 10, got {value}")
    return value


def parse_verdict(text: str) -> Verdict:
    """Strictly parse a classifier response into a Verdict.

    Every one of safe/loud/age/junk/reason must be present with the right
    type. Unknown extra keys are ignored. Anything else raises
    MalformedResponseError; there is no partial verdict.
    """
    if not isinstance(text, str) or not text.strip():
        raise MalformedResponseError("Empty classifier response")

    try:
        data = json.loads(_strip_fences(text))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Classifier response is not JSON: {text[:200]!r}") from e

    if not isinstance(data, dict):
        raise MalformedResponseError(f"Classifier response is not a JSON object: {type(data).__name__}")

    missing = [k for k in ("safe", "loud", "age", "junk", "reason") if k not in data]
    if missing:
        raise MalformedResponseError(f"Classifier response missing fields: {', '.join(missing)}")

    safe = data["safe"]
    if not isinstance(safe, bool):
        raise MalformedResponseError(f"'safe' must be a boolean, got {safe!r}")

    age = data["age"]
    if age not in AGE_RATINGS:
        raise MalformedResponseError(f"'age' must be one of {', '.join(AGE_RATINGS)}, got {age!r}")

    reason = data["reason"]
    if not isinstance(reason, str) or not reason.strip():
        raise MalformedResponseError("'reason' must be a non-empty string")

    return Verdict(
        safe=safe,
        loud=_score(data, "loud"),
        age=age,
        junk=_score(data, "junk"),
        reason=reason.strip(),
    )
