from __future__ import annotations

SYSTEM_PROMPT = """\
You are a child-safety reviewer for a parental-control video service. \
You read video transcripts and rate whether the video is appropriate for children.

You must respond ONLY with valid JSON matching the schema below. No other text."""

VERDICT_SCHEMA = '{ "safe": bool, "loud": 0-10, "age": "all|7+|13+", "junk": 0-10, "reason": str }'


def truncate_transcript(text: str, max_chars: int) -> str:
    """Keep the first max_chars characters; the tail is dropped, never sampled."""
    return text[:max_chars]


def build_classification_prompt(transcript: str) -> str:
    return f"""Strict JSON ONLY:
{VERDICT_SCHEMA}
Rules: Analyze if this transcript is safe for children. Assess:
- safe: Is it appropriate for children (no violence, profanity, adult themes)?
- loud: How loud/energetic is the content (0=calm, 10=extremely hyper)?
- age: Minimum appropriate age category (all, 7+, 13+)
- junk: How low-quality is the content (0=educational, 10=pure entertainment junk)
- reason: Brief explanation of your rating

Transcript:
{transcript}"""
