"""Detects callers asking for a human before the model is involved."""

import re


ESCAPE_PHRASES = (
    "representative",
    "human",
    "operator",
    "real person",
    "live person",
    "actual person",
    "live agent",
    "real agent",
    "speak to someone",
    "talk to someone",
    "speak with someone",
    "talk to a person",
    "speak to a person",
)


def _phrase_pattern(phrase: str) -> str:
    # Words may be separated by any run of whitespace
    return r"\s+".join(re.escape(word) for word in phrase.split())


_ESCAPE_PATTERN = re.compile(
    r"\b(?:" + "|".join(_phrase_pattern(p) for p in ESCAPE_PHRASES) + r")\b",
    re.IGNORECASE,
)


def wants_human(text: str) -> bool:
    """True if the utterance asks for a human (case-insensitive, whole words)"""
    if not text:
        return False
    return _ESCAPE_PATTERN.search(text) is not None
