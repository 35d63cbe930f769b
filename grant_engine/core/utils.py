"""
Shared utility functions for ID generation, fingerprinting and text handling.
"""

import hashlib
import json
import re
from enum import Enum
from datetime import datetime
from typing import Any, List


def stable_id(text: str, prefix: str = "") -> str:
    """
    Generate a stable, short identifier from text.

    Uses SHA1 hash truncated to 16 characters.

    Examples:
        >>> stable_id("financial|audited statements", "req_")
        'req_...'
    """
    h = hashlib.sha1(text.encode("utf-8")).hexdigest()[:16]
    return f"{prefix}{h}" if prefix else h


def canonicalize(value: Any) -> Any:
    """
    Reduce a payload to a canonical JSON-compatible form.

    Strings have whitespace collapsed, sets become sorted lists and dict keys
    are sorted at serialization time, so semantically equal inputs produce the
    same fingerprint.
    """
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, str):
        return normalize_whitespace(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): canonicalize(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(canonicalize(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    if hasattr(value, "to_dict"):
        return canonicalize(value.to_dict())
    return value


def fingerprint(operation: str, payload: Any) -> str:
    """
    Deterministic hash of an operation name and its canonicalized input.

    Used as the result-cache and coalescing key.
    """
    body = json.dumps(
        {"operation": operation, "input": canonicalize(payload)},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def clean_text(text: str) -> str:
    """
    Clean text by normalizing whitespace and removing extra newlines.
    """
    # Replace multiple spaces with single space
    text = re.sub(r"[ \t]+", " ", text)
    # Replace multiple newlines with double newline
    text = re.sub(r"\n\s*\n+", "\n\n", text)
    return text.strip()


def word_count(text: str) -> int:
    return len([w for w in re.split(r"\s+", text or "") if w])


# Sentence boundary: terminal punctuation followed by whitespace, or a newline.
# Abbreviations such as "e.g." and "i.e." are protected first.
_ABBREVIATIONS = re.compile(r"\b(e\.g|i\.e|etc|approx|incl|no|vs)\.", re.IGNORECASE)
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+(?=[A-Z0-9\"'(•\-])|\n+")


def split_sentences(text: str) -> List[str]:
    """
    Split text into sentences, keeping each sentence verbatim.

    Returned sentences are exact substrings of `text` (only stripped), which
    keeps extracted excerpts traceable to the input.
    """
    protected = _ABBREVIATIONS.sub(lambda m: m.group(0).replace(".", "\x00"), text)
    sentences = []
    for chunk in _SENTENCE_BREAK.split(protected):
        chunk = chunk.replace("\x00", ".").strip()
        # Drop list bullets so the excerpt starts at the statement itself
        chunk = re.sub(r"^[•\-\*]\s*", "", chunk)
        if chunk:
            sentences.append(chunk)
    return sentences
