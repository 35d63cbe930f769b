"""
Money parsing utilities for funding amounts and revenue thresholds.

Handles various formats:
- "£4 million" → (£4 million, 4000000)
- "up to €7m" → (up to €7m, 7000000)
- "$600,000" → ($600,000, 600000)
- "EUR 1.5M" → (EUR 1.5M, 1500000)
"""

import re
from typing import Optional, Tuple


# Magnitude multipliers
_MAGNITUDE_MAP = {
    # Long forms first so "million" is not read as "m" + "illion"
    "thousand": 1_000,
    "million": 1_000_000,
    "billion": 1_000_000_000,
    # Short forms
    "bn": 1_000_000_000,
    "k": 1_000,
    "m": 1_000_000,
    "b": 1_000_000_000,
}

_CURRENCY = r"(?:[£€$]|GBP|EUR|USD)"

_AMOUNT_PATTERN = re.compile(
    _CURRENCY + r"\s*([\d][\d,]*(?:\.\d+)?)\s*(thousand|million|billion|bn|[kmb])?\b",
    re.IGNORECASE,
)

# Bare numbers are only accepted with a magnitude word, to avoid reading years or counts
_BARE_AMOUNT_PATTERN = re.compile(
    r"\b([\d][\d,]*(?:\.\d+)?)\s*(thousand|million|billion)\b",
    re.IGNORECASE,
)


def _to_amount(number_str: str, magnitude_str: Optional[str]) -> Optional[int]:
    try:
        base_amount = float(number_str.replace(",", ""))
    except ValueError:
        return None

    multiplier = 1
    magnitude_str = (magnitude_str or "").lower().strip()
    for mag_key, mag_value in _MAGNITUDE_MAP.items():
        if magnitude_str == mag_key:
            multiplier = mag_value
            break

    return int(round(base_amount * multiplier))


def parse_amount(text: str) -> Tuple[str, Optional[int]]:
    """
    Parse a money amount from text, extracting both display string and numeric value.

    Examples:
        "£4 million" → ("£4 million", 4_000_000)
        "up to €7m" → ("up to €7m", 7_000_000)
        "not specified" → ("not specified", None)

    Args:
        text: Raw amount text

    Returns:
        Tuple of (display_string, amount). amount is None if parsing fails.
    """
    if not text or not text.strip():
        return text, None

    # Normalize whitespace
    text = re.sub(r"\s+", " ", text).strip()

    match = _AMOUNT_PATTERN.search(text) or _BARE_AMOUNT_PATTERN.search(text)
    if not match:
        return text, None

    return text, _to_amount(match.group(1), match.group(2))


def find_amount_span(text: str) -> Optional[Tuple[str, int]]:
    """
    Locate the first currency amount in text.

    Returns:
        (matched_text, amount) or None
    """
    match = _AMOUNT_PATTERN.search(text or "")
    if not match:
        return None
    amount = _to_amount(match.group(1), match.group(2))
    if amount is None:
        return None
    return match.group(0).strip(), amount


def format_amount(amount: Optional[float], symbol: str = "") -> str:
    """
    Format a numeric amount for display.

    Examples:
        4_000_000 → "4.0m"
        750_000 → "750k"
    """
    if amount is None:
        return "Not specified"

    if amount >= 1_000_000:
        return f"{symbol}{amount / 1_000_000:.1f}m"
    elif amount >= 1_000:
        return f"{symbol}{amount / 1_000:.0f}k"
    else:
        return f"{symbol}{amount:,.0f}"
