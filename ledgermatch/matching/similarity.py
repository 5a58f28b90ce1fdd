"""Similarity primitives shared by conflict detection and categorization.

Everything here is pure: text normalization, description similarity on a
0-100 scale, day distance between statement dates, and amount equality with
a small tolerance. Malformed input never raises; it simply carries no
evidence (unknown date distance, unequal amounts).
"""

from __future__ import annotations

import re
from datetime import date, datetime
from difflib import SequenceMatcher

# Returned by date_distance_days when either date is missing or unparseable.
UNKNOWN_DATE_DISTANCE = 10**6

DEFAULT_AMOUNT_TOLERANCE = 0.01

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%Y%m%d",
    "%d/%m/%Y",
    "%d.%m.%Y",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)

_TRADEMARKS = re.compile(r"[®™©]")
_PUNCTUATION = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str | None) -> str:
    """Normalize a merchant description for comparison.

    - Lowercase
    - Strip trademark symbols and punctuation (hyphens survive)
    - Collapse whitespace and trim

    "  SPOTIFY  AB " and "Spotify AB" both become "spotify ab".
    """
    if not text:
        return ""
    text = text.lower()
    text = _TRADEMARKS.sub("", text)
    text = _PUNCTUATION.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


def similarity(a: str | None, b: str | None) -> int:
    """Score two descriptions from 0 (nothing shared) to 100 (normalized-equal).

    Uses SequenceMatcher on the normalized strings. The pair is ordered
    before matching so the score does not depend on argument order. Two
    descriptions that both normalize to "" count as equal.
    """
    norm_a = normalize(a)
    norm_b = normalize(b)
    if norm_a == norm_b:
        return 100
    if not norm_a or not norm_b:
        return 0
    first, second = sorted((norm_a, norm_b))
    ratio = SequenceMatcher(None, first, second).ratio()
    # A non-equal pair never rounds up to a perfect score.
    return min(99, int(round(ratio * 100)))


def parse_date(value) -> date | None:
    """Parse a statement date, returning None when absent or malformed."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def date_distance_days(d1, d2) -> int:
    """Absolute day difference, or UNKNOWN_DATE_DISTANCE if either is unknown."""
    first = parse_date(d1)
    second = parse_date(d2)
    if first is None or second is None:
        return UNKNOWN_DATE_DISTANCE
    return abs((first - second).days)


def dates_equal(d1, d2) -> bool:
    """Return True if both dates parse to the same day, or both are unknown."""
    return parse_date(d1) == parse_date(d2)


def amounts_equal(
    a: float | None,
    b: float | None,
    tolerance: float = DEFAULT_AMOUNT_TOLERANCE,
) -> bool:
    """Return True if the amounts differ by less than tolerance.

    Absorbs float noise from currency parsing (749.00 vs 749.001).
    A missing or non-numeric amount never equals anything.
    """
    if a is None or b is None:
        return False
    try:
        return abs(float(a) - float(b)) < tolerance
    except (TypeError, ValueError):
        return False
