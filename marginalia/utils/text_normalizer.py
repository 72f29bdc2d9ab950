"""Small text helpers shared by catalog adapters and scrapers."""

from __future__ import annotations

import re

_YEAR_RE = re.compile(r"\b(\d{4})\b")
_WHITESPACE_RE = re.compile(r"\s+")


def parse_year(value: object) -> int:
    """Pull a four-digit year out of a free-form date value.

    Catalogs report dates as ``"1998"``, ``"March 3, 2005"`` or
    ``"2005-03-03"``.  Returns ``0`` when no year can be found.
    """
    if isinstance(value, int):
        return value if value > 0 else 0
    if not isinstance(value, str):
        return 0
    match = _YEAR_RE.search(value)
    return int(match.group(1)) if match else 0


def force_https(url: str | None) -> str:
    """Rewrite an ``http://`` URL to ``https://``; ``None`` becomes ``""``."""
    if not url:
        return ""
    if url.startswith("http://"):
        return "https://" + url[len("http://"):]
    return url


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces and trim."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def excerpt(text: str, limit: int) -> str:
    """Return the leading *limit* characters of *text*, trimmed."""
    return text[:limit].strip()
