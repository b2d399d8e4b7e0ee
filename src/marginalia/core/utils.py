"""Utility functions for marginalia."""

import re
import unicodedata
from datetime import datetime, timezone

_WS = re.compile(r"\s+")


def normalize_title(text: str) -> str:
    """
    Key used to compare link targets with note titles.

    - Unicode normalize (NFKC)
    - Trim leading/trailing whitespace
    - Collapse inner whitespace runs to a single space
    - Case-insensitive (casefold)

    Examples:
        >>> normalize_title("  Project   X ")
        'project x'
        >>> normalize_title("STRASSE") == normalize_title("straße")
        True
    """
    text = unicodedata.normalize("NFKC", text)
    text = _WS.sub(" ", text.strip())
    return text.casefold()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def context_snippet(text: str, start: int, end: int, radius: int = 50) -> str:
    """
    Text around text[start:end], with "..." where it was cut.
    """
    lo = max(0, start - radius)
    hi = min(len(text), end + radius)
    out = text[lo:hi]
    if lo > 0:
        out = "..." + out
    if hi < len(text):
        out = out + "..."
    return out
