from __future__ import annotations

import re
import unicodedata

_SEPARATORS_RE = re.compile(r"[\s'’`\-_/.,()]+")


def fold_text(value: str | None) -> str:
    """Lowercase, strip accents and collapse punctuation to single spaces."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _SEPARATORS_RE.sub(" ", stripped.lower()).strip()


def format_distance(meters: float) -> str:
    """Format a distance for subtitles: '850 m', '1.2 km'."""
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.1f} km"
