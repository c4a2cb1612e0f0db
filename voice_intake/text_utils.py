"""Text normalization helpers shared by extraction, matching and priority."""

from __future__ import annotations

import re
import unicodedata

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]")


def fold_text(text: str) -> str:
    """Lowercase, strip accents and collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", text)
    without_marks = "".join(c for c in decomposed if not unicodedata.combining(c))
    return _WHITESPACE.sub(" ", without_marks).strip().lower()


def normalize_name(text: str) -> str:
    """``fold_text`` plus punctuation removal, used for name comparisons."""
    return _WHITESPACE.sub(" ", _PUNCTUATION.sub(" ", fold_text(text))).strip()
