"""
RagChat - Text Utilities
=========================
Helpers for query normalisation, cache-key derivation, and log
previews.  Stateless and side-effect-free.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata

# Control characters (C0/C1) plus BOM, zero-width chars, soft hyphens
# and directional marks.
_NON_PRINTABLE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b\u200c\u200d\u200e\u200f\u00ad\u2060\ufffe]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_query(text: str | None) -> str:
    """
    Normalise a user query before it is embedded.

    Steps:
        1. Unicode NFC normalisation (canonical composition).
        2. Strip non-printable / zero-width characters.
        3. Collapse every whitespace run (including newlines) to one space.
        4. Strip leading / trailing whitespace.

    Case is preserved: the normalised string is exactly the text that
    gets embedded, so it can key the embedding cache without ever
    merging two distinct queries.

    Returns an empty string for ``None`` or whitespace-only input.
    """
    if not text:
        return ""
    text = unicodedata.normalize("NFC", text)
    text = _NON_PRINTABLE_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text)
    return text.strip()


def text_digest(text: str) -> str:
    """Return the hex SHA-256 digest of *text* (UTF-8)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def preview(text: str, limit: int = 60) -> str:
    """Single-line preview of *text* for log messages."""
    flat = _WHITESPACE_RE.sub(" ", text).strip()
    if len(flat) <= limit:
        return flat
    return flat[: limit - 1] + "…"
