"""Inline citation marker grammar.

A marker is `^[` + document display name + `]`; the name may not contain an
unescaped `]` and is trimmed of surrounding whitespace. Every component that
reads or rewrites markers goes through this module so they agree on one
grammar.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterator
from dataclasses import dataclass

CITATION_PATTERN = re.compile(r"\^\[([^\]]+)\]")
MARKER_OPEN = "^["


@dataclass(frozen=True, slots=True)
class CitationMarker:
    """One marker occurrence in a text."""

    document_name: str
    start: int
    end: int
    raw: str


def iter_markers(text: str | None) -> Iterator[CitationMarker]:
    """Yield markers left to right. `None` behaves like an empty string."""
    if not text or MARKER_OPEN not in text:
        return
    for match in CITATION_PATTERN.finditer(text):
        yield CitationMarker(
            document_name=match.group(1).strip(),
            start=match.start(),
            end=match.end(),
            raw=match.group(0),
        )


def _base_form(name: str) -> str:
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return stripped.casefold()


def document_sort_key(document_name: str, document_id: str = "") -> tuple[str, str, str, str]:
    """Total order used for final citation numbering.

    Primary: accent- and case-insensitive base form. Ties fall through to the
    case-folded name, the exact name and finally the document id.
    """
    normalized = unicodedata.normalize("NFKC", document_name)
    return (_base_form(normalized), normalized.casefold(), document_name, document_id)
