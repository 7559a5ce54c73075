"""Citation lookup construction and markdown rewriting.

`^[Doc.pdf]` markers are parsed by mistletoe itself, as `CitationRef` span
tokens taking precedence over emphasis, links, code spans and inline HTML, so
a document name is never split by the markdown it happens to contain. Refs
resolved against the lookup render as `<cite>` elements; the rest render as
their literal marker text.
"""

from __future__ import annotations

import html
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Any

from mistletoe import Document
from mistletoe.html_renderer import HTMLRenderer
from mistletoe.span_token import RawText, SpanToken

from study_assistant.citations.syntax import CITATION_PATTERN, iter_markers
from study_assistant.types import CitationMap


@dataclass(frozen=True, slots=True)
class LookupEntry:
    citation_number: int
    document_id: str


CitationLookup = Mapping[str, LookupEntry]

_EMPTY_LOOKUP: CitationLookup = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class CitationPosition:
    citation_number: int
    document_name: str
    document_id: str
    position: int


@lru_cache(maxsize=256)
def build_citation_lookup(citations: CitationMap | None) -> CitationLookup:
    """Reverse `documentName -> (number, documentId)` lookup for a map.

    Memoized on the map's value: structurally equal maps share one lookup.
    """
    if not citations:
        return _EMPTY_LOOKUP
    lookup: dict[str, LookupEntry] = {}
    for number, entry in citations.items():
        lookup[entry.document_name] = LookupEntry(
            citation_number=int(number),
            document_id=entry.document_id,
        )
    return MappingProxyType(lookup)


class CitationRef(SpanToken):
    """One `^[Document name]` marker.

    Inline markdown inside the brackets is not parsed. `citation_number` and
    `document_id` stay None until a `CitationTransform` resolves the ref.
    """

    pattern = CITATION_PATTERN
    parse_inner = False
    # Wins overlaps with emphasis, links, code spans and inline HTML.
    precedence = 6

    def __init__(self, match: Any) -> None:
        super().__init__(match)
        self.raw = match.group(0)
        self.document_name = match.group(1).strip()
        self.citation_number: int | None = None
        self.document_id: str | None = None

    @property
    def resolved(self) -> bool:
        return self.citation_number is not None

    def __repr__(self) -> str:
        return (
            f"<CitationRef number={self.citation_number} "
            f"document_id={self.document_id!r} document_name={self.document_name!r}>"
        )


class CitationTransform:
    """Resolves the `CitationRef` tokens of a parsed document against a lookup."""

    def __init__(self, lookup: CitationLookup) -> None:
        self.lookup = lookup

    def apply(self, document: Any) -> Any:
        self._visit(document)
        return document

    def resolve(self, ref: CitationRef) -> bool:
        entry = self.lookup.get(ref.document_name)
        if entry is None:
            return False
        ref.citation_number = entry.citation_number
        ref.document_id = entry.document_id
        return True

    def _visit(self, token: Any) -> None:
        for child in getattr(token, "children", None) or ():
            if isinstance(child, CitationRef):
                self.resolve(child)
            else:
                self._visit(child)


@lru_cache(maxsize=256)
def citation_transform(citations: CitationMap | None) -> CitationTransform | None:
    """Transform for a map, or None when there is nothing that could match."""
    lookup = build_citation_lookup(citations)
    if not lookup:
        return None
    return CitationTransform(lookup)


class CitationHTMLRenderer(HTMLRenderer):
    """HTML renderer that parses and renders `CitationRef` tokens.

    Documents must be built inside the renderer context for markers to be
    tokenized.
    """

    def __init__(self, *extras: Any, **kwargs: Any) -> None:
        super().__init__(CitationRef, *extras, **kwargs)

    def render_citation_ref(self, token: CitationRef) -> str:
        if not token.resolved:
            return self.render_raw_text(RawText(token.raw))
        return '<cite data-citation="{}" data-doc="{}"></cite>'.format(
            token.citation_number,
            html.escape(token.document_name, quote=True),
        )


def render_markdown(content: str | None, citations: CitationMap | None) -> str:
    transform = citation_transform(citations)
    with CitationHTMLRenderer() as renderer:
        document = Document(content or "")
        if transform is not None:
            transform.apply(document)
        return renderer.render(document)


def replace_citations_with_numbers(content: str | None, citations: CitationMap | None) -> str:
    """Plain-text rendering: `text^[Doc.pdf]` becomes `text[1]`."""
    if not content:
        return ""
    lookup = build_citation_lookup(citations)
    pieces: list[str] = []
    cursor = 0
    for marker in iter_markers(content):
        pieces.append(content[cursor : marker.start])
        entry = lookup.get(marker.document_name)
        pieces.append(f"[{entry.citation_number}]" if entry else marker.raw)
        cursor = marker.end
    pieces.append(content[cursor:])
    return "".join(pieces)


def parse_citation_positions(
    content: str | None, citations: CitationMap | None
) -> list[CitationPosition]:
    lookup = build_citation_lookup(citations)
    positions: list[CitationPosition] = []
    for marker in iter_markers(content):
        entry = lookup.get(marker.document_name)
        if entry is None:
            continue
        positions.append(
            CitationPosition(
                citation_number=entry.citation_number,
                document_name=marker.document_name,
                document_id=entry.document_id,
                position=marker.start,
            )
        )
    return positions
