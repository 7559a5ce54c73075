"""Provisional citation parsing while an answer is still streaming."""

from __future__ import annotations

from study_assistant.citations.syntax import iter_markers
from study_assistant.config import CitationConfig
from study_assistant.types import CitationEntry, CitationMap


def parse_streaming_citations(
    partial_content: str | None, *, config: CitationConfig | None = None
) -> CitationMap:
    """Number every distinct cited name by first appearance, without validation.

    Document ids are placeholders (`streaming_<n>`). The result is display-only:
    it is replaced wholesale by the validated map once the stream finishes and
    must never be persisted.
    """
    prefix = (config or CitationConfig()).streaming_id_prefix
    seen = list(dict.fromkeys(marker.document_name for marker in iter_markers(partial_content)))

    return CitationMap.numbered(
        CitationEntry(document_id=f"{prefix}{number}", document_name=name)
        for number, name in enumerate(seen, start=1)
    )


def is_provisional(citations: CitationMap, *, config: CitationConfig | None = None) -> bool:
    """True when any entry still carries a streaming placeholder id."""
    prefix = (config or CitationConfig()).streaming_id_prefix
    return any(entry.document_id.startswith(prefix) for entry in citations.values())
