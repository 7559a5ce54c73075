"""Citation extraction against retrieved search results.

Numbers are assigned from the *set* of cited documents, sorted, so the same
answer over the same retrieved set always yields the same numbering no matter
where in the text each document was first cited.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from study_assistant.citations.syntax import document_sort_key, iter_markers
from study_assistant.types import CitationEntry, CitationMap, SearchResult

logger = logging.getLogger(__name__)

_NUMERIC_KEY = re.compile(r"^[1-9]\d*$")


@dataclass(slots=True)
class ExtractionReport:
    """Outcome of one extraction, for tracing."""

    citations: CitationMap
    markers_seen: int = 0
    hallucinated: list[str] = field(default_factory=list)


def extract_citations(
    content: str | None, search_results: Iterable[SearchResult]
) -> CitationMap:
    """Extract validated citations from generated answer text.

    Markers naming a document absent from `search_results` are dropped. The
    surviving document names are numbered 1..N in `document_sort_key` order.
    Returns an empty map when nothing validates.
    """
    return extract_citations_with_report(content, search_results).citations


def extract_citations_with_report(
    content: str | None, search_results: Iterable[SearchResult]
) -> ExtractionReport:
    valid_documents: dict[str, SearchResult] = {}
    for result in search_results:
        valid_documents[result.document_name] = result

    cited: set[str] = set()
    hallucinated: list[str] = []
    markers_seen = 0
    for marker in iter_markers(content):
        markers_seen += 1
        if marker.document_name not in valid_documents:
            if marker.document_name not in hallucinated:
                hallucinated.append(marker.document_name)
            continue
        cited.add(marker.document_name)

    for name in hallucinated:
        logger.warning("Dropping citation %r: not in search results", name)

    ordered = sorted(
        cited,
        key=lambda name: document_sort_key(name, valid_documents[name].document_id),
    )
    citations = CitationMap.numbered(
        CitationEntry(
            document_id=valid_documents[name].document_id,
            document_name=name,
        )
        for name in ordered
    )
    if citations:
        logger.info("Assigned %d citations from %d markers", len(citations), markers_seen)

    return ExtractionReport(
        citations=citations,
        markers_seen=markers_seen,
        hallucinated=hallucinated,
    )


def validate_citation_map(citations: Mapping[str, Any] | None) -> bool:
    """Check the structure of a (possibly persisted) citation map.

    Accepts a `CitationMap` or its JSON shape. Keys must be exactly "1".."N"
    and every entry must carry a non-empty document id and name.
    """
    if citations is None or not isinstance(citations, Mapping):
        return False

    keys = list(citations.keys())
    if not all(isinstance(key, str) and _NUMERIC_KEY.match(key) for key in keys):
        logger.warning("Citation map has non-numeric keys: %s", keys)
        return False
    if sorted(int(key) for key in keys) != list(range(1, len(keys) + 1)):
        logger.warning("Citation map numbering is not sequential: %s", keys)
        return False

    for number, entry in citations.items():
        if isinstance(entry, CitationEntry):
            document_id, document_name = entry.document_id, entry.document_name
        elif isinstance(entry, Mapping):
            document_id = entry.get("documentId")
            document_name = entry.get("documentName")
        else:
            logger.warning("Citation %s is not an object", number)
            return False
        if not isinstance(document_id, str) or not document_id:
            logger.warning("Citation %s is missing documentId", number)
            return False
        if not isinstance(document_name, str) or not document_name:
            logger.warning("Citation %s is missing documentName", number)
            return False
    return True
