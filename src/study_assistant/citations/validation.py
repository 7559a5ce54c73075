"""Citation validation against the live document list of a study.

Validation is a two-phase state machine. While the document list is loading
(or belongs to another study, i.e. stale data during navigation) every
citation is optimistically valid; once loaded, existence is authoritative.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Protocol

from study_assistant.config import CitationConfig
from study_assistant.types import CitationMap, DocumentListing, StudyDocument


class ValidationPhase(str, Enum):
    LOADING = "loading"
    LOADED = "loaded"


@dataclass(frozen=True, slots=True)
class CitationValidationResult:
    is_valid: bool
    document_exists: bool
    error: str | None = None


CitationValidation = Mapping[str, CitationValidationResult]

_OPTIMISTIC = CitationValidationResult(is_valid=True, document_exists=True)
_EMPTY: CitationValidation = MappingProxyType({})


class DocumentSource(Protocol):
    """Live document existence source, owned outside the core."""

    def listing(self, study_id: str) -> DocumentListing:
        """Return the current (possibly loading) document snapshot for a study."""


def phase_for(listing: DocumentListing, study_id: str) -> ValidationPhase:
    if listing.is_loading or listing.study_id != study_id:
        return ValidationPhase.LOADING
    return ValidationPhase.LOADED


def validate_citations(
    citations: CitationMap | None,
    documents: Iterable[StudyDocument],
    phase: ValidationPhase,
    *,
    config: CitationConfig | None = None,
) -> CitationValidation:
    if not citations:
        return _EMPTY

    if phase is ValidationPhase.LOADING:
        return MappingProxyType({number: _OPTIMISTIC for number in citations})

    message = (config or CitationConfig()).deleted_document_message
    document_ids = {document.id for document in documents}
    results: dict[str, CitationValidationResult] = {}
    for number, entry in citations.items():
        exists = entry.document_id in document_ids
        results[number] = CitationValidationResult(
            is_valid=exists,
            document_exists=exists,
            error=None if exists else message,
        )
    return MappingProxyType(results)


class CitationValidator:
    """Memoizes `validate_citations` on the value of its inputs.

    The last result is returned as the same object whenever the citation map,
    the document set and the phase are all equal to the previous call, even
    if the caller rebuilt them.
    """

    def __init__(self, config: CitationConfig | None = None) -> None:
        self.config = config or CitationConfig()
        self._key: tuple[CitationMap | None, frozenset[StudyDocument], ValidationPhase] | None = None
        self._result: CitationValidation = _EMPTY

    def validate(
        self,
        citations: CitationMap | None,
        documents: Iterable[StudyDocument],
        phase: ValidationPhase,
    ) -> CitationValidation:
        document_set = frozenset(documents)
        key = (citations if citations else None, document_set, phase)
        if self._key is not None and self._key == key:
            return self._result

        self._result = validate_citations(citations, document_set, phase, config=self.config)
        self._key = key
        return self._result


def enrich_citation_map(
    citations: CitationMap, validation: CitationValidation
) -> CitationMap:
    """Copy `document_exists`/`error` from a validation onto the entries."""
    enriched = {}
    for number, entry in citations.items():
        result = validation.get(number, _OPTIMISTIC)
        enriched[number] = entry.enriched(
            document_exists=result.document_exists,
            error=result.error,
        )
    return CitationMap(enriched)


class CitationContext:
    """Study-scoped validation utilities over one document source."""

    def __init__(
        self,
        source: DocumentSource,
        study_id: str,
        *,
        config: CitationConfig | None = None,
    ) -> None:
        self.source = source
        self.study_id = study_id
        self._validator = CitationValidator(config)

    @property
    def is_loading(self) -> bool:
        return phase_for(self.source.listing(self.study_id), self.study_id) is ValidationPhase.LOADING

    def validate(self, citations: CitationMap | None) -> CitationValidation:
        listing = self.source.listing(self.study_id)
        return self._validator.validate(
            citations, listing.documents, phase_for(listing, self.study_id)
        )

    def enrich(self, citations: CitationMap) -> CitationMap:
        return enrich_citation_map(citations, self.validate(citations))

    def document_exists(self, document_id: str, study_id: str | None = None) -> bool:
        """Existence check with the same loading-optimistic policy as `validate`."""
        scope = study_id or self.study_id
        listing = self.source.listing(scope)
        if phase_for(listing, scope) is ValidationPhase.LOADING:
            return True
        return document_id in listing.document_ids()

    def is_document_valid(self, document_id: str) -> bool:
        """Strict check against whatever is currently listed."""
        return document_id in self.source.listing(self.study_id).document_ids()
