"""Shared domain models."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(slots=True)
class DocumentChunk:
    """An indexed passage of a study document."""

    chunk_id: str
    document_id: str
    study_id: str
    text: str
    chunk_index: int


@dataclass(slots=True)
class ScoredChunk:
    """A passage with its similarity score and rank."""

    chunk: DocumentChunk
    score: float
    rank: int = 0


@dataclass(frozen=True, slots=True)
class SearchResult:
    """One retrieved passage, used as ground truth for citation validation."""

    document_id: str
    document_name: str
    chunk_id: str
    content: str
    similarity: float
    chunk_index: int = 0


@dataclass(frozen=True, slots=True)
class CitationEntry:
    """The document behind one citation number.

    `document_exists` and `error` stay unset until the entry is enriched
    against the live document list.
    """

    document_id: str
    document_name: str
    document_exists: bool | None = None
    error: str | None = None

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "documentId": self.document_id,
            "documentName": self.document_name,
        }
        if self.document_exists is not None:
            payload["documentExists"] = self.document_exists
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> CitationEntry:
        exists = payload.get("documentExists")
        return cls(
            document_id=str(payload["documentId"]),
            document_name=str(payload["documentName"]),
            document_exists=bool(exists) if exists is not None else None,
            error=payload.get("error"),
        )

    def enriched(self, *, document_exists: bool, error: str | None) -> CitationEntry:
        return replace(self, document_exists=document_exists, error=error)


class CitationMap(Mapping[str, CitationEntry]):
    """Immutable `{citation number -> CitationEntry}` mapping.

    Keys are positive integers rendered as strings. The map is hashable and
    compares by value, so structurally equal maps are interchangeable as
    memoization keys.
    """

    __slots__ = ("_entries", "_hash")

    def __init__(
        self,
        entries: Mapping[str, CitationEntry] | Iterable[tuple[str, CitationEntry]] = (),
    ) -> None:
        self._entries: dict[str, CitationEntry] = dict(entries)
        self._hash: int | None = None

    @classmethod
    def numbered(cls, entries: Iterable[CitationEntry]) -> CitationMap:
        """Number entries 1..N in the order given."""
        return cls((str(number), entry) for number, entry in enumerate(entries, start=1))

    def __getitem__(self, key: str) -> CitationEntry:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._entries.items()))
        return self._hash

    def __repr__(self) -> str:
        return f"CitationMap({self._entries!r})"

    def to_json(self) -> dict[str, dict[str, Any]]:
        """Return the JSON-compatible wire shape (string keys, camelCase fields)."""
        return {number: entry.to_json() for number, entry in self._entries.items()}

    @classmethod
    def from_json(cls, payload: Mapping[str, Mapping[str, Any]]) -> CitationMap:
        return cls(
            (str(number), CitationEntry.from_json(entry)) for number, entry in payload.items()
        )


@dataclass(slots=True)
class PersistedToolCall:
    """One tool invocation recorded while an answer was generated."""

    tool_call_id: str
    tool_name: str
    input: dict[str, Any] | None = None
    output: str = ""
    timestamp: float = 0.0
    state: str = "output-available"
    query: str | None = None
    result_count: int | None = None

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "state": self.state,
            "input": self.input,
            "output": self.output,
            "timestamp": self.timestamp,
        }
        if self.query is not None:
            payload["query"] = self.query
        if self.result_count is not None:
            payload["resultCount"] = self.result_count
        return payload


@dataclass(frozen=True, slots=True)
class StudyDocument:
    """A live document as reported by the document list."""

    id: str
    file_name: str


@dataclass(frozen=True, slots=True)
class DocumentListing:
    """Snapshot of a study's live documents, possibly still loading."""

    study_id: str
    documents: tuple[StudyDocument, ...] = field(default_factory=tuple)
    is_loading: bool = False

    def document_ids(self) -> frozenset[str]:
        return frozenset(document.id for document in self.documents)
