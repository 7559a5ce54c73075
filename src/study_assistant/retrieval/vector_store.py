"""Search and document-list contracts plus an in-memory study index."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from pydantic import BaseModel, Field

from study_assistant.config import SearchConfig
from study_assistant.retrieval.adapter import from_scored_chunk
from study_assistant.retrieval.embedder import Embedder, HashingEmbedder, cosine_similarity
from study_assistant.types import (
    DocumentChunk,
    DocumentListing,
    ScoredChunk,
    SearchResult,
    StudyDocument,
)


class SearchOptions(BaseModel):
    limit: int = Field(default=5, ge=1)
    min_similarity: float = Field(default=0.1, ge=0.0, le=1.0)
    study_id: str | None = None
    document_ids: list[str] | None = None


class SearchBackend(Protocol):
    """Similarity search consumed by replay. Must be safe to call concurrently."""

    async def search(
        self,
        query: str,
        *,
        study_id: str,
        limit: int,
        min_similarity: float,
        document_ids: list[str] | None = None,
    ) -> list[SearchResult]:
        """Return ranked passages for `query` within one study."""


@dataclass(slots=True)
class DocumentLookupResult:
    found: list[StudyDocument] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _StoredPassage:
    chunk: DocumentChunk
    embedding: list[float]


class InMemoryStudyIndex:
    """Deterministic study-scoped document index used for tests and local runs.

    Serves both as the similarity search collaborator and as the live document
    list. Document names are resolved at query time, so a rename is visible to
    the next search.
    """

    def __init__(
        self,
        embedder: Embedder | None = None,
        config: SearchConfig | None = None,
    ) -> None:
        self.embedder = embedder or HashingEmbedder()
        self.config = config or SearchConfig()
        self._documents: dict[str, dict[str, StudyDocument]] = {}
        self._passages: dict[str, _StoredPassage] = {}

    def add_document(
        self,
        study_id: str,
        document_id: str,
        file_name: str,
        passages: list[str],
    ) -> list[DocumentChunk]:
        study = self._documents.setdefault(study_id, {})
        if document_id in study:
            raise ValueError(f"Document already indexed: {document_id}")
        study[document_id] = StudyDocument(id=document_id, file_name=file_name)

        chunks = [
            DocumentChunk(
                chunk_id=f"{study_id}:{document_id}-chunk-{index:04d}",
                document_id=document_id,
                study_id=study_id,
                text=text,
                chunk_index=index,
            )
            for index, text in enumerate(passages)
            if text.strip()
        ]
        embeddings = self.embedder.embed_passages([chunk.text for chunk in chunks])
        for chunk, embedding in zip(chunks, embeddings, strict=True):
            self._passages[chunk.chunk_id] = _StoredPassage(chunk=chunk, embedding=embedding)
        return chunks

    def rename_document(self, study_id: str, document_id: str, file_name: str) -> StudyDocument:
        study = self._study(study_id)
        if document_id not in study:
            raise KeyError(f"Document not found: {document_id}")
        renamed = StudyDocument(id=document_id, file_name=file_name)
        study[document_id] = renamed
        return renamed

    def delete_document(self, study_id: str, document_id: str) -> None:
        study = self._study(study_id)
        if study.pop(document_id, None) is None:
            raise KeyError(f"Document not found: {document_id}")
        self._passages = {
            chunk_id: stored
            for chunk_id, stored in self._passages.items()
            if (stored.chunk.study_id, stored.chunk.document_id) != (study_id, document_id)
        }

    def documents(self, study_id: str) -> list[StudyDocument]:
        return list(self._study(study_id).values())

    def listing(self, study_id: str) -> DocumentListing:
        return DocumentListing(study_id=study_id, documents=tuple(self.documents(study_id)))

    def find_document_ids(self, study_id: str, names: list[str]) -> DocumentLookupResult:
        by_name = {doc.file_name.lower(): doc for doc in self.documents(study_id)}
        result = DocumentLookupResult()
        for name in names:
            match = by_name.get(name.strip().lower())
            if match is None:
                result.not_found.append(name)
            else:
                result.found.append(match)
        return result

    def find_relevant_chunks(
        self, query: str, options: SearchOptions | None = None
    ) -> list[SearchResult]:
        if not query.strip():
            raise ValueError("Search query cannot be empty")
        options = options or SearchOptions(
            limit=self.config.default_limit,
            min_similarity=self.config.default_min_similarity,
        )
        allowed = set(options.document_ids) if options.document_ids else None
        query_embedding = self.embedder.embed_query(query)

        scored: list[ScoredChunk] = []
        for stored in self._passages.values():
            chunk = stored.chunk
            if options.study_id is not None and chunk.study_id != options.study_id:
                continue
            if allowed is not None and chunk.document_id not in allowed:
                continue
            similarity = cosine_similarity(query_embedding, stored.embedding)
            if similarity >= options.min_similarity:
                scored.append(ScoredChunk(chunk=chunk, score=similarity))

        ranked = sorted(scored, key=lambda item: (-item.score, item.chunk.chunk_id))
        results: list[SearchResult] = []
        for rank, item in enumerate(ranked[: options.limit], start=1):
            item.rank = rank
            document = self._documents[item.chunk.study_id][item.chunk.document_id]
            results.append(from_scored_chunk(item, document.file_name))
        return results

    async def search(
        self,
        query: str,
        *,
        study_id: str,
        limit: int,
        min_similarity: float,
        document_ids: list[str] | None = None,
    ) -> list[SearchResult]:
        return self.find_relevant_chunks(
            query,
            SearchOptions(
                limit=limit,
                min_similarity=min_similarity,
                study_id=study_id,
                document_ids=document_ids,
            ),
        )

    def _study(self, study_id: str) -> dict[str, StudyDocument]:
        return self._documents.get(study_id, {})
