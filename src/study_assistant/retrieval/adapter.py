"""Normalizes raw similarity-search hits into `SearchResult`s."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from study_assistant.types import ScoredChunk, SearchResult

logger = logging.getLogger(__name__)


class RawSearchHit(BaseModel):
    """Accepts camelCase (wire) or snake_case hit payloads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    document_id: str = Field(alias="documentId", min_length=1)
    document_name: str = Field(alias="documentName", min_length=1)
    chunk_id: str = Field(alias="chunkId", min_length=1)
    content: str = ""
    similarity: float
    chunk_index: int = Field(default=0, alias="chunkIndex")

    @field_validator("similarity")
    @classmethod
    def _clamp_similarity(cls, value: float) -> float:
        return min(1.0, max(0.0, value))

    def to_result(self) -> SearchResult:
        return SearchResult(
            document_id=self.document_id,
            document_name=self.document_name,
            chunk_id=self.chunk_id,
            content=self.content,
            similarity=self.similarity,
            chunk_index=self.chunk_index,
        )


def to_search_result(raw: Mapping[str, Any]) -> SearchResult:
    """Adapt one hit; raises `pydantic.ValidationError` on missing fields."""
    return RawSearchHit.model_validate(raw).to_result()


def to_search_results(raws: Iterable[Mapping[str, Any]]) -> list[SearchResult]:
    results: list[SearchResult] = []
    for index, raw in enumerate(raws):
        try:
            results.append(to_search_result(raw))
        except ValidationError as exc:
            logger.warning("Skipping malformed search hit #%d: %s", index, exc.errors())
    return results


def from_scored_chunk(scored: ScoredChunk, document_name: str) -> SearchResult:
    return SearchResult(
        document_id=scored.chunk.document_id,
        document_name=document_name,
        chunk_id=scored.chunk.chunk_id,
        content=scored.chunk.text,
        similarity=min(1.0, max(0.0, scored.score)),
        chunk_index=scored.chunk.chunk_index,
    )
