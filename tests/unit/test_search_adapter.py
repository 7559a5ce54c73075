import logging

import pytest
from pydantic import ValidationError

from study_assistant.retrieval.adapter import from_scored_chunk, to_search_result, to_search_results
from study_assistant.types import DocumentChunk, ScoredChunk


def test_camel_and_snake_case_hits_are_accepted() -> None:
    camel = to_search_result(
        {
            "documentId": "doc-a",
            "documentName": "A.pdf",
            "chunkId": "doc-a-chunk-0001",
            "content": "Chlorophyll absorbs light.",
            "similarity": 0.82,
            "chunkIndex": 1,
            "embedding": [0.1, 0.2],
        }
    )
    snake = to_search_result(
        {
            "document_id": "doc-a",
            "document_name": "A.pdf",
            "chunk_id": "doc-a-chunk-0001",
            "content": "Chlorophyll absorbs light.",
            "similarity": 0.82,
            "chunk_index": 1,
        }
    )

    assert camel == snake
    assert camel.chunk_index == 1


def test_similarity_is_clamped() -> None:
    hit = {"documentId": "d", "documentName": "D.pdf", "chunkId": "c", "similarity": 1.3}

    assert to_search_result(hit).similarity == 1.0
    assert to_search_result({**hit, "similarity": -0.2}).similarity == 0.0


def test_missing_fields_raise() -> None:
    with pytest.raises(ValidationError):
        to_search_result({"documentId": "d", "chunkId": "c", "similarity": 0.5})


def test_batch_skips_malformed_hits(caplog) -> None:
    hits = [
        {"documentId": "d", "documentName": "D.pdf", "chunkId": "c1", "similarity": 0.4},
        {"documentName": "E.pdf", "chunkId": "c2", "similarity": 0.4},
    ]

    with caplog.at_level(logging.WARNING):
        results = to_search_results(hits)

    assert [result.chunk_id for result in results] == ["c1"]
    assert "malformed search hit #1" in caplog.text


def test_scored_chunk_takes_current_document_name() -> None:
    chunk = DocumentChunk(
        chunk_id="s1:doc-a-chunk-0000",
        document_id="doc-a",
        study_id="s1",
        text="Passage",
        chunk_index=0,
    )

    result = from_scored_chunk(ScoredChunk(chunk=chunk, score=0.7), "Renamed.pdf")

    assert result.document_name == "Renamed.pdf"
    assert result.similarity == 0.7
    assert result.content == "Passage"
