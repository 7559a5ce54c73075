import logging
import sqlite3

import pytest

from study_assistant.citations.store import (
    SqliteCitationStore,
    dumps_citation_map,
    loads_citation_map,
)
from study_assistant.citations.streaming import parse_streaming_citations
from study_assistant.types import CitationEntry, CitationMap


def _citations() -> CitationMap:
    return CitationMap.numbered(
        [CitationEntry("doc-a", "A.pdf"), CitationEntry("doc-b", "B.pdf")]
    )


def test_absent_and_empty_stay_distinct() -> None:
    assert dumps_citation_map(None) is None
    assert dumps_citation_map(CitationMap()) == "{}"
    assert loads_citation_map(None) is None

    empty = loads_citation_map("{}")
    assert empty is not None
    assert len(empty) == 0


def test_round_trip_keeps_enrichment_fields() -> None:
    enriched = CitationMap(
        {"1": CitationEntry("doc-a", "A.pdf", document_exists=False, error="gone")}
    )

    assert loads_citation_map(dumps_citation_map(enriched)) == enriched


def test_corrupt_payloads_degrade_to_empty(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        assert loads_citation_map("not json") == {}
        assert loads_citation_map("[1, 2]") == {}
        assert loads_citation_map('{"1": {"documentId": "doc-a"}}') == {}
        assert loads_citation_map('{"2": {"documentId": "a", "documentName": "A.pdf"}}') == {}

    assert "not valid JSON" in caplog.text
    assert loads_citation_map("null") is None


def test_sqlite_store_round_trip(tmp_path) -> None:
    store = SqliteCitationStore(tmp_path / "citations.db")

    store.save("m-absent", None)
    store.save("m-empty", CitationMap())
    store.save("m-full", _citations())

    assert store.load("m-absent") is None
    assert store.load("m-empty") == {}
    assert store.load("m-empty") is not None
    assert store.load("m-full") == _citations()


def test_sqlite_store_overwrites_and_deletes(tmp_path) -> None:
    store = SqliteCitationStore(tmp_path / "citations.db")
    store.save("m1", None)
    store.save("m1", _citations())

    assert store.load("m1") == _citations()

    store.delete("m1")
    with pytest.raises(KeyError):
        store.load("m1")


def test_sqlite_store_survives_corrupt_rows(tmp_path) -> None:
    path = tmp_path / "citations.db"
    store = SqliteCitationStore(path)
    with sqlite3.connect(path) as conn:
        conn.execute(
            "INSERT INTO message_citations(message_id, citations) VALUES(?, ?)",
            ("m-bad", "{broken"),
        )
        conn.commit()

    assert store.load("m-bad") == {}


def test_unknown_message_raises_key_error(tmp_path) -> None:
    store = SqliteCitationStore(tmp_path / "citations.db")

    with pytest.raises(KeyError):
        store.load("missing")


def test_sqlite_store_refuses_provisional_maps(tmp_path) -> None:
    store = SqliteCitationStore(tmp_path / "citations.db")

    with pytest.raises(ValueError, match="provisional"):
        store.save("m-1", parse_streaming_citations("Light ^[A.pdf]"))

    with pytest.raises(KeyError):
        store.load("m-1")
