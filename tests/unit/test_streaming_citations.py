from study_assistant.citations.streaming import is_provisional, parse_streaming_citations
from study_assistant.config import CitationConfig


def test_numbers_by_first_appearance_with_placeholder_ids() -> None:
    citations = parse_streaming_citations("^[B.pdf] first, then ^[A.pdf], then ^[B.pdf]")

    assert citations.to_json() == {
        "1": {"documentId": "streaming_1", "documentName": "B.pdf"},
        "2": {"documentId": "streaming_2", "documentName": "A.pdf"},
    }
    assert is_provisional(citations)


def test_unclosed_marker_is_not_a_citation_yet() -> None:
    assert parse_streaming_citations("Partial answer ^[B.pd") == {}
    assert len(parse_streaming_citations("Partial answer ^[B.pdf] and ^[A")) == 1


def test_empty_content_yields_empty_map() -> None:
    assert parse_streaming_citations(None) == {}
    assert parse_streaming_citations("") == {}


def test_growing_prefix_keeps_earlier_numbers() -> None:
    text = "^[C.pdf] alpha ^[A.pdf] beta ^[B.pdf]"
    previous = {}
    for end in range(len(text) + 1):
        current = parse_streaming_citations(text[:end]).to_json()
        for number, entry in previous.items():
            assert current[number] == entry
        previous = current


def test_custom_placeholder_prefix() -> None:
    config = CitationConfig(streaming_id_prefix="pending-")
    citations = parse_streaming_citations("^[A.pdf]", config=config)

    assert citations["1"].document_id == "pending-1"
    assert is_provisional(citations, config=config)
    assert not is_provisional(citations)
