import pytest

from study_assistant.retrieval.embedder import HashingEmbedder, cosine_similarity
from study_assistant.retrieval.vector_store import InMemoryStudyIndex, SearchOptions


def _index() -> InMemoryStudyIndex:
    index = InMemoryStudyIndex()
    index.add_document(
        "study-1",
        "doc-bio",
        "Biology.pdf",
        ["Photosynthesis converts light energy into chemical energy.", "   "],
    )
    index.add_document(
        "study-1",
        "doc-hist",
        "History.pdf",
        ["The treaty ended the war in 1648."],
    )
    index.add_document(
        "study-2",
        "doc-other",
        "Other.pdf",
        ["Photosynthesis converts light energy into chemical energy."],
    )
    return index


def test_embedder_is_deterministic() -> None:
    embedder = HashingEmbedder(dimension=64)

    assert embedder.embed_query("light energy") == embedder.embed_query("light energy")
    assert cosine_similarity(
        embedder.embed_query("light energy"), embedder.embed_query("light energy")
    ) == pytest.approx(1.0)
    with pytest.raises(ValueError):
        HashingEmbedder(dimension=4)


def test_search_is_scoped_to_study_and_skips_blank_passages() -> None:
    results = _index().find_relevant_chunks(
        "photosynthesis light energy",
        SearchOptions(limit=5, min_similarity=0.2, study_id="study-1"),
    )

    assert results
    assert results[0].document_name == "Biology.pdf"
    assert results[0].chunk_id == "study-1:doc-bio-chunk-0000"
    assert all(result.chunk_id.startswith("study-1:") for result in results)


def test_search_restricted_to_document_ids() -> None:
    results = _index().find_relevant_chunks(
        "photosynthesis light energy",
        SearchOptions(limit=5, min_similarity=0.0, study_id="study-1", document_ids=["doc-hist"]),
    )

    assert {result.document_id for result in results} <= {"doc-hist"}


def test_empty_query_is_rejected() -> None:
    with pytest.raises(ValueError):
        _index().find_relevant_chunks("   ")


def test_rename_is_visible_to_next_search() -> None:
    index = _index()
    index.rename_document("study-1", "doc-bio", "Plants.pdf")

    results = index.find_relevant_chunks(
        "photosynthesis light energy", SearchOptions(study_id="study-1")
    )

    assert results[0].document_name == "Plants.pdf"


def test_delete_removes_document_and_its_passages() -> None:
    index = _index()
    index.delete_document("study-1", "doc-bio")

    results = index.find_relevant_chunks(
        "photosynthesis light energy", SearchOptions(min_similarity=0.0, study_id="study-1")
    )

    assert all(result.document_id != "doc-bio" for result in results)
    assert "doc-bio" not in index.listing("study-1").document_ids()
    with pytest.raises(KeyError):
        index.delete_document("study-1", "doc-bio")
    with pytest.raises(KeyError):
        index.rename_document("study-1", "doc-bio", "x.pdf")


def test_duplicate_document_is_rejected() -> None:
    index = _index()

    with pytest.raises(ValueError):
        index.add_document("study-1", "doc-bio", "Again.pdf", ["text"])


def test_find_document_ids_is_case_insensitive() -> None:
    result = _index().find_document_ids("study-1", ["biology.PDF", "Missing.pdf"])

    assert [document.id for document in result.found] == ["doc-bio"]
    assert result.not_found == ["Missing.pdf"]


def test_listing_reports_live_documents() -> None:
    listing = _index().listing("study-1")

    assert listing.study_id == "study-1"
    assert not listing.is_loading
    assert listing.document_ids() == frozenset({"doc-bio", "doc-hist"})
