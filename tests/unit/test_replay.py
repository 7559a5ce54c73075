import asyncio
import logging

import pytest

from study_assistant.agent.replay import (
    ReplayStatus,
    is_search_tool,
    replay_searches,
    run_replays,
)
from study_assistant.types import PersistedToolCall, SearchResult


def _hit(document_id: str, chunk_id: str) -> SearchResult:
    return SearchResult(
        document_id=document_id,
        document_name=f"{document_id}.pdf",
        chunk_id=chunk_id,
        content="text",
        similarity=0.5,
    )


class _RecordingSearch:
    def __init__(self, responses: dict[str, list[SearchResult]], failing: set[str] = frozenset()) -> None:
        self.responses = responses
        self.failing = failing
        self.calls: list[dict] = []

    async def search(self, query, *, study_id, limit, min_similarity, document_ids=None):
        self.calls.append(
            {
                "query": query,
                "study_id": study_id,
                "limit": limit,
                "min_similarity": min_similarity,
                "document_ids": document_ids,
            }
        )
        if query in self.failing:
            raise RuntimeError(f"backend down for {query}")
        return list(self.responses.get(query, []))


def _call(tool_call_id: str, tool_name: str, tool_input: dict | None) -> PersistedToolCall:
    return PersistedToolCall(tool_call_id=tool_call_id, tool_name=tool_name, input=tool_input)


class _BarrierSearch:
    """Holds every search until all expected searches are in flight at once."""

    def __init__(self, expected: int, failing: set[str] = frozenset()) -> None:
        self.expected = expected
        self.failing = failing
        self.arrived = 0
        self.all_arrived = asyncio.Event()

    async def search(self, query, *, study_id, limit, min_similarity, document_ids=None):
        self.arrived += 1
        if self.arrived == self.expected:
            self.all_arrived.set()
        await asyncio.wait_for(self.all_arrived.wait(), timeout=1)
        if query in self.failing:
            raise RuntimeError(f"backend down for {query}")
        return [_hit(query, f"{query}-1")]


@pytest.mark.asyncio
async def test_replay_merges_and_deduplicates_by_chunk() -> None:
    search = _RecordingSearch(
        {
            "light": [_hit("a", "a-1"), _hit("b", "b-1")],
            "energy": [_hit("b", "b-1"), _hit("c", "c-1")],
        }
    )
    calls = [
        _call("t1", "search_all_documents", {"query": "light"}),
        _call("t2", "search_all_documents", {"query": "energy"}),
    ]

    results = await replay_searches(calls, "study-1", search)

    assert [result.chunk_id for result in results] == ["a-1", "b-1", "c-1"]


@pytest.mark.asyncio
async def test_replay_uses_recorded_parameters_and_defaults() -> None:
    search = _RecordingSearch({})
    calls = [
        _call("t1", "search_all_documents", {"query": "light", "limit": 4, "minSimilarity": 0.3}),
        _call("t2", "search_all_documents", {"query": "dark", "limit": 0, "minSimilarity": 0}),
        _call(
            "t3",
            "search_specific_documents",
            {"query": "leaf", "documentIds": ["doc-a", "doc-b"]},
        ),
    ]

    await run_replays(calls, "study-1", search)

    by_query = {call["query"]: call for call in search.calls}
    assert by_query["light"]["limit"] == 4
    assert by_query["light"]["min_similarity"] == 0.3
    assert by_query["dark"]["limit"] == 10
    assert by_query["dark"]["min_similarity"] == 0.1
    assert by_query["light"]["document_ids"] is None
    assert by_query["leaf"]["document_ids"] == ["doc-a", "doc-b"]
    assert {call["study_id"] for call in search.calls} == {"study-1"}


@pytest.mark.asyncio
async def test_non_search_tools_are_not_replayed() -> None:
    search = _RecordingSearch({})
    calls = [_call("t1", "find_document_ids", {"documentNames": ["A.pdf"]})]

    report = await run_replays(calls, "study-1", search)

    assert report.outcomes == []
    assert search.calls == []
    assert is_search_tool("search_all_documents")
    assert not is_search_tool("find_document_ids")


@pytest.mark.asyncio
async def test_calls_without_query_are_skipped() -> None:
    search = _RecordingSearch({"light": [_hit("a", "a-1")]})
    calls = [
        _call("t1", "search_all_documents", None),
        _call("t2", "search_all_documents", {"limit": 3}),
        _call("t3", "search_all_documents", {"query": "light"}),
    ]

    report = await run_replays(calls, "study-1", search)

    assert [outcome.status for outcome in report.outcomes] == [
        ReplayStatus.SKIPPED,
        ReplayStatus.SKIPPED,
        ReplayStatus.OK,
    ]
    assert report.outcomes[0].error == "missing input"
    assert report.outcomes[1].error == "missing query"
    assert [result.chunk_id for result in report.results] == ["a-1"]


@pytest.mark.asyncio
async def test_partial_failure_keeps_successful_results(caplog) -> None:
    search = _RecordingSearch({"light": [_hit("a", "a-1")]}, failing={"broken"})
    calls = [
        _call("t1", "search_all_documents", {"query": "broken"}),
        _call("t2", "search_all_documents", {"query": "light"}),
    ]

    with caplog.at_level(logging.WARNING):
        report = await run_replays(calls, "study-1", search)

    assert report.count(ReplayStatus.FAILED) == 1
    assert report.outcomes[0].error == "backend down for broken"
    assert [result.chunk_id for result in report.results] == ["a-1"]
    assert "did not succeed" in caplog.text


@pytest.mark.asyncio
async def test_all_failures_yield_empty_results() -> None:
    search = _RecordingSearch({}, failing={"broken"})

    results = await replay_searches(
        [_call("t1", "search_all_documents", {"query": "broken"})], "study-1", search
    )

    assert results == []


@pytest.mark.asyncio
async def test_missing_study_is_rejected() -> None:
    with pytest.raises(ValueError):
        await replay_searches([], "", _RecordingSearch({}))


@pytest.mark.asyncio
async def test_unusable_optional_parameters_fall_back_to_defaults() -> None:
    search = _RecordingSearch({"q": [_hit("a", "a-1")]})
    calls = [
        _call("t1", "search_all_documents", {"query": "q", "documentIds": "doc-a"}),
        _call("t2", "search_all_documents", {"query": "q", "minSimilarity": 1.5}),
        _call("t3", "search_all_documents", {"query": "q", "limit": 5.5}),
        _call("t4", "search_all_documents", {"query": "q", "limit": "many", "minSimilarity": True}),
        _call("t5", "search_specific_documents", {"query": "q", "documentIds": "doc-a"}),
    ]

    report = await run_replays(calls, "study-1", search)

    assert report.count(ReplayStatus.OK) == 5
    assert [call["document_ids"] for call in search.calls] == [None, None, None, None, ["doc-a"]]
    assert [call["min_similarity"] for call in search.calls] == [0.1, 0.1, 0.1, 0.1, 0.1]
    assert [call["limit"] for call in search.calls] == [10, 10, 5, 10, 10]
    assert [result.chunk_id for result in report.results] == ["a-1"]


@pytest.mark.asyncio
async def test_non_string_query_is_skipped_as_missing() -> None:
    report = await run_replays(
        [_call("t1", "search_all_documents", {"query": 42})], "study-1", _RecordingSearch({})
    )

    assert report.outcomes[0].status is ReplayStatus.SKIPPED
    assert report.outcomes[0].error == "missing query"


@pytest.mark.asyncio
async def test_replays_run_concurrently_and_fail_independently() -> None:
    queries = ["light", "energy", "broken", "leaf"]
    search = _BarrierSearch(expected=len(queries), failing={"broken"})
    calls = [
        _call(f"t{index}", "search_all_documents", {"query": query})
        for index, query in enumerate(queries)
    ]

    report = await run_replays(calls, "study-1", search)

    assert search.arrived == len(queries)
    assert [outcome.status for outcome in report.outcomes] == [
        ReplayStatus.OK,
        ReplayStatus.OK,
        ReplayStatus.FAILED,
        ReplayStatus.OK,
    ]
    assert [result.chunk_id for result in report.results] == ["light-1", "energy-1", "leaf-1"]
