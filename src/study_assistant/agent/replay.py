"""Re-executes recorded search tool calls to rebuild citation ground truth.

The generation transport only keeps human-readable tool output, so the
`SearchResult`s an answer was grounded on are reconstructed by running the
same searches again with the same parameters. Replays run concurrently; each
one fails on its own, and the batch proceeds with whatever succeeded.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from study_assistant.config import ReplayConfig
from study_assistant.retrieval.vector_store import SearchBackend
from study_assistant.types import PersistedToolCall, SearchResult

logger = logging.getLogger(__name__)


class ReplayStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


class ReplayParameters(BaseModel):
    """Search parameters decoded from a recorded tool input.

    Only `query` is required. Optional parameters that are missing, falsy or
    unusable decode to None so the replay falls back to the configured default.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    query: str = Field(min_length=1)
    limit: int | None = None
    min_similarity: float | None = Field(default=None, alias="minSimilarity")
    document_ids: list[str] | None = Field(default=None, alias="documentIds")

    @field_validator("limit", mode="before")
    @classmethod
    def _usable_limit(cls, value: Any) -> int | None:
        if not _is_number(value) or value < 1:
            return None
        return int(value)

    @field_validator("min_similarity", mode="before")
    @classmethod
    def _usable_similarity(cls, value: Any) -> float | None:
        if not _is_number(value) or not 0 < value <= 1:
            return None
        return float(value)

    @field_validator("document_ids", mode="before")
    @classmethod
    def _usable_document_ids(cls, value: Any) -> list[str] | None:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            return None
        ids = [item for item in value if isinstance(item, str) and item]
        return ids or None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


@dataclass(slots=True)
class ReplayOutcome:
    tool_call_id: str
    tool_name: str
    status: ReplayStatus
    results: list[SearchResult] = field(default_factory=list)
    error: str | None = None


@dataclass(slots=True)
class ReplayReport:
    results: list[SearchResult]
    outcomes: list[ReplayOutcome]

    def count(self, status: ReplayStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)


def is_search_tool(tool_name: str, config: ReplayConfig | None = None) -> bool:
    return tool_name.startswith((config or ReplayConfig()).search_tool_prefix)


async def replay_searches(
    tool_calls: Sequence[PersistedToolCall],
    study_id: str,
    search: SearchBackend,
    *,
    config: ReplayConfig | None = None,
) -> list[SearchResult]:
    """Replay search tool calls and return their merged, chunk-deduplicated results."""
    report = await run_replays(tool_calls, study_id, search, config=config)
    return report.results


async def run_replays(
    tool_calls: Sequence[PersistedToolCall],
    study_id: str,
    search: SearchBackend,
    *,
    config: ReplayConfig | None = None,
) -> ReplayReport:
    if not study_id:
        raise ValueError("study_id is required to replay searches")
    config = config or ReplayConfig()

    search_calls = [call for call in tool_calls if is_search_tool(call.tool_name, config)]
    outcomes: list[ReplayOutcome | None] = [None] * len(search_calls)
    pending: list[tuple[int, Any]] = []

    for position, call in enumerate(search_calls):
        prepared = _prepare(call)
        if isinstance(prepared, ReplayOutcome):
            outcomes[position] = prepared
            continue
        pending.append((position, _replay_one(call, prepared, study_id, search, config)))

    if search_calls:
        logger.info("Replaying %d of %d search tool calls", len(pending), len(search_calls))

    settled = await asyncio.gather(*(task for _, task in pending))
    for (position, _), outcome in zip(pending, settled, strict=True):
        outcomes[position] = outcome

    finished = [outcome for outcome in outcomes if outcome is not None]
    report = ReplayReport(results=_merge(finished), outcomes=finished)

    not_ok = len(finished) - report.count(ReplayStatus.OK)
    if not_ok:
        logger.warning(
            "%d/%d search replays did not succeed; using partial results from %d",
            not_ok,
            len(finished),
            report.count(ReplayStatus.OK),
        )
    return report


def _prepare(call: PersistedToolCall) -> ReplayOutcome | ReplayParameters:
    if not call.input:
        logger.warning("Tool call %s (%s) has no input", call.tool_call_id, call.tool_name)
        return ReplayOutcome(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            status=ReplayStatus.SKIPPED,
            error="missing input",
        )
    try:
        return ReplayParameters.model_validate(call.input)
    except ValidationError as exc:
        logger.warning(
            "Tool call %s (%s) has unusable input: %s",
            call.tool_call_id,
            call.tool_name,
            exc.errors(include_url=False),
        )
        return ReplayOutcome(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            status=ReplayStatus.SKIPPED,
            error="missing query",
        )


async def _replay_one(
    call: PersistedToolCall,
    params: ReplayParameters,
    study_id: str,
    search: SearchBackend,
    config: ReplayConfig,
) -> ReplayOutcome:
    document_ids = params.document_ids if call.tool_name == config.specific_documents_tool else None
    try:
        results = await search.search(
            params.query,
            study_id=study_id,
            limit=params.limit or config.default_limit,
            min_similarity=params.min_similarity or config.default_min_similarity,
            document_ids=document_ids or None,
        )
    except Exception as exc:
        logger.warning("Replay of %s (%s) failed: %s", call.tool_name, call.tool_call_id, exc)
        return ReplayOutcome(
            tool_call_id=call.tool_call_id,
            tool_name=call.tool_name,
            status=ReplayStatus.FAILED,
            error=str(exc),
        )
    return ReplayOutcome(
        tool_call_id=call.tool_call_id,
        tool_name=call.tool_name,
        status=ReplayStatus.OK,
        results=list(results),
    )


def _merge(outcomes: list[ReplayOutcome]) -> list[SearchResult]:
    merged: list[SearchResult] = []
    seen: set[str] = set()
    for outcome in outcomes:
        if outcome.status is not ReplayStatus.OK:
            continue
        for result in outcome.results:
            if result.chunk_id in seen:
                continue
            seen.add(result.chunk_id)
            merged.append(result)
    return merged
