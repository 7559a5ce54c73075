"""Assistant message streams and the finalization of their citations.

While an answer streams, only provisional citations exist: numbered by first
appearance and never checked against search results. Once the stream ends,
the recorded search calls are replayed and the validated citation map replaces
the provisional one.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from study_assistant.agent.replay import ReplayReport, run_replays
from study_assistant.citations.extractor import ExtractionReport, extract_citations_with_report
from study_assistant.citations.streaming import parse_streaming_citations
from study_assistant.config import CitationConfig, ReplayConfig
from study_assistant.retrieval.vector_store import SearchBackend
from study_assistant.types import CitationMap, PersistedToolCall

logger = logging.getLogger(__name__)

_TOOL_PART_PREFIX = "tool-"
_OUTPUT_AVAILABLE = "output-available"


class UnknownStreamEvent(ValueError):
    """Raised for a stream event whose `type` is not part of the protocol."""


class StreamClosed(RuntimeError):
    """Raised when a finalized or aborted stream is used again."""


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TextDelta(_Event):
    type: Literal["text-delta"]
    delta: str


class ToolInputAvailable(_Event):
    type: Literal["tool-input-available"]
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    input: dict[str, Any] | None = None


class ToolOutputAvailable(_Event):
    type: Literal["tool-output-available"]
    tool_call_id: str = Field(alias="toolCallId")
    output: Any = None


class Finish(_Event):
    type: Literal["finish"]


class Abort(_Event):
    type: Literal["abort"]


StreamEvent = Annotated[
    Union[TextDelta, ToolInputAvailable, ToolOutputAvailable, Finish, Abort],
    Field(discriminator="type"),
]
_STREAM_EVENT = TypeAdapter(StreamEvent)


def decode_stream_event(payload: Mapping[str, Any]) -> StreamEvent:
    """Decode one untyped stream event into its typed variant."""
    try:
        return _STREAM_EVENT.validate_python(payload)
    except ValidationError as exc:
        if any(error["type"].startswith("union_tag") for error in exc.errors()):
            raise UnknownStreamEvent(f"Unknown stream event type: {payload.get('type')!r}") from exc
        raise


class _MessagePart(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    state: str | None = None
    tool_call_id: str | None = Field(default=None, alias="toolCallId")
    input: dict[str, Any] | None = None
    output: Any = None


def extract_tool_calls(parts: Iterable[Mapping[str, Any]]) -> list[PersistedToolCall]:
    """Collect completed tool calls from persisted message parts.

    Parts that are not tool parts, are still running, or repeat an earlier
    `toolCallId` are ignored.
    """
    calls: list[PersistedToolCall] = []
    seen: set[str] = set()
    for raw in parts:
        part = _MessagePart.model_validate(raw)
        if not part.type.startswith(_TOOL_PART_PREFIX) or part.state != _OUTPUT_AVAILABLE:
            continue
        if not part.tool_call_id or part.tool_call_id in seen:
            continue
        seen.add(part.tool_call_id)
        calls.append(
            _tool_call(
                tool_call_id=part.tool_call_id,
                tool_name=part.type[len(_TOOL_PART_PREFIX) :],
                tool_input=part.input,
                output=part.output,
            )
        )
    return calls


def message_text(parts: Iterable[Mapping[str, Any]]) -> str:
    """Join the text parts of a persisted message."""
    return "".join(
        str(part.get("text", "")) for part in parts if part.get("type") == "text"
    )


def _tool_call(
    *, tool_call_id: str, tool_name: str, tool_input: dict[str, Any] | None, output: Any
) -> PersistedToolCall:
    text = output if isinstance(output, str) else json.dumps(output)
    query = (tool_input or {}).get("query")
    result_count = None
    if isinstance(output, Mapping) and isinstance(output.get("resultCount"), int):
        result_count = output["resultCount"]
    return PersistedToolCall(
        tool_call_id=tool_call_id,
        tool_name=tool_name,
        input=tool_input,
        output=text,
        timestamp=time.time(),
        query=query if isinstance(query, str) else None,
        result_count=result_count,
    )


@dataclass(slots=True)
class FinalizedMessage:
    content: str
    tool_calls: list[PersistedToolCall]
    citations: CitationMap
    replay: ReplayReport
    extraction: ExtractionReport


async def finalize_citations(
    content: str,
    tool_calls: list[PersistedToolCall],
    study_id: str,
    search: SearchBackend,
    *,
    replay_config: ReplayConfig | None = None,
) -> FinalizedMessage:
    """Replay the message's searches and extract its validated citations."""
    replay = await run_replays(tool_calls, study_id, search, config=replay_config)
    extraction = extract_citations_with_report(content, replay.results)
    return FinalizedMessage(
        content=content,
        tool_calls=list(tool_calls),
        citations=extraction.citations,
        replay=replay,
        extraction=extraction,
    )


class _StreamState(str, Enum):
    OPEN = "open"
    FINISHED = "finished"
    ABORTED = "aborted"
    FINALIZED = "finalized"


@dataclass(slots=True)
class MessageStream:
    """Accumulates one assistant message as its stream events arrive."""

    message_id: str | None = None
    citation_config: CitationConfig = field(default_factory=CitationConfig)
    replay_config: ReplayConfig = field(default_factory=ReplayConfig)
    _chunks: list[str] = field(default_factory=list, init=False, repr=False)
    _inputs: dict[str, ToolInputAvailable] = field(default_factory=dict, init=False, repr=False)
    _tool_calls: dict[str, PersistedToolCall] = field(default_factory=dict, init=False, repr=False)
    _state: _StreamState = field(default=_StreamState.OPEN, init=False)

    @property
    def content(self) -> str:
        return "".join(self._chunks)

    @property
    def tool_calls(self) -> list[PersistedToolCall]:
        return list(self._tool_calls.values())

    @property
    def provisional_citations(self) -> CitationMap:
        if self._state is _StreamState.ABORTED:
            return CitationMap()
        return parse_streaming_citations(self.content, config=self.citation_config)

    def feed(self, event: StreamEvent | Mapping[str, Any]) -> None:
        if isinstance(event, Mapping):
            event = decode_stream_event(event)
        if self._state is not _StreamState.OPEN:
            raise StreamClosed(f"Stream is {self._state.value}; cannot accept {event.type}")

        if isinstance(event, TextDelta):
            self._chunks.append(event.delta)
        elif isinstance(event, ToolInputAvailable):
            self._inputs[event.tool_call_id] = event
        elif isinstance(event, ToolOutputAvailable):
            self._record_output(event)
        elif isinstance(event, Finish):
            self._state = _StreamState.FINISHED
        else:
            self.abort()

    def abort(self) -> None:
        if self._state is _StreamState.FINALIZED:
            raise StreamClosed("Stream is already finalized")
        self._state = _StreamState.ABORTED
        self._chunks.clear()
        self._inputs.clear()
        self._tool_calls.clear()

    async def finalize(self, search: SearchBackend, study_id: str) -> FinalizedMessage:
        if self._state in (_StreamState.ABORTED, _StreamState.FINALIZED):
            raise StreamClosed(f"Stream is {self._state.value}; cannot finalize")
        finalized = await finalize_citations(
            self.content,
            self.tool_calls,
            study_id,
            search,
            replay_config=self.replay_config,
        )
        self._state = _StreamState.FINALIZED
        logger.info(
            "Finalized message %s with %d citations (%d provisional markers)",
            self.message_id or "<unsaved>",
            len(finalized.citations),
            finalized.extraction.markers_seen,
        )
        return finalized

    def _record_output(self, event: ToolOutputAvailable) -> None:
        if event.tool_call_id in self._tool_calls:
            return
        started = self._inputs.pop(event.tool_call_id, None)
        if started is None:
            logger.warning("Tool output %s arrived without its input", event.tool_call_id)
        self._tool_calls[event.tool_call_id] = _tool_call(
            tool_call_id=event.tool_call_id,
            tool_name=started.tool_name if started else "unknown",
            tool_input=started.input if started else None,
            output=event.output,
        )
