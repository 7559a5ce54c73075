"""FastAPI entrypoint for document, citation, render and trace endpoints."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from functools import lru_cache
from typing import Any

from fastapi import FastAPI, HTTPException
from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import BaseModel, Field

from study_assistant.agent.pipeline import CitationPipeline
from study_assistant.agent.registry import ToolRegistry
from study_assistant.agent.stream import extract_tool_calls, message_text
from study_assistant.agent.tools import register_search_tools
from study_assistant.citations.extractor import validate_citation_map
from study_assistant.citations.markdown import (
    parse_citation_positions,
    render_markdown,
    replace_citations_with_numbers,
)
from study_assistant.citations.store import SqliteCitationStore
from study_assistant.citations.validation import CitationContext
from study_assistant.config import ReplayConfig, SearchConfig
from study_assistant.obs.tracing import CitationTraceStore
from study_assistant.retrieval.vector_store import InMemoryStudyIndex
from study_assistant.types import CitationMap, PersistedToolCall


class AddDocumentRequest(BaseModel):
    document_id: str = Field(min_length=1)
    file_name: str = Field(min_length=1)
    passages: list[str] = Field(min_length=1)


class RenameDocumentRequest(BaseModel):
    file_name: str = Field(min_length=1)


class ToolCallRecord(BaseModel):
    tool_call_id: str = Field(alias="toolCallId")
    tool_name: str = Field(alias="toolName")
    input: dict[str, Any] | None = None
    output: str = ""
    timestamp: float = 0.0

    def to_persisted(self) -> PersistedToolCall:
        query = (self.input or {}).get("query")
        return PersistedToolCall(
            tool_call_id=self.tool_call_id,
            tool_name=self.tool_name,
            input=self.input,
            output=self.output,
            timestamp=self.timestamp,
            query=query if isinstance(query, str) else None,
        )


class MessageRequest(BaseModel):
    message_id: str = Field(min_length=1)
    content: str | None = None
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    parts: list[dict[str, Any]] = Field(default_factory=list)


class ToolExecutionRequest(BaseModel):
    message_id: str = Field(min_length=1)
    tool_call_id: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)


class RenderRequest(BaseModel):
    content: str
    citations: dict[str, dict[str, Any]] = Field(default_factory=dict)


app = FastAPI(title="Study Assistant Citations", version="0.1.0")

_index = InMemoryStudyIndex(config=SearchConfig())
_citation_store = SqliteCitationStore(os.getenv("STUDY_ASSISTANT_DB", "study_assistant.db"))
_trace_store = CitationTraceStore()
_pipeline = CitationPipeline(
    search=_index,
    citation_store=_citation_store,
    trace_store=_trace_store,
    replay_config=ReplayConfig(),
)
_pending_tool_calls: dict[str, list[PersistedToolCall]] = {}


@lru_cache(maxsize=256)
def _context(study_id: str, message_id: str) -> CitationContext:
    """One validation context per displayed message, so its memo is never shared."""
    return CitationContext(_index, study_id)


def _study_tools(study_id: str) -> ToolRegistry:
    registry = ToolRegistry()
    register_search_tools(registry, _index, study_id)
    return registry


def _merge_tool_calls(*batches: list[PersistedToolCall]) -> list[PersistedToolCall]:
    merged: dict[str, PersistedToolCall] = {}
    for batch in batches:
        for call in batch:
            merged.setdefault(call.tool_call_id, call)
    return list(merged.values())


def _stored_citations(message_id: str) -> CitationMap | None:
    try:
        return _citation_store.load(message_id)
    except KeyError:
        return None


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "citation_db": str(_citation_store.path),
        "trace_count": len(_trace_store.list_recent(limit=1000)),
    }


@app.post("/studies/{study_id}/documents")
def add_document(study_id: str, request: AddDocumentRequest) -> dict[str, Any]:
    try:
        chunks = _index.add_document(
            study_id, request.document_id, request.file_name, request.passages
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "document_id": request.document_id,
        "chunks_created": len(chunks),
        "chunk_ids": [chunk.chunk_id for chunk in chunks],
    }


@app.patch("/studies/{study_id}/documents/{document_id}")
def rename_document(study_id: str, document_id: str, request: RenameDocumentRequest) -> dict[str, Any]:
    try:
        document = _index.rename_document(study_id, document_id, request.file_name)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"id": document.id, "file_name": document.file_name}


@app.delete("/studies/{study_id}/documents/{document_id}")
def delete_document(study_id: str, document_id: str) -> dict[str, Any]:
    try:
        _index.delete_document(study_id, document_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"deleted": document_id}


@app.get("/studies/{study_id}/tools")
def list_tools(study_id: str) -> dict[str, Any]:
    tools = _study_tools(study_id).as_langchain_tools()
    return {"tools": [convert_to_openai_tool(tool) for tool in tools]}


@app.post("/studies/{study_id}/tools/{tool_name}")
def execute_tool(study_id: str, tool_name: str, request: ToolExecutionRequest) -> dict[str, Any]:
    """Run a study-scoped tool and record the call against its message."""
    registry = _study_tools(study_id)
    recorded: list[PersistedToolCall] = []
    registry.set_observer(recorded.append)
    try:
        output = registry.execute(tool_name, request.input, tool_call_id=request.tool_call_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    _pending_tool_calls.setdefault(request.message_id, []).extend(recorded)
    return {"output": output, "tool_call": recorded[0].to_json()}


@app.post("/studies/{study_id}/messages")
async def finalize_message(study_id: str, request: MessageRequest) -> dict[str, Any]:
    tool_calls = _merge_tool_calls(
        _pending_tool_calls.pop(request.message_id, []),
        [record.to_persisted() for record in request.tool_calls],
        extract_tool_calls(request.parts),
    )
    content = request.content if request.content is not None else message_text(request.parts)

    try:
        return await _pipeline.process(
            message_id=request.message_id,
            study_id=study_id,
            content=content,
            tool_calls=tool_calls,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/citations/{message_id}")
def citations(message_id: str) -> dict[str, Any]:
    stored = _stored_citations(message_id)
    return stored.to_json() if stored else {}


@app.get("/studies/{study_id}/messages/{message_id}/citations")
def validated_citations(study_id: str, message_id: str) -> dict[str, Any]:
    stored = _stored_citations(message_id) or CitationMap()
    context = _context(study_id, message_id)
    validation = context.validate(stored)
    return {
        "is_loading": context.is_loading,
        "citations": context.enrich(stored).to_json(),
        "validation": {number: asdict(result) for number, result in validation.items()},
    }


@app.post("/render")
def render(request: RenderRequest) -> dict[str, Any]:
    if request.citations and not validate_citation_map(request.citations):
        raise HTTPException(status_code=400, detail="Invalid citation map")
    try:
        citation_map = CitationMap.from_json(request.citations)
    except (KeyError, TypeError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "html": render_markdown(request.content, citation_map),
        "text": replace_citations_with_numbers(request.content, citation_map),
        "positions": [
            asdict(position)
            for position in parse_citation_positions(request.content, citation_map)
        ],
    }


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="127.0.0.1", port=8000)
