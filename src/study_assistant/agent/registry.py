"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import re
import time
import uuid
from collections.abc import Callable
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field

from study_assistant.types import PersistedToolCall

_RESULT_COUNT = re.compile(r"Found (\d+) relevant passages?", flags=re.IGNORECASE)


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], str]
    tags: list[str] = Field(default_factory=list)

    def invoke(self, payload: dict[str, Any]) -> str:
        data = self.args_schema.model_validate(payload)
        return self.handler(data)


class ToolRegistry:
    """Stores tool specs, records executions, exports LangChain tools."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[PersistedToolCall], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[PersistedToolCall], None] | None) -> None:
        """Set a callback receiving the persisted record of each completed call."""
        self._observer = observer

    def execute(
        self, name: str, payload: dict[str, Any], *, tool_call_id: str | None = None
    ) -> str:
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return self._execute_spec(spec, payload, tool_call_id=tool_call_id)

    def as_langchain_tools(self) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    func=self._build_function(spec),
                )
            )
        return tools

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def _build_function(self, spec: ToolSpec) -> Callable[..., str]:
        def _callable(**kwargs: Any) -> str:
            return self._execute_spec(spec, kwargs)

        return _callable

    def _execute_spec(
        self,
        spec: ToolSpec,
        payload: dict[str, Any],
        *,
        tool_call_id: str | None = None,
    ) -> str:
        output = spec.invoke(payload)

        if self._observer is not None:
            query = payload.get("query")
            match = _RESULT_COUNT.search(output)
            self._observer(
                PersistedToolCall(
                    tool_call_id=tool_call_id or f"call_{uuid.uuid4().hex[:12]}",
                    tool_name=spec.name,
                    input=dict(payload),
                    output=output,
                    timestamp=time.time(),
                    query=query if isinstance(query, str) else None,
                    result_count=int(match.group(1)) if match else None,
                )
            )
        return output
