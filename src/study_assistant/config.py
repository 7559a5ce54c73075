"""Configuration models for the citation pipeline."""

from __future__ import annotations

from pydantic import BaseModel, Field

DELETED_DOCUMENT_MESSAGE = "Document has been deleted or is no longer accessible"


class SearchConfig(BaseModel):
    """Configures similarity search defaults and tool-facing bounds."""

    default_limit: int = Field(default=5, ge=1)
    default_min_similarity: float = Field(default=0.1, ge=0.0, le=1.0)
    tool_default_limit: int = Field(default=3, ge=1)
    max_tool_limit: int = Field(default=15, ge=1)


class ReplayConfig(BaseModel):
    """Configures how persisted search tool calls are re-executed."""

    search_tool_prefix: str = Field(default="search_", min_length=1)
    specific_documents_tool: str = "search_specific_documents"
    default_limit: int = Field(default=10, ge=1)
    default_min_similarity: float = Field(default=0.1, ge=0.0, le=1.0)


class CitationConfig(BaseModel):
    """Configures user-facing citation messages and provisional ids."""

    deleted_document_message: str = DELETED_DOCUMENT_MESSAGE
    streaming_id_prefix: str = "streaming_"
