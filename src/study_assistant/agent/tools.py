"""Search tools exposed to the answer generator.

Tool outputs are human-readable text for the model. Structured results are
not persisted; citation validation re-runs the same searches from the
recorded inputs instead.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

from study_assistant.agent.registry import ToolRegistry, ToolSpec
from study_assistant.config import SearchConfig
from study_assistant.retrieval.vector_store import (
    DocumentLookupResult,
    InMemoryStudyIndex,
    SearchOptions,
)
from study_assistant.types import SearchResult

_FILENAME_LIKE = re.compile(r"\.(txt|pdf|docx|doc)$", flags=re.IGNORECASE)
_TOOL_CONFIG = SearchConfig()


class _ToolInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SearchAllDocumentsInput(_ToolInput):
    query: str = Field(min_length=1)
    limit: int = Field(
        default=_TOOL_CONFIG.tool_default_limit, ge=1, le=_TOOL_CONFIG.max_tool_limit
    )
    min_similarity: float = Field(
        default=_TOOL_CONFIG.default_min_similarity, ge=0.0, le=1.0, alias="minSimilarity"
    )

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Search query cannot be empty")
        return value


class SearchSpecificDocumentsInput(SearchAllDocumentsInput):
    document_ids: list[str] = Field(min_length=1, alias="documentIds")

    @field_validator("document_ids")
    @classmethod
    def _ids_not_filenames(cls, value: list[str]) -> list[str]:
        filenames = [item for item in value if _FILENAME_LIKE.search(item)]
        if filenames:
            raise ValueError(
                "Document IDs cannot be filenames. Found potential filenames: "
                f"{', '.join(filenames)}. Use find_document_ids first."
            )
        return value


class FindDocumentIdsInput(_ToolInput):
    document_names: list[str] = Field(min_length=1, alias="documentNames")


def register_search_tools(
    registry: ToolRegistry,
    index: InMemoryStudyIndex,
    study_id: str,
) -> None:
    """Register the study-scoped search tool set.

    Tools:
    - `search_all_documents`: similarity search across the study.
    - `search_specific_documents`: the same, restricted to document ids.
    - `find_document_ids`: resolve file names to document ids.
    """

    def _search_all(input_data: SearchAllDocumentsInput) -> str:
        results = index.find_relevant_chunks(
            input_data.query,
            SearchOptions(
                limit=input_data.limit,
                min_similarity=input_data.min_similarity,
                study_id=study_id,
            ),
        )
        searched = len(index.documents(study_id))
        return format_search_results(results, scope=f"all documents ({searched} searched)")

    def _search_specific(input_data: SearchSpecificDocumentsInput) -> str:
        known = {document.id for document in index.documents(study_id)}
        unknown = [item for item in input_data.document_ids if item not in known]
        if unknown:
            raise ValueError(f"Access denied to one or more specified documents: {unknown}")
        results = index.find_relevant_chunks(
            input_data.query,
            SearchOptions(
                limit=input_data.limit,
                min_similarity=input_data.min_similarity,
                study_id=study_id,
                document_ids=input_data.document_ids,
            ),
        )
        return format_search_results(
            results, scope=f"{len(input_data.document_ids)} specified documents"
        )

    def _find_ids(input_data: FindDocumentIdsInput) -> str:
        return format_document_lookup(index.find_document_ids(study_id, input_data.document_names))

    registry.register(
        ToolSpec(
            name="search_all_documents",
            description="Search across all documents in the current study for relevant content.",
            args_schema=SearchAllDocumentsInput,
            handler=_search_all,
            tags=["retrieval", "search"],
        )
    )
    registry.register(
        ToolSpec(
            name="search_specific_documents",
            description=(
                "Search within specific documents only. Use when the user mentions "
                "specific document names or wants to search particular files."
            ),
            args_schema=SearchSpecificDocumentsInput,
            handler=_search_specific,
            tags=["retrieval", "search"],
        )
    )
    registry.register(
        ToolSpec(
            name="find_document_ids",
            description=(
                "Find document IDs by their filenames. Use this before "
                "search_specific_documents when users mention document names."
            ),
            args_schema=FindDocumentIdsInput,
            handler=_find_ids,
            tags=["documents"],
        )
    )


def format_search_results(results: list[SearchResult], *, scope: str) -> str:
    if not results:
        return (
            f"No relevant content found in {scope}.\n\n"
            "Suggestions:\n"
            "- Try different search terms or synonyms\n"
            "- Lower the similarity threshold (try minSimilarity: 0.05)"
        )

    passages = [
        f"**{position}. {result.document_name}** ({round(result.similarity * 100)}% relevance)\n"
        f"{result.content.strip()}"
        for position, result in enumerate(results, start=1)
    ]
    header = f"Found {len(results)} relevant passages in {scope}:"
    return header + "\n\n" + "\n\n---\n\n".join(passages)


def format_document_lookup(result: DocumentLookupResult) -> str:
    lines: list[str] = []
    if result.found:
        lines.append(f"Found {len(result.found)} document(s):")
        lines.extend(f'- "{document.file_name}" -> {document.id}' for document in result.found)
        ids = ", ".join(f'"{document.id}"' for document in result.found)
        lines.append(f"Next: use search_specific_documents with document IDs: [{ids}]")
    if result.not_found:
        lines.append(f"Could not find: {', '.join(result.not_found)}")
        lines.append("Alternative: use search_all_documents to search every document")
    return "\n".join(lines)
