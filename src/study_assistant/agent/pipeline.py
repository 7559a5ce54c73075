"""Citation pipeline orchestrating replay, extraction, persistence and tracing."""

from __future__ import annotations

import logging
from typing import Any

from study_assistant.agent.replay import ReplayStatus
from study_assistant.agent.stream import FinalizedMessage, MessageStream, finalize_citations
from study_assistant.citations.store import SqliteCitationStore
from study_assistant.config import ReplayConfig
from study_assistant.obs.tracing import CitationTraceStore, Timer
from study_assistant.retrieval.vector_store import SearchBackend
from study_assistant.types import PersistedToolCall

logger = logging.getLogger(__name__)


class CitationPipeline:
    """Turns a completed assistant message into its persisted citation map."""

    def __init__(
        self,
        *,
        search: SearchBackend,
        citation_store: SqliteCitationStore,
        trace_store: CitationTraceStore,
        replay_config: ReplayConfig | None = None,
    ) -> None:
        self.search = search
        self.citation_store = citation_store
        self.trace_store = trace_store
        self.replay_config = replay_config or ReplayConfig()

    async def process(
        self,
        *,
        message_id: str,
        study_id: str,
        content: str,
        tool_calls: list[PersistedToolCall],
    ) -> dict[str, Any]:
        """Finalize one message and persist its citations.

        Returns:
            A payload with the citation map in wire shape, the trace id, the
            latency, and replay counts.
        """
        with Timer() as timer:
            finalized = await finalize_citations(
                content,
                tool_calls,
                study_id,
                self.search,
                replay_config=self.replay_config,
            )
        return self._persist(message_id, study_id, finalized, timer.elapsed_ms)

    async def process_stream(
        self, stream: MessageStream, *, message_id: str, study_id: str
    ) -> dict[str, Any]:
        with Timer() as timer:
            finalized = await stream.finalize(self.search, study_id)
        return self._persist(message_id, study_id, finalized, timer.elapsed_ms)

    def _persist(
        self,
        message_id: str,
        study_id: str,
        finalized: FinalizedMessage,
        latency_ms: float,
    ) -> dict[str, Any]:
        self.citation_store.save(message_id, finalized.citations)

        replay = finalized.replay
        record = self.trace_store.create_record(
            message_id=message_id,
            study_id=study_id,
            replayed=len(replay.outcomes),
            replay_failed=replay.count(ReplayStatus.FAILED),
            replay_skipped=replay.count(ReplayStatus.SKIPPED),
            search_results=len(replay.results),
            markers_seen=finalized.extraction.markers_seen,
            citations_assigned=len(finalized.citations),
            hallucinated=finalized.extraction.hallucinated,
            latency_ms=latency_ms,
        )
        logger.info(
            "Stored %d citations for message %s (trace %s)",
            len(finalized.citations),
            message_id,
            record.trace_id,
        )

        return {
            "message_id": message_id,
            "citations": finalized.citations.to_json(),
            "trace_id": record.trace_id,
            "latency_ms": record.latency_ms,
            "replayed": record.replayed,
            "replay_failed": record.replay_failed,
            "replay_skipped": record.replay_skipped,
            "hallucinated": record.hallucinated,
        }
