"""Citation pipeline tracing and aggregate metrics."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(slots=True)
class CitationTrace:
    trace_id: str
    timestamp_utc: str
    message_id: str
    study_id: str
    replayed: int
    replay_failed: int
    replay_skipped: int
    search_results: int
    markers_seen: int
    citations_assigned: int
    hallucinated: list[str] = field(default_factory=list)
    latency_ms: float = 0.0


class CitationTraceStore:
    """In-memory trace storage for API-level observability."""

    def __init__(self) -> None:
        self._records: dict[str, CitationTrace] = {}

    def create_record(
        self,
        *,
        message_id: str,
        study_id: str,
        replayed: int,
        replay_failed: int,
        replay_skipped: int,
        search_results: int,
        markers_seen: int,
        citations_assigned: int,
        hallucinated: list[str],
        latency_ms: float,
    ) -> CitationTrace:
        trace_id = str(uuid.uuid4())
        record = CitationTrace(
            trace_id=trace_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            message_id=message_id,
            study_id=study_id,
            replayed=replayed,
            replay_failed=replay_failed,
            replay_skipped=replay_skipped,
            search_results=search_results,
            markers_seen=markers_seen,
            citations_assigned=citations_assigned,
            hallucinated=list(hallucinated),
            latency_ms=latency_ms,
        )
        self._records[trace_id] = record
        return record

    def get(self, trace_id: str) -> CitationTrace:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[CitationTrace]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate pipeline metrics for dashboard display."""
        records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_messages": 0,
                "total_replays": 0,
                "failed_replays": 0,
                "skipped_replays": 0,
                "total_citations": 0,
                "total_hallucinated": 0,
                "avg_citations_per_message": 0.0,
                "avg_latency_ms": 0.0,
            }

        total_citations = sum(record.citations_assigned for record in records)
        return {
            "total_messages": total,
            "total_replays": sum(record.replayed for record in records),
            "failed_replays": sum(record.replay_failed for record in records),
            "skipped_replays": sum(record.replay_skipped for record in records),
            "total_citations": total_citations,
            "total_hallucinated": sum(len(record.hallucinated) for record in records),
            "avg_citations_per_message": total_citations / total,
            "avg_latency_ms": sum(record.latency_ms for record in records) / total,
        }


class Timer:
    """Simple context timer used by the citation pipeline."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
