"""Citation map persistence.

A message's citations are stored as one opaque JSON column. `None` (SQL
NULL) means "not yet computed"; `{}` means "computed, no citations". The two
must never collapse into each other.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from study_assistant.citations.extractor import validate_citation_map
from study_assistant.citations.streaming import is_provisional
from study_assistant.config import CitationConfig
from study_assistant.types import CitationMap

logger = logging.getLogger(__name__)


def dumps_citation_map(citations: CitationMap | None) -> str | None:
    if citations is None:
        return None
    return json.dumps(citations.to_json(), ensure_ascii=False, sort_keys=True)


def loads_citation_map(text: str | None) -> CitationMap | None:
    """Parse a persisted map; corrupt data degrades to an empty map."""
    if text is None:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Persisted citation map is not valid JSON; treating as empty")
        return CitationMap()

    if payload is None:
        return None
    if not isinstance(payload, dict) or (payload and not validate_citation_map(payload)):
        logger.warning("Persisted citation map failed validation; treating as empty")
        return CitationMap()
    return CitationMap.from_json(payload)


class SqliteCitationStore:
    """Stores one citation map per message id in a local SQLite file."""

    def __init__(self, path: str | Path, *, config: CitationConfig | None = None) -> None:
        self.path = Path(path)
        self.config = config or CitationConfig()
        _ensure_citation_table(self.path)

    def save(self, message_id: str, citations: CitationMap | None) -> None:
        """Persist a finalized map; provisional streaming maps are refused."""
        if citations is not None and is_provisional(citations, config=self.config):
            raise ValueError(f"Refusing to persist provisional citations for message {message_id}")
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "INSERT INTO message_citations(message_id, citations) VALUES(?, ?) "
                "ON CONFLICT(message_id) DO UPDATE SET citations=excluded.citations",
                (message_id, dumps_citation_map(citations)),
            )
            conn.commit()

    def load(self, message_id: str) -> CitationMap | None:
        with sqlite3.connect(self.path) as conn:
            cur = conn.execute(
                "SELECT citations FROM message_citations WHERE message_id = ?",
                (message_id,),
            )
            row = cur.fetchone()
        if row is None:
            raise KeyError(f"Message not found: {message_id}")
        return loads_citation_map(row[0])

    def delete(self, message_id: str) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute("DELETE FROM message_citations WHERE message_id = ?", (message_id,))
            conn.commit()


def _ensure_citation_table(db_path: Path) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS message_citations "
            "(message_id TEXT PRIMARY KEY, citations TEXT)"
        )
        conn.commit()
