"""Document-grounded citation pipeline for study assistants."""

from .config import CitationConfig, ReplayConfig, SearchConfig
from .types import CitationEntry, CitationMap, SearchResult

__all__ = [
    "CitationConfig",
    "CitationEntry",
    "CitationMap",
    "ReplayConfig",
    "SearchConfig",
    "SearchResult",
]
