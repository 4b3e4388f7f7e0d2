"""Graph mapping and storage."""

from codegraph.index._internal.graph.mapper import FileRows, map_parse_result
from codegraph.index._internal.graph.store import (
    GraphProjection,
    GraphStore,
    IngestSummary,
    SearchHit,
    score_match,
)

__all__ = [
    "FileRows",
    "GraphProjection",
    "GraphStore",
    "IngestSummary",
    "SearchHit",
    "map_parse_result",
    "score_match",
]
