"""Index module - code-structure extraction and incremental graph ingestion.

This module provides:
- Traversal with gitignore-style exclusion
- Content fingerprints for change detection
- Tree-sitter parsing and structure extraction per language scheme
- Transactional per-file ingestion into a SQLite-backed graph
- Filesystem watching with debounce and a per-path work queue

Public API is in `codegraph.index.ops`:
- IndexCoordinator: High-level orchestration

Internal implementations are in `codegraph.index._internal/`.
"""

from codegraph.index._internal.db import BulkWriter, Database, create_graph_schema
from codegraph.index._internal.graph import GraphProjection, GraphStore, IngestSummary, SearchHit
from codegraph.index.models import (
    ChangeKind,
    FileFingerprint,
    GraphEdge,
    GraphNode,
    NodeLabel,
    RelType,
)
from codegraph.index.ops import IndexCoordinator, Outcome

__all__ = [
    # Coordinator
    "IndexCoordinator",
    "Outcome",
    # Storage
    "BulkWriter",
    "Database",
    "GraphProjection",
    "GraphStore",
    "IngestSummary",
    "SearchHit",
    "create_graph_schema",
    # Models
    "ChangeKind",
    "FileFingerprint",
    "GraphEdge",
    "GraphNode",
    "NodeLabel",
    "RelType",
]
