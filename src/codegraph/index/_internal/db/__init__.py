"""Database layer for the graph store."""

from codegraph.index._internal.db.database import BulkWriter, Database, is_database_locked_error
from codegraph.index._internal.db.indexes import create_graph_schema, drop_graph_schema

__all__ = [
    "Database",
    "BulkWriter",
    "is_database_locked_error",
    "create_graph_schema",
    "drop_graph_schema",
]
