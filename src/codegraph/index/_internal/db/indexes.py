"""Graph constraints and secondary indexes.

These complement the primary keys declared on the SQLModel tables. Label
scoped constraints (unique File.path, unique Directory.path) and label
scoped lookups (Function.name, Class.name, File.language) are partial
indexes, which SQLModel Field() declarations cannot express.

Call create_graph_schema() after Database.create_all().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy import Engine


GRAPH_INDEXES: list[tuple[str, str]] = [
    # Unique constraints
    (
        "uq_file_path",
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_file_path ON graph_nodes(path) WHERE label = 'File'",
    ),
    (
        "uq_directory_path",
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_directory_path "
        "ON graph_nodes(path) WHERE label = 'Directory'",
    ),
    # Secondary indexes
    (
        "idx_function_name",
        "CREATE INDEX IF NOT EXISTS idx_function_name ON graph_nodes(name) WHERE label = 'Function'",
    ),
    (
        "idx_class_name",
        "CREATE INDEX IF NOT EXISTS idx_class_name ON graph_nodes(name) WHERE label = 'Class'",
    ),
    (
        "idx_file_language",
        "CREATE INDEX IF NOT EXISTS idx_file_language ON graph_nodes(language) WHERE label = 'File'",
    ),
    # Ownership lookups used by per-file diffing and deletion
    (
        "idx_nodes_file_path",
        "CREATE INDEX IF NOT EXISTS idx_nodes_file_path ON graph_nodes(file_path)",
    ),
    (
        "idx_nodes_label_name",
        "CREATE INDEX IF NOT EXISTS idx_nodes_label_name ON graph_nodes(label, name)",
    ),
    (
        "idx_edges_owner",
        "CREATE INDEX IF NOT EXISTS idx_edges_owner ON graph_edges(owner_path)",
    ),
    (
        "idx_edges_dst",
        "CREATE INDEX IF NOT EXISTS idx_edges_dst ON graph_edges(dst)",
    ),
]


def create_graph_schema(engine: Engine) -> None:
    """
    Create graph constraints and secondary indexes.

    Idempotent; safe to call on every startup.
    """
    with engine.connect() as conn:
        for _name, sql in GRAPH_INDEXES:
            conn.execute(text(sql))
        conn.commit()


def drop_graph_schema(engine: Engine) -> None:
    """Drop graph indexes (for testing/reset)."""
    with engine.connect() as conn:
        for name, _sql in GRAPH_INDEXES:
            conn.execute(text(f"DROP INDEX IF EXISTS {name}"))
        conn.commit()
