"""SQLModel definitions for the code graph and the fingerprint table.

Single source of truth for all table schemas.

Architecture:
- graph_nodes / graph_edges: a labelled property graph (File, Directory and
  extracted entities) stored in SQLite. Node ids are stable identities so
  every write is an idempotent upsert.
- file_fingerprints: path -> (hash, size, mtime) used to skip unchanged files
  across restarts.

Partial unique/secondary indexes that SQLModel cannot express live in
``codegraph.index._internal.db.indexes``.
"""

import json
from enum import Enum
from typing import Any

from sqlmodel import Field, SQLModel

# ============================================================================
# ENUMS
# ============================================================================


class NodeLabel(str, Enum):
    """Graph node labels."""

    FILE = "File"
    DIRECTORY = "Directory"
    CLASS = "Class"
    STRUCT = "Struct"
    ENUM = "Enum"
    INTERFACE = "Interface"
    TRAIT = "Trait"
    FUNCTION = "Function"
    METHOD = "Method"
    VARIABLE = "Variable"
    PARAMETER = "Parameter"
    CALL_SITE = "CallSite"
    IMPORT = "Import"

    @classmethod
    def class_like(cls) -> "frozenset[NodeLabel]":
        """Labels that can declare methods and nested types."""
        return frozenset({cls.CLASS, cls.STRUCT, cls.ENUM, cls.INTERFACE, cls.TRAIT})

    @classmethod
    def callable_kinds(cls) -> "frozenset[NodeLabel]":
        return frozenset({cls.FUNCTION, cls.METHOD})


class RelType(str, Enum):
    """Graph relationship types."""

    CONTAINS = "CONTAINS"
    DECLARES = "DECLARES"
    HAS_PARAMETER = "HAS_PARAMETER"
    CALLS = "CALLS"
    HAS_CALL_SITE = "HAS_CALL_SITE"
    REFERENCES = "REFERENCES"
    IMPORTS = "IMPORTS"
    EXTENDS = "EXTENDS"
    IMPLEMENTS = "IMPLEMENTS"
    HAS_TYPE = "HAS_TYPE"


class ChangeKind(str, Enum):
    """Fingerprint classification of a path."""

    UNCHANGED = "unchanged"
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


# ============================================================================
# TABLES
# ============================================================================


class FileFingerprint(SQLModel, table=True):
    """Last successfully ingested content fingerprint of a file."""

    __tablename__ = "file_fingerprints"

    path: str = Field(primary_key=True)  # root-relative, POSIX separators
    content_hash: str
    size: int
    mtime_ns: int
    language: str | None = None
    indexed_at: float | None = None


class GraphNode(SQLModel, table=True):
    """A node of the code graph."""

    __tablename__ = "graph_nodes"

    id: str = Field(primary_key=True)  # Stable identity
    label: str = Field(index=True)
    name: str
    path: str  # File/Directory: own path. Entities: owning file path.
    file_path: str | None = Field(default=None)  # Owning file; None for directories
    language: str | None = None
    start_line: int | None = None
    end_line: int | None = None
    props: str = "{}"  # JSON: kind-specific attributes

    def get_props(self) -> dict[str, Any]:
        result: dict[str, Any] = json.loads(self.props) if self.props else {}
        return result


class GraphEdge(SQLModel, table=True):
    """A typed, directed relationship between two node ids."""

    __tablename__ = "graph_edges"

    src: str = Field(primary_key=True)
    type: str = Field(primary_key=True)
    dst: str = Field(primary_key=True)
    owner_path: str | None = Field(default=None)  # File that produced the edge
