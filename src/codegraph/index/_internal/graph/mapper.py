"""Map a ParseResult to graph_nodes / graph_edges rows.

Rows are plain dicts keyed by column name so they can be compared against
what is already stored and handed to BulkWriter unchanged. ``props`` is
serialized with sorted keys; identical extraction output always produces
byte-identical rows.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from codegraph.index._internal.identity import directory_id, file_id, parent_dir
from codegraph.index._internal.parsing import ExtractedEntity, ParseResult
from codegraph.index.models import NodeLabel, RelType

NODE_COLUMNS = (
    "id",
    "label",
    "name",
    "path",
    "file_path",
    "language",
    "start_line",
    "end_line",
    "props",
)
NODE_UPDATE_COLUMNS = [c for c in NODE_COLUMNS if c != "id"]

EdgeKey = tuple[str, str, str]


def dump_props(props: dict[str, Any]) -> str:
    return json.dumps(props, sort_keys=True, separators=(",", ":"))


def basename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


@dataclass
class FileRows:
    """Desired rows for one file."""

    path: str
    nodes: dict[str, dict[str, Any]] = field(default_factory=dict)
    edges: set[EdgeKey] = field(default_factory=set)

    def node_tuple(self, node_id: str) -> tuple[Any, ...]:
        row = self.nodes[node_id]
        return tuple(row[c] for c in NODE_COLUMNS)


def file_row(path: str, language: str, error_count: int) -> dict[str, Any]:
    return {
        "id": file_id(path),
        "label": NodeLabel.FILE.value,
        "name": basename(path),
        "path": path,
        "file_path": path,
        "language": language,
        "start_line": None,
        "end_line": None,
        "props": dump_props({"errorCount": error_count}),
    }


def directory_row(path: str, root_name: str) -> dict[str, Any]:
    return {
        "id": directory_id(path),
        "label": NodeLabel.DIRECTORY.value,
        "name": basename(path) if path else root_name,
        "path": path,
        "file_path": None,
        "language": None,
        "start_line": None,
        "end_line": None,
        "props": "{}",
    }


def entity_row(entity: ExtractedEntity, path: str, language: str) -> dict[str, Any]:
    return {
        "id": entity.id,
        "label": entity.label.value,
        "name": entity.name,
        "path": path,
        "file_path": path,
        "language": language,
        "start_line": entity.start_line,
        "end_line": entity.end_line,
        "props": dump_props(entity.props),
    }


def map_parse_result(result: ParseResult) -> FileRows:
    """Rows owned by ``result.path``: its File node, entities and local edges.

    Also includes the ``CONTAINS`` edge from the file's parent directory.
    Ancestor Directory nodes are not owned by any file and are handled by
    the store.
    """
    rows = FileRows(path=result.path)
    file_node = file_row(result.path, result.language, result.error_count)
    rows.nodes[file_node["id"]] = file_node
    for entity in result.entities:
        rows.nodes[entity.id] = entity_row(entity, result.path, result.language)

    rows.edges.add(
        (directory_id(parent_dir(result.path)), RelType.CONTAINS.value, file_node["id"])
    )
    for rel in result.relationships:
        if rel.src == rel.dst:
            continue
        rows.edges.add((rel.src, rel.type.value, rel.dst))
    return rows
