"""Graph store: per-file transactional ingestion plus read projections.

Ingestion diffs the desired rows for a file against the rows the file
currently owns and writes only the difference, all inside one
``BEGIN IMMEDIATE`` transaction together with the file's fingerprint.
Re-ingesting unchanged output therefore issues no writes, and a changed
file converges to exactly its new structure.

Ownership:
- Nodes are owned by ``file_path``. Directory nodes have no owner.
- Edges are owned by ``owner_path``, the file whose ingestion produced
  them. Directory -> Directory ``CONTAINS`` edges have no owner.
- Deleting a node also deletes every edge touching it, whoever owns it.
"""

from __future__ import annotations

import difflib
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import bindparam, func, or_, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlmodel import col, select

from codegraph.core.errors import IngestError
from codegraph.index._internal.db import BulkWriter, Database, is_database_locked_error
from codegraph.index._internal.graph.mapper import (
    NODE_COLUMNS,
    NODE_UPDATE_COLUMNS,
    EdgeKey,
    directory_row,
    map_parse_result,
)
from codegraph.index._internal.identity import ancestor_dirs, directory_id, parent_dir
from codegraph.index._internal.state import FingerprintStore
from codegraph.index.models import GraphEdge, GraphNode, NodeLabel, RelType

if TYPE_CHECKING:
    from codegraph.index._internal.parsing import ParseResult
    from codegraph.index._internal.state import Classification

logger = structlog.get_logger()

_EDGE_KEY_COLUMNS = ["src", "type", "dst"]


@dataclass
class IngestSummary:
    """Effective writes performed for one file."""

    path: str
    nodes_written: int = 0
    nodes_deleted: int = 0
    edges_written: int = 0
    edges_deleted: int = 0
    fingerprint_written: bool = False

    @property
    def writes(self) -> int:
        return self.nodes_written + self.nodes_deleted + self.edges_written + self.edges_deleted

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SearchHit:
    name: str
    path: str
    kind: str
    start_line: int | None
    end_line: int | None
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "kind": self.kind,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "score": self.score,
        }


@dataclass
class GraphProjection:
    """Read-only node/edge view for visualization."""

    nodes: list[dict[str, Any]] = field(default_factory=list)
    edges: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"nodes": self.nodes, "edges": self.edges}


def _ingest_error(path: str, err: OperationalError) -> IngestError:
    reason = str(err.orig) if err.orig is not None else str(err)
    if is_database_locked_error(err) or "unable to open" in reason.lower():
        return IngestError.connection_failed(reason)
    return IngestError.transaction_failed(path, reason)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _normalize_labels(entity_types: list[str]) -> list[str]:
    by_lower = {label.value.lower(): label.value for label in NodeLabel}
    labels: list[str] = []
    for name in entity_types:
        label = by_lower.get(name.lower())
        if label is None:
            raise ValueError(f"Unknown entity type: {name}")
        labels.append(label)
    return labels


def score_match(needle: str, name: str, path: str) -> float:
    """Rank a candidate: exact name > name prefix > name substring > path match.

    The fractional part is a ``difflib`` similarity ratio.
    """
    lname = name.lower()
    if lname == needle:
        tier = 3
    elif lname.startswith(needle):
        tier = 2
    elif needle in lname:
        tier = 1
    else:
        return round(difflib.SequenceMatcher(None, needle, path.lower()).ratio(), 4)
    return round(tier + difflib.SequenceMatcher(None, needle, lname).ratio(), 4)


class GraphStore:
    """Code graph persisted in the ``graph_nodes`` / ``graph_edges`` tables."""

    def __init__(self, db: Database, *, root_name: str = "") -> None:
        self._db = db
        self._root_name = root_name

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def ingest_file(
        self, result: ParseResult, fingerprint: Classification | None = None
    ) -> IngestSummary:
        """Converge the graph for one file to ``result`` in one transaction.

        Raises:
            IngestError: The transaction could not start or commit. Nothing
                for this file was applied.
        """
        try:
            with self._db.immediate_transaction() as session:
                conn = session.connection()
                summary = self._apply(conn, BulkWriter(conn), result, fingerprint)
        except OperationalError as e:
            raise _ingest_error(result.path, e) from e
        except SQLAlchemyError as e:
            raise IngestError.transaction_failed(result.path, str(e)) from e

        if summary.writes:
            logger.debug(
                "file_ingested",
                path=result.path,
                nodes_written=summary.nodes_written,
                nodes_deleted=summary.nodes_deleted,
                edges_written=summary.edges_written,
                edges_deleted=summary.edges_deleted,
            )
        return summary

    def _apply(
        self,
        conn: Connection,
        writer: BulkWriter,
        result: ParseResult,
        fingerprint: Classification | None,
    ) -> IngestSummary:
        path = result.path
        summary = IngestSummary(path=path)
        rows = map_parse_result(result)

        dir_nodes, dir_edges = self._ensure_directories(conn, writer, path)
        summary.nodes_written += dir_nodes
        summary.edges_written += dir_edges

        # Nodes
        existing_nodes = {
            row[0]: tuple(row)
            for row in conn.execute(
                text(f"SELECT {', '.join(NODE_COLUMNS)} FROM graph_nodes WHERE file_path = :path"),
                {"path": path},
            )
        }
        changed = [
            rows.nodes[node_id]
            for node_id in rows.nodes
            if existing_nodes.get(node_id) != rows.node_tuple(node_id)
        ]
        stale_nodes = sorted(existing_nodes.keys() - rows.nodes.keys())

        if stale_nodes:
            summary.edges_deleted += writer.delete_in(GraphEdge, "src", stale_nodes)
            summary.edges_deleted += writer.delete_in(GraphEdge, "dst", stale_nodes)
            summary.nodes_deleted += writer.delete_in(GraphNode, "id", stale_nodes)
        summary.nodes_written += writer.upsert_many(
            GraphNode, changed, conflict_columns=["id"], update_columns=NODE_UPDATE_COLUMNS
        )

        # Edges
        desired_edges = rows.edges | self._resolve_cross_file(conn, result)
        existing_edges: set[EdgeKey] = {
            (row[0], row[1], row[2])
            for row in conn.execute(
                text("SELECT src, type, dst FROM graph_edges WHERE owner_path = :path"),
                {"path": path},
            )
        }
        stale_edges = [
            {"src": s, "type": t, "dst": d}
            for s, t, d in sorted(existing_edges - desired_edges)
        ]
        summary.edges_deleted += writer.delete_keys(GraphEdge, _EDGE_KEY_COLUMNS, stale_edges)
        new_edges = [
            {"src": s, "type": t, "dst": d, "owner_path": path}
            for s, t, d in sorted(desired_edges - existing_edges)
        ]
        summary.edges_written += writer.upsert_many(
            GraphEdge, new_edges, conflict_columns=_EDGE_KEY_COLUMNS, update_columns=["owner_path"]
        )

        if fingerprint is not None and fingerprint.content_hash is not None:
            summary.fingerprint_written = self._record_fingerprint(
                conn, writer, path, fingerprint, result.language
            )
        return summary

    def _ensure_directories(
        self, conn: Connection, writer: BulkWriter, path: str
    ) -> tuple[int, int]:
        """Upsert missing ancestor Directory nodes and their CONTAINS edges."""
        dirs = ancestor_dirs(path)
        stmt = text("SELECT id FROM graph_nodes WHERE id IN :ids").bindparams(
            bindparam("ids", expanding=True)
        )
        existing = {row[0] for row in conn.execute(stmt, {"ids": [directory_id(d) for d in dirs]})}
        missing = [d for d in dirs if directory_id(d) not in existing]
        if not missing:
            return 0, 0

        nodes = writer.upsert_many(
            GraphNode,
            [directory_row(d, self._root_name) for d in missing],
            conflict_columns=["id"],
            update_columns=[],
        )
        edges = writer.upsert_many(
            GraphEdge,
            [
                {
                    "src": directory_id(parent_dir(d)),
                    "type": RelType.CONTAINS.value,
                    "dst": directory_id(d),
                    "owner_path": None,
                }
                for d in missing
                if d
            ],
            conflict_columns=_EDGE_KEY_COLUMNS,
            update_columns=[],
        )
        return nodes, edges

    def _resolve_cross_file(self, conn: Connection, result: ParseResult) -> set[EdgeKey]:
        """Resolve by-name references against entities of other files."""
        edges: set[EdgeKey] = set()
        if not result.unresolved:
            return edges
        stmt = text(
            "SELECT id FROM graph_nodes "
            "WHERE name = :name AND label IN :labels AND file_path != :path"
        ).bindparams(bindparam("labels", expanding=True))
        cache: dict[tuple[str, frozenset[NodeLabel]], list[str]] = {}
        for ref in result.unresolved:
            key = (ref.name, ref.targets)
            targets = cache.get(key)
            if targets is None:
                params = {
                    "name": ref.name,
                    "labels": sorted(label.value for label in ref.targets),
                    "path": result.path,
                }
                targets = [row[0] for row in conn.execute(stmt, params)]
                cache[key] = targets
            for dst in targets:
                if dst != ref.src:
                    edges.add((ref.src, ref.type.value, dst))
        return edges

    @staticmethod
    def _record_fingerprint(
        conn: Connection,
        writer: BulkWriter,
        path: str,
        fingerprint: Classification,
        language: str,
    ) -> bool:
        row = conn.execute(
            text(
                "SELECT content_hash, size, mtime_ns, language "
                "FROM file_fingerprints WHERE path = :path"
            ),
            {"path": path},
        ).first()
        desired = (fingerprint.content_hash, fingerprint.size, fingerprint.mtime_ns, language)
        if row is not None and tuple(row) == desired:
            return False
        FingerprintStore.record(
            writer,
            path,
            content_hash=fingerprint.content_hash or "",
            size=fingerprint.size,
            mtime_ns=fingerprint.mtime_ns,
            language=language,
        )
        return True

    def remove_file(self, path: str) -> IngestSummary:
        """Delete a file's nodes, edges touching them and its fingerprint.

        Ancestor directories left without children are pruned bottom-up.
        The root directory is kept.

        Raises:
            IngestError: The transaction could not start or commit.
        """
        summary = IngestSummary(path=path)
        try:
            with self._db.immediate_transaction() as session:
                conn = session.connection()
                writer = BulkWriter(conn)
                ids = [
                    row[0]
                    for row in conn.execute(
                        text("SELECT id FROM graph_nodes WHERE file_path = :path"), {"path": path}
                    )
                ]
                summary.edges_deleted += writer.delete_in(GraphEdge, "src", ids)
                summary.edges_deleted += writer.delete_in(GraphEdge, "dst", ids)
                summary.edges_deleted += writer.delete_where(
                    GraphEdge, "owner_path = :path", {"path": path}
                )
                summary.nodes_deleted += writer.delete_in(GraphNode, "id", ids)
                summary.fingerprint_written = FingerprintStore.forget(writer, path) > 0
                pruned_nodes, pruned_edges = self._prune_directories(conn, writer, path)
                summary.nodes_deleted += pruned_nodes
                summary.edges_deleted += pruned_edges
        except OperationalError as e:
            raise _ingest_error(path, e) from e
        except SQLAlchemyError as e:
            raise IngestError.transaction_failed(path, str(e)) from e

        logger.debug(
            "file_removed",
            path=path,
            nodes_deleted=summary.nodes_deleted,
            edges_deleted=summary.edges_deleted,
        )
        return summary

    def _prune_directories(
        self, conn: Connection, writer: BulkWriter, path: str
    ) -> tuple[int, int]:
        nodes = edges = 0
        for rel_dir in ancestor_dirs(path):
            if not rel_dir:
                break
            dir_id = directory_id(rel_dir)
            child = conn.execute(
                text("SELECT 1 FROM graph_edges WHERE src = :id AND type = :type LIMIT 1"),
                {"id": dir_id, "type": RelType.CONTAINS.value},
            ).first()
            if child is not None:
                break
            edges += writer.delete_where(GraphEdge, "src = :id OR dst = :id", {"id": dir_id})
            nodes += writer.delete_where(GraphNode, "id = :id", {"id": dir_id})
        return nodes, edges

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def nodes(self, *, file_path: str | None = None, label: NodeLabel | None = None) -> list[GraphNode]:
        with self._db.session() as session:
            stmt = select(GraphNode)
            if file_path is not None:
                stmt = stmt.where(GraphNode.file_path == file_path)
            if label is not None:
                stmt = stmt.where(GraphNode.label == label.value)
            return list(session.exec(stmt.order_by(col(GraphNode.id))).all())

    def edges(self, *, rel_type: RelType | None = None) -> list[GraphEdge]:
        with self._db.session() as session:
            stmt = select(GraphEdge)
            if rel_type is not None:
                stmt = stmt.where(GraphEdge.type == rel_type.value)
            return list(session.exec(stmt).all())

    def counts(self) -> dict[str, int]:
        with self._db.session() as session:
            nodes = session.exec(select(func.count()).select_from(GraphNode)).one()
            edges = session.exec(select(func.count()).select_from(GraphEdge)).one()
        return {"nodes": int(nodes), "edges": int(edges)}

    def get_graph(self) -> GraphProjection:
        """All nodes, plus edges whose endpoints are both present."""
        with self._db.session() as session:
            nodes = session.exec(
                select(GraphNode).order_by(
                    col(GraphNode.path), col(GraphNode.start_line), col(GraphNode.id)
                )
            ).all()
            edges = session.exec(
                select(GraphEdge).order_by(
                    col(GraphEdge.src), col(GraphEdge.type), col(GraphEdge.dst)
                )
            ).all()

        projection = GraphProjection()
        ids: set[str] = set()
        for node in nodes:
            ids.add(node.id)
            projection.nodes.append(
                {
                    "id": node.id,
                    "label": node.label,
                    "name": node.name,
                    "path": node.path,
                    "language": node.language,
                    "startLine": node.start_line,
                    "endLine": node.end_line,
                    "props": node.get_props(),
                }
            )
        for edge in edges:
            if edge.src in ids and edge.dst in ids:
                projection.edges.append({"source": edge.src, "target": edge.dst, "type": edge.type})
        return projection

    def search(
        self,
        term: str,
        entity_types: list[str] | None = None,
        limit: int = 20,
    ) -> list[SearchHit]:
        """Case-insensitive name/path search ranked by similarity."""
        needle = term.strip().lower()
        if not needle or limit <= 0:
            return []
        pattern = f"%{_escape_like(needle)}%"
        stmt = select(GraphNode).where(
            or_(
                func.lower(GraphNode.name).like(pattern, escape="\\"),
                func.lower(GraphNode.path).like(pattern, escape="\\"),
            )
        )
        if entity_types:
            stmt = stmt.where(col(GraphNode.label).in_(_normalize_labels(entity_types)))
        with self._db.session() as session:
            rows = session.exec(stmt).all()

        hits = [
            SearchHit(
                name=row.name,
                path=row.path,
                kind=row.label,
                start_line=row.start_line,
                end_line=row.end_line,
                score=score_match(needle, row.name, row.path),
            )
            for row in rows
        ]
        hits.sort(key=lambda h: (-h.score, h.name, h.path, h.start_line or 0))
        return hits[:limit]

