"""Arena-indexed view of a tree-sitter syntax tree.

The tree is flattened once, in pre-order, into ``ArenaNode`` records with
integer indices and parent links. Extraction bookkeeping (which node has
been materialized, ancestor walks, ownership) works on these integers, so
it never depends on tree-sitter Node object identity.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

NO_PARENT = -1


@dataclass(frozen=True, slots=True)
class ArenaNode:
    index: int
    type: str
    parent: int
    start_line: int  # 1-indexed
    end_line: int  # 1-indexed, inclusive
    start_col: int


class NodeArena:
    """Pre-order node table for one parsed file."""

    def __init__(self) -> None:
        self.nodes: list[ArenaNode] = []
        self._ts_nodes: list[Any] = []
        self._index_by_id: dict[int, int] = {}
        self.error_count = 0

    @classmethod
    def build(cls, root: Any) -> NodeArena:
        """Flatten a tree rooted at ``root`` and count ERROR/missing nodes."""
        arena = cls()
        stack: list[tuple[Any, int]] = [(root, NO_PARENT)]
        while stack:
            node, parent = stack.pop()
            index = arena._add(node, parent)
            if node.type == "ERROR" or node.is_missing:
                arena.error_count += 1
            children = node.children
            for child in reversed(children):
                stack.append((child, index))
        return arena

    def _add(self, node: Any, parent: int) -> int:
        index = len(self.nodes)
        self.nodes.append(
            ArenaNode(
                index=index,
                type=node.type,
                parent=parent,
                start_line=node.start_point[0] + 1,
                end_line=node.end_point[0] + 1,
                start_col=node.start_point[1],
            )
        )
        self._ts_nodes.append(node)
        self._index_by_id[node.id] = index
        return index

    def __len__(self) -> int:
        return len(self.nodes)

    def __getitem__(self, index: int) -> ArenaNode:
        return self.nodes[index]

    def index_of(self, ts_node: Any) -> int:
        """Arena index of a tree-sitter node from the same tree."""
        return self._index_by_id[ts_node.id]

    def ts_node(self, index: int) -> Any:
        return self._ts_nodes[index]

    def ancestors(self, index: int) -> Iterator[int]:
        """Enclosing node indices, innermost first (excluding ``index``)."""
        parent = self.nodes[index].parent
        while parent != NO_PARENT:
            yield parent
            parent = self.nodes[parent].parent

    def indices_of_type(self, node_type: str) -> list[int]:
        return [n.index for n in self.nodes if n.type == node_type]
