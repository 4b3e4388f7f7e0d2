"""Tree-sitter grammar loading, query compilation and parsing.

Compiled schemes (grammar Language plus compiled Query objects) are built
once per scheme under a lock and then shared read-only by every worker
thread. ``tree_sitter.Parser`` objects are not shared: each thread lazily
creates its own.
"""

from __future__ import annotations

import importlib
import threading
from dataclasses import dataclass
from typing import Any

import structlog
import tree_sitter
from tree_sitter import Query as _TSQuery
from tree_sitter import QueryCursor as _TSQueryCursor

from codegraph.core.errors import InternalError, ParseError
from codegraph.index._internal.parsing.arena import NodeArena
from codegraph.index._internal.parsing.packs import ExtractionScheme

logger = structlog.get_logger()

Matches = list[tuple[int, dict[str, list[Any]]]]


@dataclass(frozen=True)
class CompiledScheme:
    """A scheme with its grammar loaded and its queries compiled."""

    scheme: ExtractionScheme
    language: Any  # tree_sitter.Language
    definitions: Any  # tree_sitter.Query
    calls: Any | None = None
    imports: Any | None = None

    @property
    def name(self) -> str:
        return self.scheme.name


@dataclass
class SyntaxTree:
    """Result of parsing one file."""

    path: str
    compiled: CompiledScheme
    tree: Any  # Tree-sitter Tree (not serializable)
    root: Any  # Tree-sitter Node
    arena: NodeArena
    content: bytes

    @property
    def error_count(self) -> int:
        return self.arena.error_count

    @property
    def total_nodes(self) -> int:
        return len(self.arena)


_compiled: dict[str, CompiledScheme] = {}
_compiled_lock = threading.Lock()
_thread_state = threading.local()


def load_language(scheme: ExtractionScheme) -> Any:
    """Load the tree-sitter Language for a scheme from its grammar wheel."""
    try:
        mod = importlib.import_module(scheme.grammar_module)
        lang_fn = getattr(mod, scheme.language_func or "language")
    except (ImportError, AttributeError) as err:
        raise InternalError.unexpected(
            f"grammar not available: {scheme.grammar_package}",
            scheme=scheme.name,
        ) from err
    return tree_sitter.Language(lang_fn())


def _compile_query(language: Any, text: str, *, scheme: str, kind: str) -> Any | None:
    if not text.strip():
        return None
    try:
        return _TSQuery(language, text)
    except (ValueError, SyntaxError, NameError, TypeError) as e:
        if kind == "definitions":
            raise InternalError.unexpected(
                f"invalid {kind} query: {e}", scheme=scheme
            ) from e
        logger.warning("query_compile_failed", scheme=scheme, query=kind, reason=str(e))
        return None


def get_compiled(scheme: ExtractionScheme) -> CompiledScheme:
    """Return the process-wide compiled form of a scheme, building it once."""
    compiled = _compiled.get(scheme.name)
    if compiled is not None:
        return compiled
    with _compiled_lock:
        compiled = _compiled.get(scheme.name)
        if compiled is not None:
            return compiled
        language = load_language(scheme)
        compiled = CompiledScheme(
            scheme=scheme,
            language=language,
            definitions=_compile_query(
                language, scheme.definition_query, scheme=scheme.name, kind="definitions"
            ),
            calls=_compile_query(language, scheme.call_query, scheme=scheme.name, kind="calls"),
            imports=_compile_query(
                language, scheme.import_query, scheme=scheme.name, kind="imports"
            ),
        )
        _compiled[scheme.name] = compiled
        logger.debug("scheme_compiled", scheme=scheme.name)
        return compiled


def _thread_parser() -> Any:
    parser = getattr(_thread_state, "parser", None)
    if parser is None:
        parser = tree_sitter.Parser()
        _thread_state.parser = parser
    return parser


def run_query(query: Any, root: Any) -> Matches:
    """Run a compiled query; returns ``(pattern_index, {capture: [nodes]})`` pairs."""
    cursor = _TSQueryCursor(query)
    matches: Matches = cursor.matches(root)
    return matches


def parse_content(path: str, content: bytes, compiled: CompiledScheme) -> SyntaxTree:
    """
    Parse file bytes with the scheme's grammar.

    A tree with ERROR/missing nodes is still returned; extraction works
    best-effort over it. Only a parser failure or a tree without a root
    raises.

    Raises:
        ParseError: Unparseable content.
    """
    parser = _thread_parser()
    parser.language = compiled.language
    try:
        tree = parser.parse(content)
    except (ValueError, RuntimeError) as e:
        raise ParseError.unparseable(path, str(e)) from e

    root = tree.root_node if tree is not None else None
    if root is None:
        raise ParseError.unparseable(path, "parser produced no tree")

    arena = NodeArena.build(root)
    if arena.error_count:
        logger.debug(
            "syntax_errors",
            path=path,
            stage="parse",
            error_count=arena.error_count,
        )
    return SyntaxTree(
        path=path,
        compiled=compiled,
        tree=tree,
        root=root,
        arena=arena,
        content=content,
    )
