"""Structure extraction: syntax tree -> entities and relationships.

Definition captures are processed in two passes:

1. Materialization. Each ``@definition`` capture becomes one entity. The
   kind comes from the scheme's pattern table, the entity node is the
   captured node after unwrapping, and the name is resolved in a fixed
   order: ``@name`` capture, the node's ``name`` field, one level through
   an enclosing declarator or assignment, then ``anonymous``. A node
   captured by several patterns is materialized once, by the pattern that
   comes first in the scheme's table.
2. Nesting. Each entity walks its ancestors until it meets a class-like
   entity (or a container alias that names one), which then DECLARES it.
   The walk stops at an enclosing Function or Method, so closures and
   local classes stay top-level. Entities that reach the file root or an
   enclosing callable are declared by the File. Positional
   methods (``nested_kind``) are reclassified here; a Method with no
   class-like container becomes a Function.

Parameters, call sites, imports and heritage are derived afterwards from
the resolved entities. Call and heritage targets are matched by simple
name; names with no same-file match are returned as ``UnresolvedRef`` for
graph-wide resolution at ingest time.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

import structlog

from codegraph.index._internal.identity import entity_id, file_id
from codegraph.index._internal.parsing.treesitter import SyntaxTree, run_query
from codegraph.index.models import NodeLabel, RelType

logger = structlog.get_logger()

ANONYMOUS = "anonymous"

_CLASS_LIKE = NodeLabel.class_like()
_CALLABLE = NodeLabel.callable_kinds()

_IDENTIFIER_TYPES = frozenset(
    {
        "identifier",
        "property_identifier",
        "private_property_identifier",
        "type_identifier",
        "field_identifier",
    }
)
_SPLAT_TYPES = frozenset(
    {"list_splat_pattern", "dictionary_splat_pattern", "rest_pattern", "spread_parameter"}
)
_DESTRUCTURING_TYPES = frozenset({"object_pattern", "array_pattern", "tuple_pattern"})
_NON_PARAMETER_TYPES = frozenset(
    {"comment", "keyword_separator", "positional_separator", "attribute_item", "decorator"}
)
_HERITAGE_TYPES = frozenset(
    {
        "identifier",
        "type_identifier",
        "attribute",
        "member_expression",
        "generic_type",
        "nested_type_identifier",
        "scoped_type_identifier",
        "scoped_identifier",
    }
)
_TYPE_NAME_RE = re.compile(r"[A-Za-z_$][\w$]*(?:(?:\.|::)[A-Za-z_$][\w$]*)*")
_TYPE_PREFIXES = ("mut ", "dyn ", "impl ", "const ", "final ")


@dataclass
class ExtractedEntity:
    """One extracted entity. ``node`` is its arena index."""

    label: NodeLabel
    name: str
    start_line: int
    end_line: int
    start_col: int
    node: int
    props: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    container: int | None = None  # Arena index of the declaring class-like entity


@dataclass(frozen=True)
class Relationship:
    src: str
    type: RelType
    dst: str


@dataclass(frozen=True)
class UnresolvedRef:
    """A by-name reference with no same-file target."""

    src: str
    type: RelType
    name: str
    targets: frozenset[NodeLabel]


@dataclass
class ParseResult:
    """Entities and relationships extracted from one file."""

    path: str
    language: str
    scheme: str
    entities: list[ExtractedEntity] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)
    unresolved: list[UnresolvedRef] = field(default_factory=list)
    error_count: int = 0

    def ids(self) -> set[str]:
        return {e.id for e in self.entities}

    def by_label(self, label: NodeLabel) -> list[ExtractedEntity]:
        return [e for e in self.entities if e.label == label]


def extract_structure(syntax: SyntaxTree) -> ParseResult:
    """Extract entities and relationships from a parsed file."""
    return StructureExtractor(syntax).extract()


def _strip_quotes(text: str) -> str:
    return text.strip().strip("'\"`")


def base_type_name(text: str) -> str:
    """Reduce a type or superclass expression to its simple name.

    ``&mut foo::Bar<T>`` -> ``Bar``, ``typing.List[int]`` -> ``List``.
    """
    text = _strip_quotes(text).lstrip("&*").strip()
    for prefix in _TYPE_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix) :].lstrip()
    match = _TYPE_NAME_RE.match(text)
    if match is None:
        return ""
    return re.split(r"\.|::", match.group(0))[-1]


class StructureExtractor:
    """Single-use extractor for one SyntaxTree."""

    def __init__(self, syntax: SyntaxTree) -> None:
        self._syntax = syntax
        self._arena = syntax.arena
        self._scheme = syntax.compiled.scheme
        self._path = syntax.path
        self._file_id = file_id(syntax.path)

        self._entities: dict[int, ExtractedEntity] = {}
        self._nested_kinds: dict[int, NodeLabel | None] = {}
        self._derived: list[ExtractedEntity] = []
        self._relationships: list[Relationship] = []
        self._edge_keys: set[tuple[str, RelType, str]] = set()
        self._unresolved: list[UnresolvedRef] = []
        self._class_like_by_name: dict[str, list[ExtractedEntity]] = {}
        self._callables_by_name: dict[str, list[ExtractedEntity]] = {}

    def extract(self) -> ParseResult:
        self._materialize()
        self._index_class_like()
        self._resolve_nesting()
        self._assign_ids()
        self._declare()
        self._index_callables()
        self._extract_parameters()
        self._extract_variable_types()
        self._extract_calls()
        self._extract_imports()
        self._extract_heritage()

        entities: list[ExtractedEntity] = []
        seen: set[str] = set()
        for entity in [*self._entities.values(), *self._derived]:
            if entity.id in seen:
                continue
            seen.add(entity.id)
            entities.append(entity)

        return ParseResult(
            path=self._path,
            language=self._scheme.language,
            scheme=self._scheme.name,
            entities=entities,
            relationships=self._relationships,
            unresolved=self._unresolved,
            error_count=self._syntax.error_count,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _text(node: Any) -> str:
        raw = node.text
        return raw.decode("utf-8", errors="replace") if raw is not None else ""

    def _ts(self, index: int) -> Any:
        return self._arena.ts_node(index)

    def _add_edge(self, src: str, rel: RelType, dst: str) -> None:
        key = (src, rel, dst)
        if key in self._edge_keys:
            return
        self._edge_keys.add(key)
        self._relationships.append(Relationship(src=src, type=rel, dst=dst))

    def _new_entity(
        self,
        label: NodeLabel,
        name: str,
        index: int,
        qualifier: str,
        props: dict[str, Any] | None = None,
    ) -> ExtractedEntity:
        node = self._arena[index]
        return ExtractedEntity(
            label=label,
            name=name,
            start_line=node.start_line,
            end_line=node.end_line,
            start_col=node.start_col,
            node=index,
            props=props or {},
            id=entity_id(self._path, label, qualifier, node.start_line, node.start_col),
        )

    # ------------------------------------------------------------------
    # First pass: materialization
    # ------------------------------------------------------------------

    def _materialize(self) -> None:
        patterns = self._scheme.patterns
        hits: list[tuple[int, int, Any, Any]] = []
        winners: dict[int, int] = {}
        matches = run_query(self._syntax.compiled.definitions, self._syntax.root)
        for pattern_idx, captures in matches:
            if pattern_idx >= len(patterns):
                continue
            definitions = captures.get("definition")
            if not definitions:
                continue
            pattern = patterns[pattern_idx]

            node = definitions[0]
            if pattern.unwrap:
                node = self._unwrap(node, pattern.unwrap)
            if pattern.kind == NodeLabel.VARIABLE and self._has_definition_value(node):
                continue
            index = self._arena.index_of(node)
            name_nodes = captures.get("name")
            hits.append((pattern_idx, index, node, name_nodes[0] if name_nodes else None))
            if pattern_idx < winners.get(index, len(patterns)):
                winners[index] = pattern_idx

        # Overlapping patterns: the earliest pattern in the table owns the node
        for pattern_idx, index, node, name_node in hits:
            if winners[index] != pattern_idx or index in self._entities:
                continue
            pattern = patterns[pattern_idx]
            arena_node = self._arena[index]
            self._entities[index] = ExtractedEntity(
                label=pattern.kind,
                name=self._resolve_name(node, name_node),
                start_line=arena_node.start_line,
                end_line=arena_node.end_line,
                start_col=arena_node.start_col,
                node=index,
            )
            self._nested_kinds[index] = pattern.nested_kind

    @staticmethod
    def _unwrap(node: Any, types: frozenset[str]) -> Any:
        for child in node.named_children:
            if child.type in types:
                return child
        return node

    def _has_definition_value(self, node: Any) -> bool:
        """True when the declarator's value is materialized as its own entity."""
        scheme = self._scheme
        if not scheme.function_value_types and not scheme.class_value_types:
            return False
        value = node.child_by_field_name(scheme.value_field)
        if value is None:
            return False
        return value.type in scheme.function_value_types or value.type in scheme.class_value_types

    def _resolve_name(self, node: Any, name_node: Any | None) -> str:
        # (a) direct capture
        if name_node is not None:
            return self._text(name_node)
        # (b) the definition's own name field
        named = node.child_by_field_name("name")
        if named is not None:
            return self._text(named)
        # (c) one level through a declarator or assignment
        parent = node.parent
        if parent is not None:
            if parent.type == "variable_declarator":
                declared = parent.child_by_field_name("name")
                if declared is not None:
                    return self._text(declared)
            if parent.type in ("assignment_expression", "assignment"):
                left = parent.child_by_field_name("left")
                if left is not None and left.type == "identifier":
                    return self._text(left)
                if left is not None and left.type in ("member_expression", "attribute"):
                    prop = left.child_by_field_name("property") or left.child_by_field_name(
                        "attribute"
                    )
                    if prop is not None:
                        return self._text(prop)
        for child in node.named_children:
            if child.type == "variable_declarator":
                declared = child.child_by_field_name("name")
                if declared is not None:
                    return self._text(declared)
        # (d)
        return ANONYMOUS

    # ------------------------------------------------------------------
    # Second pass: nesting
    # ------------------------------------------------------------------

    def _index_class_like(self) -> None:
        for entity in self._entities.values():
            if entity.label in _CLASS_LIKE:
                self._class_like_by_name.setdefault(entity.name, []).append(entity)

    def _resolve_nesting(self) -> None:
        for index, entity in self._entities.items():
            container = self._find_container(index)
            if container is not None:
                entity.container = container.node
                nested_kind = self._nested_kinds.get(index)
                if nested_kind is not None:
                    entity.label = nested_kind
            elif entity.label == NodeLabel.METHOD:
                entity.label = NodeLabel.FUNCTION

    def _find_container(self, index: int) -> ExtractedEntity | None:
        aliases = self._scheme.container_aliases
        for ancestor in self._arena.ancestors(index):
            owner = self._entities.get(ancestor)
            if owner is not None:
                if owner.label in _CLASS_LIKE:
                    return owner
                if owner.label in _CALLABLE:
                    # Closures stay with the file, not the enclosing class
                    return None
            alias_field = aliases.get(self._arena[ancestor].type)
            if alias_field is None:
                continue
            target = self._ts(ancestor).child_by_field_name(alias_field)
            if target is None:
                continue
            for candidate in self._class_like_by_name.get(base_type_name(self._text(target)), []):
                if candidate.node != index:
                    return candidate
        return None

    def _assign_ids(self) -> None:
        for entity in self._entities.values():
            entity.id = entity_id(
                self._path, entity.label, entity.name, entity.start_line, entity.start_col
            )

    def _declare(self) -> None:
        for entity in self._entities.values():
            if entity.container is not None:
                src = self._entities[entity.container].id
            else:
                src = self._file_id
            self._add_edge(src, RelType.DECLARES, entity.id)

    def _index_callables(self) -> None:
        for entity in self._entities.values():
            if entity.label in _CALLABLE:
                self._callables_by_name.setdefault(entity.name, []).append(entity)

    # ------------------------------------------------------------------
    # Parameters and types
    # ------------------------------------------------------------------

    def _extract_parameters(self) -> None:
        for entity in list(self._entities.values()):
            if entity.label not in _CALLABLE:
                continue
            node = self._ts(entity.node)
            params = None
            for field_name in self._scheme.parameter_fields:
                params = node.child_by_field_name(field_name)
                if params is not None:
                    break

            entity.props["isAsync"] = self._is_async(node)
            if params is None:
                entity.props["signature"] = "()"
                continue

            if params.type in _IDENTIFIER_TYPES:
                # Single bare arrow-function parameter
                entity.props["signature"] = f"({self._text(params)})"
                param_nodes = [params]
            else:
                entity.props["signature"] = " ".join(self._text(params).split())
                param_nodes = [c for c in params.named_children if c.type not in _NON_PARAMETER_TYPES]

            for position, param_node in enumerate(param_nodes):
                name = self._parameter_name(param_node)
                props: dict[str, Any] = {"index": position}
                type_text = self._type_of(param_node)
                if type_text:
                    props["type"] = type_text
                param = self._new_entity(
                    NodeLabel.PARAMETER,
                    name,
                    self._arena.index_of(param_node),
                    qualifier=f"{entity.id}#{position}:{name}",
                    props=props,
                )
                self._derived.append(param)
                self._add_edge(entity.id, RelType.HAS_PARAMETER, param.id)
                if type_text:
                    self._link_type(param.id, type_text)

    def _is_async(self, node: Any) -> bool:
        for child in node.children:
            if child.type == "async":
                return True
            if child.type == "function_modifiers" and "async" in self._text(child).split():
                return True
        return False

    def _parameter_name(self, node: Any) -> str:
        if node.type == "self_parameter":
            return "self"
        if node.type in _IDENTIFIER_TYPES:
            return self._text(node)
        if node.type in _DESTRUCTURING_TYPES:
            return " ".join(self._text(node).split())
        for field_name in ("name", "pattern", "left"):
            child = node.child_by_field_name(field_name)
            if child is not None:
                return self._parameter_name(child)
        type_node = node.child_by_field_name("type")
        for child in node.named_children:
            if type_node is not None and child.id == type_node.id:
                continue
            if child.type in _IDENTIFIER_TYPES:
                return self._text(child)
            if child.type in _SPLAT_TYPES:
                return self._parameter_name(child)
        return " ".join(self._text(node).split())

    def _type_of(self, node: Any) -> str | None:
        type_node = node.child_by_field_name("type")
        if type_node is None and node.parent is not None and node.parent.type in (
            "field_declaration",
            "local_variable_declaration",
        ):
            type_node = node.parent.child_by_field_name("type")
        if type_node is None:
            return None
        text = self._text(type_node).strip()
        if text.startswith(":"):
            text = text[1:].strip()
        return text or None

    def _link_type(self, src: str, type_text: str) -> None:
        for target in self._class_like_by_name.get(base_type_name(type_text), [])[:1]:
            self._add_edge(src, RelType.HAS_TYPE, target.id)

    def _extract_variable_types(self) -> None:
        for entity in self._entities.values():
            if entity.label != NodeLabel.VARIABLE:
                continue
            type_text = self._type_of(self._ts(entity.node))
            if type_text:
                entity.props["type"] = type_text
                self._link_type(entity.id, type_text)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def _enclosing_callable(self, index: int) -> ExtractedEntity | None:
        for ancestor in self._arena.ancestors(index):
            owner = self._entities.get(ancestor)
            if owner is not None and owner.label in _CALLABLE:
                return owner
        return None

    def _extract_calls(self) -> None:
        query = self._syntax.compiled.calls
        if query is None:
            return
        seen: set[int] = set()
        for _pattern_idx, captures in run_query(query, self._syntax.root):
            calls = captures.get("call")
            callees = captures.get("callee")
            if not calls or not callees:
                continue
            call_index = self._arena.index_of(calls[0])
            if call_index in seen:
                continue
            seen.add(call_index)

            called_name = self._text(callees[0])
            site = self._new_entity(
                NodeLabel.CALL_SITE,
                called_name,
                call_index,
                qualifier=called_name,
                props={"calledName": called_name},
            )
            self._derived.append(site)

            caller = self._enclosing_callable(call_index)
            self._add_edge(caller.id if caller else self._file_id, RelType.HAS_CALL_SITE, site.id)

            targets = self._callables_by_name.get(called_name)
            if targets:
                for target in targets:
                    if caller is not None:
                        self._add_edge(caller.id, RelType.CALLS, target.id)
                    self._add_edge(site.id, RelType.REFERENCES, target.id)
                continue
            if caller is not None:
                self._unresolved.append(
                    UnresolvedRef(caller.id, RelType.CALLS, called_name, _CALLABLE)
                )
            self._unresolved.append(
                UnresolvedRef(site.id, RelType.REFERENCES, called_name, _CALLABLE)
            )

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def _extract_imports(self) -> None:
        query = self._syntax.compiled.imports
        handler = getattr(self, self._scheme.import_handler, None) if self._scheme.import_handler else None
        if query is None or handler is None:
            return
        for _pattern_idx, captures in run_query(query, self._syntax.root):
            for node in captures.get("import", []):
                index = self._arena.index_of(node)
                for source in handler(node):
                    if not source:
                        continue
                    imported = self._new_entity(
                        NodeLabel.IMPORT, source, index, qualifier=source, props={"source": source}
                    )
                    self._derived.append(imported)
                    self._add_edge(self._file_id, RelType.IMPORTS, imported.id)

    def _imports_python(self, node: Any) -> list[str]:
        if node.type == "import_from_statement":
            module = node.child_by_field_name("module_name")
            return [self._text(module)] if module is not None else []
        sources: list[str] = []
        for child in node.named_children:
            if child.type == "dotted_name":
                sources.append(self._text(child))
            elif child.type == "aliased_import":
                name = child.child_by_field_name("name")
                if name is not None:
                    sources.append(self._text(name))
        return sources

    def _imports_js(self, node: Any) -> list[str]:
        if node.type in ("import_statement", "export_statement"):
            source = node.child_by_field_name("source")
            return [_strip_quotes(self._text(source))] if source is not None else []
        if node.type != "call_expression":
            return []
        function = node.child_by_field_name("function")
        if function is None:
            return []
        if function.type != "import" and not (
            function.type == "identifier" and self._text(function) == "require"
        ):
            return []
        arguments = node.child_by_field_name("arguments")
        if arguments is None:
            return []
        for child in arguments.named_children:
            if child.type == "string":
                return [_strip_quotes(self._text(child))]
        return []

    def _imports_java(self, node: Any) -> list[str]:
        wildcard = any(child.type == "asterisk" for child in node.named_children)
        for child in node.named_children:
            if child.type in ("scoped_identifier", "identifier"):
                source = self._text(child)
                return [f"{source}.*" if wildcard else source]
        return []

    def _imports_rust(self, node: Any) -> list[str]:
        argument = node.child_by_field_name("argument")
        return [" ".join(self._text(argument).split())] if argument is not None else []

    # ------------------------------------------------------------------
    # Heritage
    # ------------------------------------------------------------------

    def _class_like_entities(self) -> Iterator[ExtractedEntity]:
        for entity in self._entities.values():
            if entity.label in _CLASS_LIKE:
                yield entity

    def _extract_heritage(self) -> None:
        handler = (
            getattr(self, self._scheme.heritage_handler, None)
            if self._scheme.heritage_handler
            else None
        )
        if handler is None:
            return
        for subject, rel, name in handler():
            if not name:
                continue
            candidates = [c for c in self._class_like_by_name.get(name, []) if c.id != subject.id]
            if candidates:
                for target in candidates:
                    self._add_edge(subject.id, rel, target.id)
            else:
                self._unresolved.append(UnresolvedRef(subject.id, rel, name, _CLASS_LIKE))

    def _type_names(self, node: Any) -> Iterator[str]:
        for child in node.named_children:
            if child.type in _HERITAGE_TYPES:
                yield base_type_name(self._text(child))
            elif child.type == "type_list":
                yield from self._type_names(child)

    def _heritage_python(self) -> Iterator[tuple[ExtractedEntity, RelType, str]]:
        for entity in self._class_like_entities():
            supers = self._ts(entity.node).child_by_field_name("superclasses")
            if supers is None:
                continue
            for name in self._type_names(supers):
                yield entity, RelType.EXTENDS, name

    def _heritage_js(self) -> Iterator[tuple[ExtractedEntity, RelType, str]]:
        for entity in self._class_like_entities():
            for child in self._ts(entity.node).named_children:
                if child.type == "class_heritage":
                    for name in self._type_names(child):
                        yield entity, RelType.EXTENDS, name

    def _heritage_ts(self) -> Iterator[tuple[ExtractedEntity, RelType, str]]:
        for entity in self._class_like_entities():
            for child in self._ts(entity.node).named_children:
                if child.type == "class_heritage":
                    for clause in child.named_children:
                        if clause.type == "extends_clause":
                            rel = RelType.EXTENDS
                        elif clause.type == "implements_clause":
                            rel = RelType.IMPLEMENTS
                        else:
                            continue
                        for name in self._type_names(clause):
                            yield entity, rel, name
                elif child.type == "extends_type_clause":
                    for name in self._type_names(child):
                        yield entity, RelType.EXTENDS, name

    def _heritage_java(self) -> Iterator[tuple[ExtractedEntity, RelType, str]]:
        for entity in self._class_like_entities():
            node = self._ts(entity.node)
            superclass = node.child_by_field_name("superclass")
            if superclass is not None:
                for name in self._type_names(superclass):
                    yield entity, RelType.EXTENDS, name
            interfaces = node.child_by_field_name("interfaces")
            if interfaces is not None:
                for name in self._type_names(interfaces):
                    yield entity, RelType.IMPLEMENTS, name
            for child in node.named_children:
                if child.type == "extends_interfaces":
                    for name in self._type_names(child):
                        yield entity, RelType.EXTENDS, name

    def _heritage_rust(self) -> Iterator[tuple[ExtractedEntity, RelType, str]]:
        for index in self._arena.indices_of_type("impl_item"):
            node = self._ts(index)
            trait = node.child_by_field_name("trait")
            target = node.child_by_field_name("type")
            if trait is None or target is None:
                continue
            subjects = self._class_like_by_name.get(base_type_name(self._text(target)))
            if subjects:
                yield subjects[0], RelType.IMPLEMENTS, base_type_name(self._text(trait))
