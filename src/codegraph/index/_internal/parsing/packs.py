"""Extraction schemes: single source of truth for per-language tree-sitter config.

Every supported language has exactly ONE ExtractionScheme that consolidates:
- Grammar install metadata (package, module, loader function)
- File extension detection
- Definition query (S-expression patterns + EntityPattern mappings)
- Container aliases and positional-method rules used by nesting resolution
- Call and import queries plus the handler names that post-process them

Queries capture ``@definition`` for the declaring node and optionally
``@name``. Pattern index ``i`` of a definition query maps to
``patterns[i]``; keep the two in the same order.

The SCHEMES registry is the canonical lookup: ``SCHEMES["python"]``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePath

from codegraph.index.models import NodeLabel

# =========================================================================
# Dataclasses
# =========================================================================


@dataclass(frozen=True)
class EntityPattern:
    """Maps a definition query pattern index to an entity kind."""

    kind: NodeLabel
    nested_kind: NodeLabel | None = None  # Kind when inside a class-like container
    # Child node types to descend into from the captured node. The entity's
    # node (and so its line range) is the unwrapped child when one exists.
    unwrap: frozenset[str] = frozenset()


@dataclass(frozen=True)
class ExtractionScheme:
    """Complete tree-sitter configuration for one extraction scheme."""

    # -- Identity --
    name: str  # Scheme id ("python", "tsx", ...)
    language: str  # Language recorded on File nodes

    # -- Grammar install --
    grammar_package: str  # PyPI package ("tree-sitter-python")
    grammar_module: str  # Python import ("tree_sitter_python")
    # Non-standard function name (e.g. "language_typescript", "language_tsx")
    language_func: str | None = None

    # -- File detection --
    extensions: frozenset[str] = field(default_factory=frozenset)

    # -- Entity extraction --
    definition_query: str = ""
    patterns: tuple[EntityPattern, ...] = ()
    # node type -> field naming the type it attaches members to (Rust impl blocks)
    container_aliases: dict[str, str] = field(default_factory=dict)
    # Declarator values that turn a Variable into a Function
    function_value_types: frozenset[str] = frozenset()
    # Declarator values materialized as a Class instead of a Variable
    class_value_types: frozenset[str] = frozenset()
    value_field: str = "value"
    parameter_fields: tuple[str, ...] = ("parameters",)

    # -- Calls (captures: @call, @callee) --
    call_query: str = ""

    # -- Imports (captures: @import) --
    import_query: str = ""
    import_handler: str = ""

    # -- EXTENDS / IMPLEMENTS --
    heritage_handler: str = ""


# =========================================================================
# PYTHON
# =========================================================================

PYTHON_SCHEME = ExtractionScheme(
    name="python",
    language="python",
    grammar_package="tree-sitter-python",
    grammar_module="tree_sitter_python",
    extensions=frozenset({"py", "pyi"}),
    definition_query="""
        (class_definition
            name: (identifier) @name) @definition
        (function_definition
            name: (identifier) @name) @definition
        (module
            (expression_statement
                (assignment
                    left: (identifier) @name
                    right: (lambda) @definition)))
        (module
            (expression_statement
                (assignment
                    left: (identifier) @name) @definition))
        (class_definition
            body: (block
                (expression_statement
                    (assignment
                        left: (identifier) @name
                        right: (lambda) @definition))))
        (class_definition
            body: (block
                (expression_statement
                    (assignment
                        left: (identifier) @name) @definition)))
    """,
    patterns=(
        EntityPattern(kind=NodeLabel.CLASS),
        EntityPattern(kind=NodeLabel.FUNCTION, nested_kind=NodeLabel.METHOD),
        EntityPattern(kind=NodeLabel.FUNCTION),
        EntityPattern(kind=NodeLabel.VARIABLE),
        EntityPattern(kind=NodeLabel.FUNCTION, nested_kind=NodeLabel.METHOD),
        EntityPattern(kind=NodeLabel.VARIABLE),
    ),
    function_value_types=frozenset({"lambda"}),
    value_field="right",
    call_query="""
        (call function: (identifier) @callee) @call
        (call function: (attribute attribute: (identifier) @callee)) @call
    """,
    import_query="""
        (import_statement) @import
        (import_from_statement) @import
    """,
    import_handler="_imports_python",
    heritage_handler="_heritage_python",
)


# =========================================================================
# JAVASCRIPT / JSX
# =========================================================================

_JS_FUNCTION_VALUES = frozenset({"arrow_function", "function_expression", "generator_function"})
_JS_CLASS_VALUES = frozenset({"class"})

_JS_DEFINITIONS = """
    (class_declaration
        name: (identifier) @name) @definition
    (method_definition
        name: (_) @name) @definition
    (function_declaration
        name: (identifier) @name) @definition
    (generator_function_declaration
        name: (identifier) @name) @definition
    (variable_declarator
        name: (identifier) @name
        value: [(arrow_function) (function_expression)]) @definition
    (expression_statement
        (assignment_expression
            left: [
                (identifier) @name
                (member_expression property: (property_identifier) @name)
            ]
            right: [(arrow_function) (function_expression)]) @definition)
    (program
        (lexical_declaration
            (variable_declarator
                name: (identifier) @name) @definition))
    (program
        (variable_declaration
            (variable_declarator
                name: (identifier) @name) @definition))
    (program
        (export_statement
            declaration: (lexical_declaration
                (variable_declarator
                    name: (identifier) @name) @definition)))
    (class) @definition
    (export_statement
        value: [(function_expression) (arrow_function)] @definition)
"""

_JS_PATTERNS = (
    EntityPattern(kind=NodeLabel.CLASS),
    EntityPattern(kind=NodeLabel.METHOD),
    EntityPattern(kind=NodeLabel.FUNCTION),
    EntityPattern(kind=NodeLabel.FUNCTION),
    EntityPattern(kind=NodeLabel.FUNCTION, unwrap=_JS_FUNCTION_VALUES),
    EntityPattern(kind=NodeLabel.FUNCTION, unwrap=_JS_FUNCTION_VALUES),
    EntityPattern(kind=NodeLabel.VARIABLE),
    EntityPattern(kind=NodeLabel.VARIABLE),
    EntityPattern(kind=NodeLabel.VARIABLE),
    EntityPattern(kind=NodeLabel.CLASS),
    EntityPattern(kind=NodeLabel.FUNCTION),
)

_JS_CALLS = """
    (call_expression function: (identifier) @callee) @call
    (call_expression
        function: (member_expression
            property: (property_identifier) @callee)) @call
    (new_expression constructor: (identifier) @callee) @call
"""

_JS_IMPORTS = """
    (import_statement) @import
    (export_statement) @import
    (call_expression) @import
"""

JAVASCRIPT_SCHEME = ExtractionScheme(
    name="javascript",
    language="javascript",
    grammar_package="tree-sitter-javascript",
    grammar_module="tree_sitter_javascript",
    extensions=frozenset({"js", "mjs", "cjs"}),
    definition_query=_JS_DEFINITIONS
    + """
    (field_definition
        property: (property_identifier) @name
        value: [(arrow_function) (function_expression)] @definition)
    (field_definition
        property: (property_identifier) @name) @definition
    """,
    patterns=(
        *_JS_PATTERNS,
        EntityPattern(kind=NodeLabel.METHOD),
        EntityPattern(kind=NodeLabel.VARIABLE),
    ),
    function_value_types=_JS_FUNCTION_VALUES,
    class_value_types=_JS_CLASS_VALUES,
    parameter_fields=("parameters", "parameter"),
    call_query=_JS_CALLS,
    import_query=_JS_IMPORTS,
    import_handler="_imports_js",
    heritage_handler="_heritage_js",
)

JSX_SCHEME = ExtractionScheme(
    name="jsx",
    language="javascript",
    grammar_package="tree-sitter-javascript",
    grammar_module="tree_sitter_javascript",
    extensions=frozenset({"jsx"}),
    definition_query=JAVASCRIPT_SCHEME.definition_query,
    patterns=JAVASCRIPT_SCHEME.patterns,
    function_value_types=_JS_FUNCTION_VALUES,
    class_value_types=_JS_CLASS_VALUES,
    parameter_fields=("parameters", "parameter"),
    call_query=_JS_CALLS,
    import_query=_JS_IMPORTS,
    import_handler="_imports_js",
    heritage_handler="_heritage_js",
)


# =========================================================================
# TYPESCRIPT / TSX
# =========================================================================

_TS_DEFINITIONS = """
    (class_declaration
        name: (type_identifier) @name) @definition
    (abstract_class_declaration
        name: (type_identifier) @name) @definition
    (interface_declaration
        name: (type_identifier) @name) @definition
    (enum_declaration
        name: (identifier) @name) @definition
    (method_definition
        name: (_) @name) @definition
    (method_signature
        name: (_) @name) @definition
    (function_declaration
        name: (identifier) @name) @definition
    (generator_function_declaration
        name: (identifier) @name) @definition
    (variable_declarator
        name: (identifier) @name
        value: [(arrow_function) (function_expression)]) @definition
    (expression_statement
        (assignment_expression
            left: [
                (identifier) @name
                (member_expression property: (property_identifier) @name)
            ]
            right: [(arrow_function) (function_expression)]) @definition)
    (program
        (lexical_declaration
            (variable_declarator
                name: (identifier) @name) @definition))
    (program
        (variable_declaration
            (variable_declarator
                name: (identifier) @name) @definition))
    (program
        (export_statement
            declaration: (lexical_declaration
                (variable_declarator
                    name: (identifier) @name) @definition)))
    (public_field_definition
        name: (property_identifier) @name
        value: [(arrow_function) (function_expression)] @definition)
    (public_field_definition
        name: (property_identifier) @name) @definition
    (class) @definition
    (export_statement
        value: [(function_expression) (arrow_function)] @definition)
"""

_TS_PATTERNS = (
    EntityPattern(kind=NodeLabel.CLASS),
    EntityPattern(kind=NodeLabel.CLASS),
    EntityPattern(kind=NodeLabel.INTERFACE),
    EntityPattern(kind=NodeLabel.ENUM),
    EntityPattern(kind=NodeLabel.METHOD),
    EntityPattern(kind=NodeLabel.METHOD),
    EntityPattern(kind=NodeLabel.FUNCTION),
    EntityPattern(kind=NodeLabel.FUNCTION),
    EntityPattern(kind=NodeLabel.FUNCTION, unwrap=_JS_FUNCTION_VALUES),
    EntityPattern(kind=NodeLabel.FUNCTION, unwrap=_JS_FUNCTION_VALUES),
    EntityPattern(kind=NodeLabel.VARIABLE),
    EntityPattern(kind=NodeLabel.VARIABLE),
    EntityPattern(kind=NodeLabel.VARIABLE),
    EntityPattern(kind=NodeLabel.METHOD),
    EntityPattern(kind=NodeLabel.VARIABLE),
    EntityPattern(kind=NodeLabel.CLASS),
    EntityPattern(kind=NodeLabel.FUNCTION),
)

TYPESCRIPT_SCHEME = ExtractionScheme(
    name="typescript",
    language="typescript",
    grammar_package="tree-sitter-typescript",
    grammar_module="tree_sitter_typescript",
    language_func="language_typescript",
    extensions=frozenset({"ts", "mts", "cts"}),
    definition_query=_TS_DEFINITIONS,
    patterns=_TS_PATTERNS,
    function_value_types=_JS_FUNCTION_VALUES,
    class_value_types=_JS_CLASS_VALUES,
    parameter_fields=("parameters", "parameter"),
    call_query=_JS_CALLS,
    import_query=_JS_IMPORTS,
    import_handler="_imports_js",
    heritage_handler="_heritage_ts",
)

TSX_SCHEME = ExtractionScheme(
    name="tsx",
    language="typescript",
    grammar_package="tree-sitter-typescript",
    grammar_module="tree_sitter_typescript",
    language_func="language_tsx",
    extensions=frozenset({"tsx"}),
    definition_query=_TS_DEFINITIONS,
    patterns=_TS_PATTERNS,
    function_value_types=_JS_FUNCTION_VALUES,
    class_value_types=_JS_CLASS_VALUES,
    parameter_fields=("parameters", "parameter"),
    call_query=_JS_CALLS,
    import_query=_JS_IMPORTS,
    import_handler="_imports_js",
    heritage_handler="_heritage_ts",
)


# =========================================================================
# JAVA
# =========================================================================

JAVA_SCHEME = ExtractionScheme(
    name="java",
    language="java",
    grammar_package="tree-sitter-java",
    grammar_module="tree_sitter_java",
    extensions=frozenset({"java"}),
    definition_query="""
        (class_declaration
            name: (identifier) @name) @definition
        (record_declaration
            name: (identifier) @name) @definition
        (interface_declaration
            name: (identifier) @name) @definition
        (enum_declaration
            name: (identifier) @name) @definition
        (method_declaration
            name: (identifier) @name) @definition
        (constructor_declaration
            name: (identifier) @name) @definition
        (field_declaration
            declarator: (variable_declarator
                name: (identifier) @name
                value: (lambda_expression) @definition))
        (field_declaration
            declarator: (variable_declarator
                name: (identifier) @name) @definition)
    """,
    patterns=(
        EntityPattern(kind=NodeLabel.CLASS),
        EntityPattern(kind=NodeLabel.CLASS),
        EntityPattern(kind=NodeLabel.INTERFACE),
        EntityPattern(kind=NodeLabel.ENUM),
        EntityPattern(kind=NodeLabel.METHOD),
        EntityPattern(kind=NodeLabel.METHOD),
        EntityPattern(kind=NodeLabel.METHOD),
        EntityPattern(kind=NodeLabel.VARIABLE),
    ),
    function_value_types=frozenset({"lambda_expression"}),
    call_query="""
        (method_invocation name: (identifier) @callee) @call
        (object_creation_expression type: (type_identifier) @callee) @call
    """,
    import_query="""
        (import_declaration) @import
    """,
    import_handler="_imports_java",
    heritage_handler="_heritage_java",
)


# =========================================================================
# RUST
# =========================================================================

RUST_SCHEME = ExtractionScheme(
    name="rust",
    language="rust",
    grammar_package="tree-sitter-rust",
    grammar_module="tree_sitter_rust",
    extensions=frozenset({"rs"}),
    definition_query="""
        (struct_item
            name: (type_identifier) @name) @definition
        (enum_item
            name: (type_identifier) @name) @definition
        (trait_item
            name: (type_identifier) @name) @definition
        (function_item
            name: (identifier) @name) @definition
        (function_signature_item
            name: (identifier) @name) @definition
        (source_file
            (const_item
                name: (identifier) @name) @definition)
        (source_file
            (static_item
                name: (identifier) @name) @definition)
        (impl_item
            body: (declaration_list
                (const_item
                    name: (identifier) @name) @definition))
    """,
    patterns=(
        EntityPattern(kind=NodeLabel.STRUCT),
        EntityPattern(kind=NodeLabel.ENUM),
        EntityPattern(kind=NodeLabel.TRAIT),
        EntityPattern(kind=NodeLabel.FUNCTION, nested_kind=NodeLabel.METHOD),
        EntityPattern(kind=NodeLabel.FUNCTION, nested_kind=NodeLabel.METHOD),
        EntityPattern(kind=NodeLabel.VARIABLE),
        EntityPattern(kind=NodeLabel.VARIABLE),
        EntityPattern(kind=NodeLabel.VARIABLE),
    ),
    container_aliases={"impl_item": "type"},
    call_query="""
        (call_expression function: (identifier) @callee) @call
        (call_expression
            function: (field_expression
                field: (field_identifier) @callee)) @call
        (call_expression
            function: (scoped_identifier
                name: (identifier) @callee)) @call
    """,
    import_query="""
        (use_declaration) @import
    """,
    import_handler="_imports_rust",
    heritage_handler="_heritage_rust",
)


# =========================================================================
# Registry
# =========================================================================

_ALL_SCHEMES: tuple[ExtractionScheme, ...] = (
    PYTHON_SCHEME,
    JAVASCRIPT_SCHEME,
    JSX_SCHEME,
    TYPESCRIPT_SCHEME,
    TSX_SCHEME,
    JAVA_SCHEME,
    RUST_SCHEME,
)

# name -> Scheme
SCHEMES: dict[str, ExtractionScheme] = {scheme.name: scheme for scheme in _ALL_SCHEMES}

# Extension -> Scheme
_EXT_TO_SCHEME: dict[str, ExtractionScheme] = {}
for _scheme in _ALL_SCHEMES:
    for _ext in _scheme.extensions:
        _EXT_TO_SCHEME[_ext] = _scheme


# =========================================================================
# Public API
# =========================================================================


def get_scheme(name: str) -> ExtractionScheme | None:
    """Get a scheme by name."""
    return SCHEMES.get(name)


def get_scheme_for_ext(ext: str) -> ExtractionScheme | None:
    """Get a scheme for a file extension (with or without leading dot)."""
    return _EXT_TO_SCHEME.get(ext.lower().lstrip("."))


def get_scheme_for_path(path: str | PurePath) -> ExtractionScheme | None:
    """Dispatch a path to its scheme. None means the file is not parsed."""
    suffix = PurePath(path).suffix
    if not suffix:
        return None
    return get_scheme_for_ext(suffix)


def supported_extensions() -> frozenset[str]:
    return frozenset(_EXT_TO_SCHEME)
