"""Parsing: language schemes, tree-sitter parsing and structure extraction."""

from codegraph.index._internal.parsing.extractor import (
    ANONYMOUS,
    ExtractedEntity,
    ParseResult,
    Relationship,
    StructureExtractor,
    UnresolvedRef,
    base_type_name,
    extract_structure,
)
from codegraph.index._internal.parsing.packs import (
    SCHEMES,
    EntityPattern,
    ExtractionScheme,
    get_scheme,
    get_scheme_for_ext,
    get_scheme_for_path,
    supported_extensions,
)
from codegraph.index._internal.parsing.treesitter import (
    CompiledScheme,
    SyntaxTree,
    get_compiled,
    parse_content,
)


def parse_file(path: str, content: bytes, scheme: ExtractionScheme) -> ParseResult:
    """Parse and extract one file. Runs on worker threads.

    Raises:
        ParseError: Unparseable content.
    """
    syntax = parse_content(path, content, get_compiled(scheme))
    return extract_structure(syntax)


__all__ = [
    "ANONYMOUS",
    "SCHEMES",
    "CompiledScheme",
    "EntityPattern",
    "ExtractedEntity",
    "ExtractionScheme",
    "ParseResult",
    "Relationship",
    "StructureExtractor",
    "SyntaxTree",
    "UnresolvedRef",
    "base_type_name",
    "extract_structure",
    "get_compiled",
    "get_scheme",
    "get_scheme_for_ext",
    "get_scheme_for_path",
    "parse_content",
    "parse_file",
    "supported_extensions",
]
