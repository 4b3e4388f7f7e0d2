"""Tests for structure extraction."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from codegraph.index._internal.identity import file_id
from codegraph.index._internal.parsing import (
    ANONYMOUS,
    EntityPattern,
    ExtractionScheme,
    ParseResult,
    base_type_name,
    extract_structure,
    get_compiled,
    parse_content,
)
from codegraph.index.models import NodeLabel, RelType

Parse = Callable[[str, str], ParseResult]


def _entity(result: ParseResult, label: NodeLabel, name: str):  # type: ignore[no-untyped-def]
    matches = [e for e in result.by_label(label) if e.name == name]
    assert len(matches) == 1, f"expected one {label.value} {name}, got {len(matches)}"
    return matches[0]


def _edges(result: ParseResult, rel: RelType) -> set[tuple[str, str]]:
    return {(r.src, r.dst) for r in result.relationships if r.type == rel}


PYTHON_SOURCE = '''import os
from pkg.util import helper


class Base:
    pass


class Greeter(Base):
    greeting = "hi"

    def __init__(self, prefix: str = "Hello"):
        self.prefix = prefix

    async def greet(self, name: str) -> str:
        return format_name(name)


def format_name(name):
    return name.title()


CONSTANT = 42
'''


class TestNesting:
    """Declaration structure."""

    def test_class_with_two_methods_and_function(self, parse_source: Parse) -> None:
        """Two class->method DECLARES edges, one file->function edge, no method->file edges."""
        result = parse_source(
            "mod.py",
            "class Foo:\n    def a(self):\n        pass\n\n    def b(self):\n        pass\n\n\ndef top():\n    pass\n",
        )
        foo = _entity(result, NodeLabel.CLASS, "Foo")
        a = _entity(result, NodeLabel.METHOD, "a")
        b = _entity(result, NodeLabel.METHOD, "b")
        top = _entity(result, NodeLabel.FUNCTION, "top")
        declares = _edges(result, RelType.DECLARES)
        fid = file_id("mod.py")

        assert {(src, dst) for src, dst in declares if src == foo.id} == {(foo.id, a.id), (foo.id, b.id)}
        assert (fid, top.id) in declares
        assert (fid, foo.id) in declares
        assert not any(dst == fid for _src, dst in declares)
        assert not any(src in (a.id, b.id) and dst == fid for src, dst in declares)

    def test_typescript_example(self, parse_source: Parse) -> None:
        """a.ts yields File->Class, Class->Method, File->Function and nothing else."""
        result = parse_source("a.ts", "class Foo { bar() {} }\nfunction baz() {}\n")
        assert sorted((e.label.value, e.name) for e in result.entities) == [
            ("Class", "Foo"),
            ("Function", "baz"),
            ("Method", "bar"),
        ]
        foo = _entity(result, NodeLabel.CLASS, "Foo")
        bar = _entity(result, NodeLabel.METHOD, "bar")
        baz = _entity(result, NodeLabel.FUNCTION, "baz")
        fid = file_id("a.ts")
        assert _edges(result, RelType.DECLARES) == {(fid, foo.id), (foo.id, bar.id), (fid, baz.id)}
        assert {r.type for r in result.relationships} == {RelType.DECLARES}

    def test_python_class_body_variable(self, parse_source: Parse) -> None:
        """Class-body assignments are Variables declared by the class."""
        result = parse_source("g.py", PYTHON_SOURCE)
        greeter = _entity(result, NodeLabel.CLASS, "Greeter")
        greeting = _entity(result, NodeLabel.VARIABLE, "greeting")
        constant = _entity(result, NodeLabel.VARIABLE, "CONSTANT")
        declares = _edges(result, RelType.DECLARES)
        assert (greeter.id, greeting.id) in declares
        assert (file_id("g.py"), constant.id) in declares

    def test_rust_impl_methods(self, parse_source: Parse) -> None:
        """Functions in an impl block become Methods of the named struct."""
        source = """use std::fmt;

pub struct Point { x: i32 }

impl Point {
    pub fn new(x: i32) -> Self { Point { x } }
    fn norm(&self) -> i32 { self.x }
}

trait Shape { fn area(&self) -> f64; }

impl Shape for Point {
    fn area(&self) -> f64 { 0.0 }
}

fn main() { let _p = Point::new(1); }
"""
        result = parse_source("lib.rs", source)
        point = _entity(result, NodeLabel.STRUCT, "Point")
        shape = _entity(result, NodeLabel.TRAIT, "Shape")
        new = _entity(result, NodeLabel.METHOD, "new")
        norm = _entity(result, NodeLabel.METHOD, "norm")
        main = _entity(result, NodeLabel.FUNCTION, "main")
        declares = _edges(result, RelType.DECLARES)
        assert (point.id, new.id) in declares
        assert (point.id, norm.id) in declares
        area_owners = {src for src, dst in declares if dst in {e.id for e in result.by_label(NodeLabel.METHOD) if e.name == "area"}}
        assert area_owners == {point.id, shape.id}
        assert (point.id, shape.id) in _edges(result, RelType.IMPLEMENTS)
        assert (main.id, new.id) in _edges(result, RelType.CALLS)

    def test_method_outside_class_becomes_function(self, parse_source: Parse) -> None:
        """A positional method with no class-like container is a Function."""
        result = parse_source("f.py", "def outer():\n    def inner():\n        pass\n")
        assert {e.name for e in result.by_label(NodeLabel.FUNCTION)} == {"outer", "inner"}
        assert not result.by_label(NodeLabel.METHOD)

    def test_closure_in_method_stays_function(self, parse_source: Parse) -> None:
        """A def inside a method is a Function declared by the file, not a Method of the class."""
        result = parse_source(
            "c.py",
            "class A:\n    def m(self):\n        def helper():\n            pass\n        return helper\n",
        )
        a = _entity(result, NodeLabel.CLASS, "A")
        m = _entity(result, NodeLabel.METHOD, "m")
        helper = _entity(result, NodeLabel.FUNCTION, "helper")
        declares = _edges(result, RelType.DECLARES)
        assert (a.id, m.id) in declares
        assert (file_id("c.py"), helper.id) in declares
        assert not any(dst == helper.id for src, dst in declares if src == a.id)
        assert helper.container is None

    def test_local_class_in_function_is_top_level(self, parse_source: Parse) -> None:
        """Methods of a class defined in a function belong to that class."""
        result = parse_source(
            "local.py",
            "def build():\n    class Local:\n        def run(self):\n            pass\n    return Local\n",
        )
        local = _entity(result, NodeLabel.CLASS, "Local")
        run = _entity(result, NodeLabel.METHOD, "run")
        declares = _edges(result, RelType.DECLARES)
        assert (file_id("local.py"), local.id) in declares
        assert (local.id, run.id) in declares


class TestNameResolution:
    """Name sources in priority order, and unnamed declarations."""

    def test_name_field_of_class_expression(self, parse_source: Parse) -> None:
        """A named class expression uses its own name over the declarator's."""
        result = parse_source("named.js", "const Alias = class Shape { area() {} };\n")
        shape = _entity(result, NodeLabel.CLASS, "Shape")
        area = _entity(result, NodeLabel.METHOD, "area")
        assert (shape.id, area.id) in _edges(result, RelType.DECLARES)
        assert not result.by_label(NodeLabel.VARIABLE)

    def test_declarator_and_assignment_unwrap(self, parse_source: Parse) -> None:
        """Unnamed class expressions take the name they are declared or assigned to."""
        result = parse_source(
            "unwrap.js",
            "const Circle = class { radius() {} };\nexports.Square = class {};\n",
        )
        circle = _entity(result, NodeLabel.CLASS, "Circle")
        _entity(result, NodeLabel.CLASS, "Square")
        radius = _entity(result, NodeLabel.METHOD, "radius")
        assert (circle.id, radius.id) in _edges(result, RelType.DECLARES)
        assert not result.by_label(NodeLabel.VARIABLE)

    @pytest.mark.parametrize("path", ["anon.js", "anon.ts"])
    def test_anonymous_default_class(self, parse_source: Parse, path: str) -> None:
        """A default-exported class without a name keeps the placeholder and its methods."""
        result = parse_source(path, "export default class { m() {} }\n")
        anon = _entity(result, NodeLabel.CLASS, ANONYMOUS)
        m = _entity(result, NodeLabel.METHOD, "m")
        assert _edges(result, RelType.DECLARES) == {(file_id(path), anon.id), (anon.id, m.id)}
        assert not result.by_label(NodeLabel.FUNCTION)

    def test_anonymous_default_function(self, parse_source: Parse) -> None:
        """An unnamed default-exported function owns the calls in its body."""
        result = parse_source("main.js", "export default function () { go(); }\n")
        anon = _entity(result, NodeLabel.FUNCTION, ANONYMOUS)
        site = _entity(result, NodeLabel.CALL_SITE, "go")
        assert (file_id("main.js"), anon.id) in _edges(result, RelType.DECLARES)
        assert (anon.id, site.id) in _edges(result, RelType.HAS_CALL_SITE)

    def test_anonymous_default_arrow(self, parse_source: Parse) -> None:
        result = parse_source("arrow.ts", "export default (x: number) => x * 2;\n")
        anon = _entity(result, NodeLabel.FUNCTION, ANONYMOUS)
        assert anon.props["signature"] == "(x: number)"

    def test_entity_ids_distinguish_anonymous_siblings(self, parse_source: Parse) -> None:
        result = parse_source("two.js", "const a = [class {}, class {}];\n")
        anonymous = [e for e in result.by_label(NodeLabel.CLASS) if e.name == ANONYMOUS]
        assert len(anonymous) == 2
        assert anonymous[0].id != anonymous[1].id


def _overlap_scheme(name: str, first: NodeLabel, second: NodeLabel) -> ExtractionScheme:
    return ExtractionScheme(
        name=name,
        language="python",
        grammar_package="tree-sitter-python",
        grammar_module="tree_sitter_python",
        definition_query="""
            (function_definition) @definition
            (function_definition name: (identifier) @name) @definition
        """,
        patterns=(EntityPattern(kind=first), EntityPattern(kind=second)),
    )


class TestOverlappingPatterns:
    """A node matched by several patterns becomes exactly one entity."""

    @pytest.mark.parametrize(
        ("first", "second"),
        [(NodeLabel.FUNCTION, NodeLabel.CLASS), (NodeLabel.CLASS, NodeLabel.FUNCTION)],
    )
    def test_earliest_pattern_wins(self, first: NodeLabel, second: NodeLabel) -> None:
        scheme = _overlap_scheme(f"python-overlap-{first.value.lower()}", first, second)
        syntax = parse_content("overlap.py", b"def run():\n    pass\n", get_compiled(scheme))
        result = extract_structure(syntax)

        assert [(e.label, e.name) for e in result.entities if e.label != NodeLabel.PARAMETER] == [
            (first, "run")
        ]
        assert len(_edges(result, RelType.DECLARES)) == 1


class TestIdentity:
    """Stable ids."""

    def test_reparse_yields_identical_ids(self, parse_source: Parse) -> None:
        """Byte-identical content gives the same id set."""
        first = parse_source("g.py", PYTHON_SOURCE)
        second = parse_source("g.py", PYTHON_SOURCE)
        assert first.ids() == second.ids()
        assert len(first.ids()) == len(first.entities)

    def test_path_is_part_of_identity(self, parse_source: Parse) -> None:
        """The same content under another path gets disjoint ids."""
        assert not parse_source("a.py", PYTHON_SOURCE).ids() & parse_source("b.py", PYTHON_SOURCE).ids()


class TestParameters:
    """Parameters, signatures and async."""

    def test_python_parameters(self, parse_source: Parse) -> None:
        """Parameters keep position and annotation; methods record signature and isAsync."""
        result = parse_source("g.py", PYTHON_SOURCE)
        greet = _entity(result, NodeLabel.METHOD, "greet")
        init = _entity(result, NodeLabel.METHOD, "__init__")
        assert greet.props["isAsync"] is True
        assert init.props["isAsync"] is False
        assert greet.props["signature"] == "(self, name: str)"

        param_ids = {dst for src, dst in _edges(result, RelType.HAS_PARAMETER) if src == greet.id}
        params = sorted(
            (e for e in result.by_label(NodeLabel.PARAMETER) if e.id in param_ids),
            key=lambda e: e.props["index"],
        )
        assert [(p.name, p.props.get("type")) for p in params] == [("self", None), ("name", "str")]

        prefix = [e for e in result.by_label(NodeLabel.PARAMETER) if e.name == "prefix"]
        assert prefix[0].props["type"] == "str"

    def test_javascript_arrow_functions(self, parse_source: Parse) -> None:
        """Arrow functions bound to names are Functions; a bare parameter is wrapped in parens."""
        result = parse_source(
            "m.js",
            "const add = (a, b) => a + b;\nexport const one = x => x;\nconst answer = 42;\n",
        )
        add = _entity(result, NodeLabel.FUNCTION, "add")
        one = _entity(result, NodeLabel.FUNCTION, "one")
        assert add.props["signature"] == "(a, b)"
        assert one.props["signature"] == "(x)"
        assert [e.name for e in result.by_label(NodeLabel.VARIABLE)] == ["answer"]

    def test_no_parameters(self, parse_source: Parse) -> None:
        """An empty parameter list gives signature () and no Parameter entities."""
        result = parse_source("a.ts", "function baz() {}\n")
        assert _entity(result, NodeLabel.FUNCTION, "baz").props["signature"] == "()"
        assert not result.by_label(NodeLabel.PARAMETER)

    def test_parameter_type_links_same_file_class(self, parse_source: Parse) -> None:
        """An annotation naming a same-file class produces HAS_TYPE."""
        result = parse_source(
            "t.ts", "class User {}\nfunction save(user: User, id: number) {}\n"
        )
        user_cls = _entity(result, NodeLabel.CLASS, "User")
        user_param = _entity(result, NodeLabel.PARAMETER, "user")
        assert user_param.props["type"] == "User"
        assert _edges(result, RelType.HAS_TYPE) == {(user_param.id, user_cls.id)}


class TestCalls:
    """Call sites and CALLS edges."""

    def test_same_file_call(self, parse_source: Parse) -> None:
        """A resolved call gives HAS_CALL_SITE, CALLS and REFERENCES."""
        result = parse_source("g.py", PYTHON_SOURCE)
        greet = _entity(result, NodeLabel.METHOD, "greet")
        target = _entity(result, NodeLabel.FUNCTION, "format_name")
        site = _entity(result, NodeLabel.CALL_SITE, "format_name")
        assert site.props["calledName"] == "format_name"
        assert (greet.id, site.id) in _edges(result, RelType.HAS_CALL_SITE)
        assert (greet.id, target.id) in _edges(result, RelType.CALLS)
        assert (site.id, target.id) in _edges(result, RelType.REFERENCES)

    def test_unresolved_call(self, parse_source: Parse) -> None:
        """Calls with no same-file target are returned as unresolved refs."""
        result = parse_source("g.py", PYTHON_SOURCE)
        fmt = _entity(result, NodeLabel.FUNCTION, "format_name")
        unresolved = {(u.src, u.type, u.name) for u in result.unresolved}
        assert (fmt.id, RelType.CALLS, "title") in unresolved

    def test_module_level_call(self, parse_source: Parse) -> None:
        """A top-level call site belongs to the File and has no CALLS edge."""
        result = parse_source("m.py", "def run():\n    pass\n\nrun()\n")
        site = _entity(result, NodeLabel.CALL_SITE, "run")
        run = _entity(result, NodeLabel.FUNCTION, "run")
        assert (file_id("m.py"), site.id) in _edges(result, RelType.HAS_CALL_SITE)
        assert (site.id, run.id) in _edges(result, RelType.REFERENCES)
        assert not _edges(result, RelType.CALLS)


class TestImports:
    """Import entities."""

    def test_python_imports(self, parse_source: Parse) -> None:
        """import and from-import give one Import each, linked from the File."""
        result = parse_source("g.py", PYTHON_SOURCE)
        names = {e.name for e in result.by_label(NodeLabel.IMPORT)}
        assert names == {"os", "pkg.util"}
        imported = {dst for src, dst in _edges(result, RelType.IMPORTS) if src == file_id("g.py")}
        assert imported == {e.id for e in result.by_label(NodeLabel.IMPORT)}

    def test_javascript_imports(self, parse_source: Parse) -> None:
        """ES imports, re-exports and require() are all imports."""
        result = parse_source(
            "m.js",
            'import React from "react";\nexport { x } from "./x";\nconst fs = require("fs");\n',
        )
        assert {e.props["source"] for e in result.by_label(NodeLabel.IMPORT)} == {"react", "./x", "fs"}

    def test_java_and_rust_imports(self, parse_source: Parse) -> None:
        """Java imports keep wildcards; Rust use keeps the path."""
        java = parse_source("A.java", "import java.util.List;\nimport java.io.*;\nclass A {}\n")
        assert {e.name for e in java.by_label(NodeLabel.IMPORT)} == {"java.util.List", "java.io.*"}
        rust = parse_source("lib.rs", "use std::collections::HashMap;\n")
        assert {e.name for e in rust.by_label(NodeLabel.IMPORT)} == {"std::collections::HashMap"}


class TestHeritage:
    """EXTENDS / IMPLEMENTS."""

    def test_python_extends_same_file(self, parse_source: Parse) -> None:
        result = parse_source("g.py", PYTHON_SOURCE)
        base = _entity(result, NodeLabel.CLASS, "Base")
        greeter = _entity(result, NodeLabel.CLASS, "Greeter")
        assert _edges(result, RelType.EXTENDS) == {(greeter.id, base.id)}

    def test_typescript_extends_and_implements(self, parse_source: Parse) -> None:
        """Implemented interfaces give IMPLEMENTS; unknown bases stay unresolved."""
        result = parse_source(
            "d.ts",
            "interface Pet {}\nclass Dog extends Animal implements Pet {}\n",
        )
        dog = _entity(result, NodeLabel.CLASS, "Dog")
        pet = _entity(result, NodeLabel.INTERFACE, "Pet")
        assert _edges(result, RelType.IMPLEMENTS) == {(dog.id, pet.id)}
        assert (dog.id, RelType.EXTENDS, "Animal") in {
            (u.src, u.type, u.name) for u in result.unresolved
        }

    def test_java_heritage(self, parse_source: Parse) -> None:
        """Java superclass and interfaces resolve by simple name."""
        source = """
interface Pet {}
class Animal {}
public class Dog extends Animal implements Pet {
    private String name;
    public Dog(String name) { this.name = name; }
    public void bark() { System.out.println(name); }
}
"""
        result = parse_source("Dog.java", source)
        dog = _entity(result, NodeLabel.CLASS, "Dog")
        animal = _entity(result, NodeLabel.CLASS, "Animal")
        pet = _entity(result, NodeLabel.INTERFACE, "Pet")
        assert _edges(result, RelType.EXTENDS) == {(dog.id, animal.id)}
        assert _edges(result, RelType.IMPLEMENTS) == {(dog.id, pet.id)}
        field = _entity(result, NodeLabel.VARIABLE, "name")
        assert field.props["type"] == "String"
        assert {e.name for e in result.by_label(NodeLabel.METHOD)} == {"Dog", "bark"}


class TestResilience:
    """Partial trees."""

    def test_syntax_errors_counted(self, parse_source: Parse) -> None:
        """Entities before a syntax error are still extracted."""
        result = parse_source("b.py", "def ok():\n    pass\n\ndef broken(:\n")
        assert result.error_count > 0
        assert "ok" in {e.name for e in result.by_label(NodeLabel.FUNCTION)}


class TestBaseTypeName:
    """base_type_name reductions."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Foo", "Foo"),
            ("typing.List[int]", "List"),
            ("&mut foo::Bar<T>", "Bar"),
            ("dyn Shape", "Shape"),
            ("'Quoted'", "Quoted"),
            ("[]", ""),
        ],
    )
    def test_reduces_to_simple_name(self, text: str, expected: str) -> None:
        assert base_type_name(text) == expected
