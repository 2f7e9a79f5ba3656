"""Tests for the lexical Rust parser."""

from __future__ import annotations

from cke.db.models import ElementType
from cke.parsers import RUST


def _parse(source: str):
    return RUST.parse(source.encode("utf-8"), "/src/lib.rs")


def _by_name(elements):
    return {e.name: e for e in elements}


def test_two_functions_on_one_line():
    elements = _parse("pub fn alpha() {} pub fn beta() {}")
    alpha, beta = elements
    assert (alpha.name, alpha.line, alpha.location.column) == ("alpha", 1, 1)
    assert (beta.name, beta.line, beta.location.column) == ("beta", 1, 19)
    assert all(e.element_type is ElementType.FUNCTION for e in elements)
    assert all(e.language == "rust" for e in elements)


def test_item_kinds():
    source = """\
pub struct Point { x: i32 }
enum Color { Red, Green }
pub trait Shape { fn area(&self) -> f64; }
mod util {}
type Id = u64;
const MAX: usize = 3;
static NAME: &str = "x";
static mut COUNTER: u32 = 0;
macro_rules! square { ($x:expr) => { $x * $x }; }
"""
    found = _by_name(_parse(source))
    assert found["Point"].element_type is ElementType.STRUCT
    assert found["Color"].element_type is ElementType.ENUM
    assert found["Shape"].element_type is ElementType.TRAIT
    assert found["area"].element_type is ElementType.METHOD
    assert found["util"].element_type is ElementType.MODULE
    assert found["Id"].element_type is ElementType.TYPE_ALIAS
    assert found["MAX"].element_type is ElementType.CONSTANT
    assert found["NAME"].element_type is ElementType.CONSTANT
    assert found["COUNTER"].element_type is ElementType.VARIABLE
    assert found["square"].element_type is ElementType.MACRO


def test_impl_methods_are_children():
    source = """\
struct Foo;

impl fmt::Display for Foo {
    fn fmt(&self, f: &mut fmt::Formatter) -> fmt::Result {
        write!(f, "foo")
    }
}
"""
    found = _by_name(_parse(source))
    impl = found["Display for Foo"]
    assert impl.element_type is ElementType.IMPLEMENTATION
    method = found["fmt"]
    assert method.element_type is ElementType.METHOD
    assert method.parent_id == impl.element_id
    assert impl.children_ids == (method.element_id,)


def test_doc_comments_skip_attributes():
    source = """\
/// Parses the config.
/// Second line.
#[inline]
pub fn parse() {}

/** Block docs. */
fn other() {}
"""
    found = _by_name(_parse(source))
    assert found["parse"].documentation == "Parses the config.\nSecond line."
    assert found["other"].documentation == "Block docs."


def test_strings_and_comments_are_ignored():
    source = """\
// fn commented() {}
fn real() {
    let s = "fn fake() {}";
}
"""
    assert [e.name for e in _parse(source)] == ["real"]


def test_code_snippet_covers_body():
    (element,) = _parse("fn body() {\n    1 + 1\n}\n")
    assert element.code_snippet == "fn body() {\n    1 + 1\n}"
    assert element.location.length == len(element.code_snippet)


def test_syntax_errors_do_not_raise():
    elements = _parse("fn broken( {\n struct Half")
    assert [e.name for e in elements] == ["broken", "Half"]
