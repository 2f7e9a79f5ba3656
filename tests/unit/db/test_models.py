"""Tests for element construction, ids, tree rebuilding and filters."""

from __future__ import annotations

import pytest

from cke.db.models import (
    MAX_SNIPPET_CHARS,
    CodeElement,
    ElementType,
    FileRecord,
    ParsedSymbol,
    SearchFilters,
    build_tree,
    link_elements,
    make_element_id,
)


def _sym(name, line, kind=ElementType.FUNCTION, column=1, parent=None, code=""):
    return ParsedSymbol(kind, name, line=line, column=column, parent=parent, code=code)


# ------------------------------------------------------------------
# Ids
# ------------------------------------------------------------------

def test_element_id_is_deterministic():
    a = make_element_id("/a.rs", "rust", 3, 1, "alpha")
    assert a == make_element_id("/a.rs", "rust", 3, 1, "alpha")
    assert a != make_element_id("/a.rs", "rust", 3, 2, "alpha")
    assert a != make_element_id("/b.rs", "rust", 3, 1, "alpha")


# ------------------------------------------------------------------
# link_elements
# ------------------------------------------------------------------

def test_link_elements_orders_by_position():
    elements = link_elements([_sym("b", 5), _sym("a", 1)], "/x.py", "python")
    assert [e.name for e in elements] == ["a", "b"]
    assert all(e.file_path == "/x.py" for e in elements)


def test_link_elements_sets_parent_and_children():
    symbols = [_sym("Foo", 1, ElementType.CLASS), _sym("bar", 2, ElementType.METHOD, column=5, parent=0)]
    cls, method = link_elements(symbols, "/x.py", "python")
    assert method.parent_id == cls.element_id
    assert cls.children_ids == (method.element_id,)


def test_link_elements_drops_identity_collisions():
    elements = link_elements([_sym("dup", 1), _sym("dup", 1)], "/x.py", "python")
    assert len(elements) == 1


def test_link_elements_names_anonymous_constructs():
    (element,) = link_elements([_sym("  ", 4, column=2)], "/x.js", "javascript")
    assert element.name == "<anonymous@4:2>"


def test_link_elements_caps_snippet():
    (element,) = link_elements([_sym("big", 1, code="x" * (MAX_SNIPPET_CHARS + 10))], "/x.py", "python")
    assert len(element.code_snippet) == MAX_SNIPPET_CHARS


def test_build_tree_rebuilds_hierarchy():
    symbols = [
        _sym("Foo", 1, ElementType.CLASS),
        _sym("bar", 2, ElementType.METHOD, parent=0),
        _sym("top", 9),
    ]
    roots = build_tree(link_elements(symbols, "/x.py", "python"))
    assert [r.element.name for r in roots] == ["Foo", "top"]
    assert [c.element.name for c in roots[0].children] == ["bar"]


# ------------------------------------------------------------------
# Serialization
# ------------------------------------------------------------------

def test_code_element_dict_round_trip():
    (element,) = link_elements([_sym("alpha", 1, code="fn alpha() {}")], "/a.rs", "rust")
    data = element.to_dict()
    assert data["element_type"] == "function"
    assert CodeElement.from_dict(data) == element


def test_file_record_dict_round_trip():
    record = FileRecord("/a.rs", "rust", 10, 1.5, "abc", ["e1"])
    assert FileRecord.from_dict(record.to_dict()) == record


# ------------------------------------------------------------------
# SearchFilters
# ------------------------------------------------------------------

def test_filters_from_mapping_accepts_scalars():
    filters = SearchFilters.from_mapping({"language": "Python", "element_type": "class"})
    assert filters.language == ("python",)
    assert filters.element_type == (ElementType.CLASS,)


def test_filters_from_mapping_empty():
    assert SearchFilters.from_mapping(None) == SearchFilters()


def test_filters_reject_unknown_keys():
    with pytest.raises(ValueError, match="Unknown search filter"):
        SearchFilters.from_mapping({"colour": "red"})


def test_filters_reject_bad_source():
    with pytest.raises(ValueError, match="source"):
        SearchFilters.from_mapping({"source": "cloud"})


def test_filters_reject_bad_element_type():
    with pytest.raises(ValueError):
        SearchFilters.from_mapping({"element_type": "widget"})
