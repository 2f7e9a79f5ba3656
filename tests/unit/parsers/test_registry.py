"""Tests for the parser registry."""

from __future__ import annotations

import pytest

from cke.db.models import ElementType, ParsedSymbol
from cke.errors import DuplicateLanguageError, ParseFailureError, UnsupportedLanguageError
from cke.parsers import Parser, ParserRegistry, default_registry


def _fake(tag="fake", exts=("fk",), shebangs=()):
    return Parser(tag, exts, lambda text: [ParsedSymbol(ElementType.OTHER, "x", 1)], shebangs=shebangs)


@pytest.fixture
def registry():
    return default_registry()


def test_default_languages(registry):
    assert registry.supported_languages() == ["go", "javascript", "python", "rust", "typescript"]
    assert "rs" in registry.supported_extensions()


def test_lookup_by_extension_is_case_insensitive(registry):
    assert registry.by_extension(".RS").language_tag == "rust"
    assert registry.by_extension("tsx").language_tag == "typescript"
    assert registry.by_extension("md") is None


def test_for_path_uses_extension(registry):
    assert registry.for_path("/a/b/main.go").language_tag == "go"
    assert registry.for_path("/a/b/notes.txt") is None


def test_for_path_falls_back_to_shebang(registry):
    assert registry.for_path("/usr/bin/tool", b"#!/usr/bin/env python3\nprint(1)\n").language_tag == "python"
    assert registry.for_path("/usr/bin/run", b"#!/usr/bin/node\n").language_tag == "javascript"
    assert registry.for_path("/usr/bin/other", b"#!/bin/sh\n") is None


def test_by_shebang_strips_versions(registry):
    assert registry.by_shebang(b"#!/usr/bin/python3.12").language_tag == "python"
    assert registry.by_shebang(b"no shebang") is None


def test_duplicate_language_raises():
    registry = ParserRegistry([_fake()])
    with pytest.raises(DuplicateLanguageError):
        registry.register(_fake(exts=("other",)))


def test_first_extension_claim_wins():
    registry = ParserRegistry([_fake("one", ("x",)), _fake("two", ("x",))])
    assert registry.by_extension("x").language_tag == "one"
    assert registry.by_language("two") is not None


def test_parse_unsupported_raises(registry):
    with pytest.raises(UnsupportedLanguageError):
        registry.parse("/a/readme.md", b"# hi")


def test_parse_dispatches(registry):
    elements = registry.parse("/a/lib.rs", b"fn main() {}")
    assert [(e.name, e.language, e.file_path) for e in elements] == [("main", "rust", "/a/lib.rs")]


def test_parse_snippet_shifts_lines(registry):
    elements = registry.parse_snippet("python", "def f():\n    pass\n", "https://d.test/p", line_offset=10)
    assert [(e.name, e.line) for e in elements] == [("f", 11)]


def test_parse_snippet_unknown_language(registry):
    with pytest.raises(UnsupportedLanguageError):
        registry.parse_snippet("cobol", "x", "https://d.test/p")


def test_internal_fault_becomes_parse_failure():
    def explode(text):
        raise ValueError("boom")

    registry = ParserRegistry([Parser("bad", ("bad",), explode)])
    with pytest.raises(ParseFailureError):
        registry.parse("/a/file.bad", b"anything")
