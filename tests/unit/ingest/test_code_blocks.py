"""Tests for code block extraction and block-to-element conversion."""

from __future__ import annotations

from bs4 import BeautifulSoup

from cke.db.models import ElementType
from cke.ingest.code_blocks import (
    CodeBlock,
    blocks_to_elements,
    extract_fenced_blocks,
    extract_html_blocks,
    infer_language,
    normalize_language,
)
from cke.parsers import default_registry

URL = "https://docs.test/guide"


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


# ------------------------------------------------------------------
# Language tags
# ------------------------------------------------------------------

def test_normalize_language_aliases():
    assert normalize_language("PY") == "python"
    assert normalize_language("golang") == "go"
    assert normalize_language("rust") == "rust"
    assert normalize_language("") is None
    assert normalize_language(None) is None


def test_infer_language():
    assert infer_language("fn main() {\n    let mut x = 1;\n}") == "rust"
    assert infer_language("package main\n\nfunc main() {}") == "go"
    assert infer_language("def f(x):\n    return x") == "python"
    assert infer_language("interface A { b: string }") == "typescript"
    assert infer_language("const x = () => 1;") == "javascript"
    assert infer_language("hello world") is None


# ------------------------------------------------------------------
# Extraction
# ------------------------------------------------------------------

def test_pre_code_with_language_class():
    blocks = extract_html_blocks(_soup('<pre><code class="language-python">def parse(): pass</code></pre>'))
    assert blocks == [CodeBlock("python", "def parse(): pass")]


def test_pre_with_data_lang_and_lang_class():
    html = '<pre data-lang="rs">fn a() {}</pre><pre class="lang-js">let x = 1;</pre>'
    assert [b.language for b in extract_html_blocks(_soup(html))] == ["rust", "javascript"]


def test_standalone_code_needs_hint_and_newline():
    html = (
        '<p>Use <code>parse()</code> here.</p>'
        '<code class="language-go">package main\nfunc main() {}</code>'
    )
    blocks = extract_html_blocks(_soup(html))
    assert [b.language for b in blocks] == ["go"]


def test_fenced_blocks():
    text = "Intro\n```py\ndef f():\n    pass\n```\nmiddle\n~~~\nfn g() {}\n~~~\n"
    blocks = extract_fenced_blocks(text)
    assert blocks == [CodeBlock("python", "def f():\n    pass\n"), CodeBlock(None, "fn g() {}\n")]


# ------------------------------------------------------------------
# Blocks -> elements
# ------------------------------------------------------------------

def test_blocks_parsed_at_url_with_cumulative_lines():
    blocks = [
        CodeBlock("python", "def first():\n    pass"),
        CodeBlock("rust", "fn second() {}"),
    ]
    elements = blocks_to_elements(blocks, URL, default_registry())
    assert [(e.name, e.language, e.line) for e in elements] == [
        ("first", "python", 1),
        ("second", "rust", 3),
    ]
    assert all(e.file_path == URL for e in elements)


def test_untagged_block_language_is_inferred():
    (element,) = blocks_to_elements([CodeBlock(None, "fn guess() {}")], URL, default_registry())
    assert (element.name, element.language) == ("guess", "rust")


def test_unparsable_block_becomes_other_element():
    blocks = [CodeBlock("shell", "ls -la\necho hi")]
    (element,) = blocks_to_elements(blocks, URL, default_registry())
    assert element.element_type is ElementType.OTHER
    assert element.name == "code block 1"
    assert element.language == "shell"
    assert element.code_snippet == "ls -la\necho hi"


def test_unknown_untagged_block_is_text():
    (element,) = blocks_to_elements([CodeBlock(None, "just words")], URL, default_registry())
    assert element.language == "text"


def test_blank_blocks_are_skipped():
    assert blocks_to_elements([CodeBlock("python", "\n\n")], URL, default_registry()) == []
