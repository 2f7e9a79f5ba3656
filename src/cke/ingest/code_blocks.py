"""Code block extraction from fetched pages.

Blocks come from ``<pre>``/``<code>`` elements (language taken from
``language-*`` / ``lang-*`` classes or ``data-lang``) and from Markdown
fences inside the page text. Each block is parsed with the registry and
its elements are placed at the URL with cumulative line offsets.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup, Tag

from cke.db.models import CodeElement, ElementType, ParsedSymbol, link_elements
from cke.errors import CKEError
from cke.parsers.registry import ParserRegistry

logger = logging.getLogger(__name__)

_ALIASES = {
    "py": "python",
    "python3": "python",
    "py3": "python",
    "js": "javascript",
    "jsx": "javascript",
    "node": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "rs": "rust",
    "golang": "go",
}
_CLASS_LANG_RE = re.compile(r"^(?:language|lang)-(?P<tag>[\w+#-]+)$", re.IGNORECASE)
_FENCE_RE = re.compile(
    r"^(?P<indent>[ \t]*)(?P<fence>`{3,}|~{3,})[ \t]*(?P<tag>[\w+#-]*)[^\n]*\n(?P<body>.*?)^(?P=indent)(?P=fence)[ \t]*$",
    re.MULTILINE | re.DOTALL,
)

# (language, pattern) checked in order when a block carries no usable tag.
_INFERENCE: list[tuple[str, re.Pattern[str]]] = [
    ("rust", re.compile(r"\bfn\s+\w+\s*(?:<[^>]*>)?\s*\(|\blet\s+mut\b|\bimpl\b[^{]*\{|\bpub\s+(?:fn|struct|enum)\b")),
    ("go", re.compile(r"^\s*package\s+\w+\s*$|\bfunc\s+(?:\([^)]*\)\s*)?\w+\s*\(", re.MULTILINE)),
    ("python", re.compile(r"^\s*(?:async\s+)?def\s+\w+\s*\(.*\)\s*(?:->[^:]+)?:|^\s*class\s+\w+[^{]*:\s*$|^\s*(?:from\s+\S+\s+)?import\s+\w+", re.MULTILINE)),
    ("typescript", re.compile(r"\binterface\s+\w+\s*\{|:\s*(?:string|number|boolean)\b|\btype\s+\w+\s*=")),
    ("javascript", re.compile(r"\bfunction\s*\w*\s*\(|\b(?:const|let|var)\s+\w+\s*=|=>")),
]


@dataclass
class CodeBlock:
    language: str | None
    code: str


def normalize_language(tag: str | None) -> str | None:
    """Lowercase a fence/class tag and map common aliases to canonical tags."""
    if not tag:
        return None
    tag = tag.strip().lower()
    return _ALIASES.get(tag, tag) or None


def infer_language(code: str) -> str | None:
    """Guess the language of an untagged block from its content."""
    for language, pattern in _INFERENCE:
        if pattern.search(code):
            return language
    return None


# ------------------------------------------------------------------
# Extraction
# ------------------------------------------------------------------


def extract_html_blocks(soup: BeautifulSoup) -> list[CodeBlock]:
    """Collect ``<pre>`` blocks and standalone ``<code>`` blocks with a language hint."""
    blocks: list[CodeBlock] = []
    for pre in soup.find_all("pre"):
        code_tag = pre.find("code")
        tag = _language_hint(code_tag) if isinstance(code_tag, Tag) else None
        tag = tag or _language_hint(pre)
        text = (code_tag or pre).get_text()
        if text.strip():
            blocks.append(CodeBlock(normalize_language(tag), text))
    for code_tag in soup.find_all("code"):
        if code_tag.find_parent("pre") is not None:
            continue
        tag = _language_hint(code_tag)
        text = code_tag.get_text()
        # Inline `code` without a language hint is prose, not a block.
        if tag and "\n" in text.strip():
            blocks.append(CodeBlock(normalize_language(tag), text))
    return blocks


def extract_fenced_blocks(text: str) -> list[CodeBlock]:
    """Collect Markdown fenced blocks (``` or ~~~) from plain text."""
    return [
        CodeBlock(normalize_language(m.group("tag")), m.group("body"))
        for m in _FENCE_RE.finditer(text)
        if m.group("body").strip()
    ]


def _language_hint(tag: Tag) -> str | None:
    for cls in tag.get("class") or []:
        m = _CLASS_LANG_RE.match(cls)
        if m:
            return m.group("tag")
    for attr in ("data-lang", "data-language", "lang"):
        value = tag.get(attr)
        if isinstance(value, str) and value.strip():
            return value
    return None


# ------------------------------------------------------------------
# Blocks → elements
# ------------------------------------------------------------------


def blocks_to_elements(
    blocks: list[CodeBlock], url: str, registry: ParserRegistry
) -> list[CodeElement]:
    """Parse each block with its language's parser and place elements at *url*.

    Line numbers are cumulative: block N starts after the lines of blocks
    0..N-1, so element identities stay unique within the page. A block that
    yields no elements becomes one ``other`` element holding the snippet.
    """
    elements: list[CodeElement] = []
    offset = 0
    for number, block in enumerate(blocks, start=1):
        code = block.code.strip("\n")
        if not code.strip():
            continue
        language = block.language
        if language is None or registry.by_language(language) is None:
            language = infer_language(code) or language or "text"
        parsed: list[CodeElement] = []
        if registry.by_language(language) is not None:
            try:
                parsed = registry.parse_snippet(language, code, url, line_offset=offset)
            except CKEError as exc:
                logger.info("[%s] code block %d of %s not parsed: %s", exc.kind.value, number, url, exc)
        if not parsed:
            parsed = link_elements(
                [
                    ParsedSymbol(
                        element_type=ElementType.OTHER,
                        name=f"code block {number}",
                        line=offset + 1,
                        length=len(code.encode("utf-8")),
                        code=code,
                    )
                ],
                url,
                language,
            )
        elements.extend(parsed)
        offset += code.count("\n") + 1
    return elements
