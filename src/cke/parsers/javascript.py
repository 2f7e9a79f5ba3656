"""Lexical JavaScript / TypeScript parser.

TypeScript is a superset here: the same scan runs for both languages and
TypeScript additionally recognises interfaces, type aliases, enums and
namespaces.
"""

from __future__ import annotations

import re

from cke.db.models import ElementType, ParsedSymbol
from cke.parsers.lexical import (
    C_LIKE_NOISE,
    DepthMap,
    LineIndex,
    Span,
    assign_parents,
    block_end,
    make_span,
    mask,
    match_braces,
)

_ID = r"(?P<name>[A-Za-z_$][\w$]*)"
_EXPORT = r"(?:\bexport\s+(?:default\s+)?)?(?:\bdeclare\s+)?"

_FUNCTION_RE = re.compile(_EXPORT + r"(?:\basync\s+)?\bfunction\b\s*\*?\s*" + _ID)
_CLASS_RE = re.compile(_EXPORT + r"(?:\babstract\s+)?\bclass\s+" + _ID)
_ARROW_RE = re.compile(
    _EXPORT
    + r"\b(?:const|let|var)\s+"
    + _ID
    + r"\s*(?::[^=;]+)?=\s*(?:async\s+)?"
    r"(?:function\b|(?:<[^>]*>\s*)?\([^()]*(?:\([^()]*\)[^()]*)*\)\s*(?::[^=;{]+)?=>|[A-Za-z_$][\w$]*\s*=>)"
)
_BINDING_RE = re.compile(_EXPORT + r"\b(?P<kw>const|let|var)\s+" + _ID)
_METHOD_RE = re.compile(
    r"(?m)^[ \t]*(?:(?:public|private|protected|static|async|readonly|abstract|override|get|set)\s+)*"
    r"\*?\s*(?P<name>#?[A-Za-z_$][\w$]*)\s*(?:<[^>]*>)?\s*\([^)]*\)\s*(?::[^{;]+)?\{"
)
_TS_PATTERNS: list[tuple[ElementType, re.Pattern[str]]] = [
    (ElementType.INTERFACE, re.compile(_EXPORT + r"\binterface\s+" + _ID)),
    (ElementType.TYPE_ALIAS, re.compile(_EXPORT + r"\btype\s+" + _ID + r"\s*(?:<[^=;]*>)?\s*=")),
    (ElementType.ENUM, re.compile(_EXPORT + r"(?:\bconst\s+)?\benum\s+" + _ID)),
    (
        ElementType.MODULE,
        re.compile(_EXPORT + r"\b(?:namespace|module)\s+(?P<name>[A-Za-z_$][\w$.]*)\s*\{"),
    ),
]
_NOT_METHODS = {"if", "for", "while", "switch", "catch", "function", "return", "with"}
_DECORATOR_RE = re.compile(r"^\s*@")
_CONTAINERS = {ElementType.CLASS, ElementType.INTERFACE, ElementType.MODULE}


def parse_javascript(source: str) -> list[ParsedSymbol]:
    return _parse(source, typescript=False)


def parse_typescript(source: str) -> list[ParsedSymbol]:
    return _parse(source, typescript=True)


def _parse(source: str, typescript: bool) -> list[ParsedSymbol]:
    masked = mask(source, C_LIKE_NOISE)
    index = LineIndex(source)
    braces = match_braces(masked)
    depth = DepthMap(masked, index)
    lines = source.splitlines()

    def span(kind: ElementType, name: str, start: int, end: int) -> Span:
        return make_span(
            source, index, lines, kind, name, start, end,
            doc_prefixes=(), doc_block="/**", doc_skip=_DECORATOR_RE,
        )

    spans: list[Span] = []
    taken: set[int] = set()

    for m in _FUNCTION_RE.finditer(masked):
        spans.append(span(ElementType.FUNCTION, m.group("name"), m.start(), block_end(masked, m.end(), braces)))
        taken.add(m.start("name"))

    for m in _CLASS_RE.finditer(masked):
        end = block_end(masked, m.end(), braces)
        spans.append(span(ElementType.CLASS, m.group("name"), m.start(), end))
        spans.extend(_methods(masked, m.end(), end, braces, depth, span))

    for m in _ARROW_RE.finditer(masked):
        if m.start("name") in taken:
            continue
        end = _statement_end(masked, m.end(), braces)
        spans.append(span(ElementType.FUNCTION, m.group("name"), m.start(), end))
        taken.add(m.start("name"))

    for m in _BINDING_RE.finditer(masked):
        if m.start("name") in taken or depth.at(m.start()) != 0:
            continue
        if masked[: m.start()].rstrip().endswith("("):
            continue  # loop binding
        kind = ElementType.CONSTANT if m.group("kw") == "const" else ElementType.VARIABLE
        end = _statement_end(masked, m.end(), braces)
        spans.append(span(kind, m.group("name"), m.start(), end))

    if typescript:
        for kind, pattern in _TS_PATTERNS:
            for m in pattern.finditer(masked):
                if kind is ElementType.TYPE_ALIAS:
                    end = _statement_end(masked, m.end(), braces)
                else:
                    end = block_end(masked, m.end(), braces)
                spans.append(span(kind, m.group("name"), m.start(), end))

    spans.sort(key=lambda s: (s.start, -s.end))
    assign_parents(spans, _CONTAINERS)
    return [s.symbol for s in spans]


def _methods(masked, body_start, body_end, braces, depth, span) -> list[Span]:
    """Methods declared directly in the class body spanning the given offsets."""
    brace = masked.find("{", body_start, body_end)
    if brace < 0:
        return []
    class_depth = depth.at(brace) + 1
    found: list[Span] = []
    for m in _METHOD_RE.finditer(masked, brace + 1, body_end):
        name = m.group("name")
        if name in _NOT_METHODS or depth.at(m.start("name")) != class_depth:
            continue
        start = m.start("name")
        line_start = masked.rfind("\n", 0, start) + 1
        start = line_start + (len(masked[line_start:start]) - len(masked[line_start:start].lstrip()))
        end = braces.get(m.end() - 1, len(masked) - 1) + 1
        found.append(span(ElementType.METHOD, name, start, end))
    return found


def _statement_end(masked: str, start: int, braces: dict[int, int]) -> int:
    """End of an expression statement: the first ``;`` or newline at nesting 0."""
    i = start
    n = len(masked)
    nesting = 0
    while i < n:
        ch = masked[i]
        if ch == "{" and i in braces:
            i = braces[i] + 1
            continue
        if ch in "([":
            nesting += 1
        elif ch in ")]":
            nesting = max(0, nesting - 1)
        elif nesting == 0 and ch == ";":
            return i + 1
        elif nesting == 0 and ch == "\n" and masked[start:i].strip():
            rest = masked[i:].lstrip()
            if not rest.startswith((".", "?", ":", "+", "-", "*", "|", "&", "=>")):
                return i
        i += 1
    return n
