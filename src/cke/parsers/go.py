"""Lexical Go parser.

Package-level declarations only: the package clause, funcs, methods, types,
and const/var (single and grouped). Methods are attached to their receiver
type when that type is declared in the same file.
"""

from __future__ import annotations

import re

from cke.db.models import ElementType, ParsedSymbol
from cke.parsers.lexical import (
    GO_NOISE,
    DepthMap,
    LineIndex,
    Span,
    block_end,
    make_span,
    mask,
    match_braces,
)

_IDENT = r"[A-Za-z_][A-Za-z0-9_]*"
_PACKAGE_RE = re.compile(r"(?m)^[ \t]*package\s+(?P<name>" + _IDENT + r")")
_FUNC_RE = re.compile(
    r"(?m)^[ \t]*func\s*(?:\((?P<receiver>[^)]*)\)\s*)?(?P<name>" + _IDENT + r")\s*(?:\[[^\]]*\]\s*)?(?=\()"
)
_TYPE_RE = re.compile(r"(?m)^[ \t]*type\s+(?P<name>" + _IDENT + r")\b")
_DECL_RE = re.compile(r"(?m)^[ \t]*(?P<kw>const|var)\s+(?P<name>" + _IDENT + r")\b")
_GROUP_RE = re.compile(r"(?m)^[ \t]*(?P<kw>const|var|type)\s*\(")
_GROUP_ENTRY_RE = re.compile(r"(?m)^[ \t]*(?P<name>" + _IDENT + r")\b")
_TYPE_DECLS = {ElementType.STRUCT, ElementType.INTERFACE, ElementType.TYPE_ALIAS}


def parse_go(source: str) -> list[ParsedSymbol]:
    masked = mask(source, GO_NOISE)
    index = LineIndex(source)
    braces = match_braces(masked)
    parens = match_braces(masked, "(", ")")
    depth = DepthMap(masked, index)
    lines = source.splitlines()

    def span(kind: ElementType, name: str, start: int, end: int) -> Span:
        start += len(masked[start:end]) - len(masked[start:end].lstrip())
        return make_span(
            source, index, lines, kind, name, start, end, doc_prefixes=("//",), doc_block=None
        )

    spans: list[Span] = []
    receivers: dict[int, str] = {}

    package = _PACKAGE_RE.search(masked)
    if package is not None:
        spans.append(
            span(ElementType.MODULE, package.group("name"), package.start(), _line_end(masked, package.end()))
        )

    for m in _FUNC_RE.finditer(masked):
        if depth.at(m.start()) != 0:
            continue
        end = block_end(masked, m.end(), braces, stops="{\n")
        receiver = m.group("receiver")
        if receiver is None:
            spans.append(span(ElementType.FUNCTION, m.group("name"), m.start(), end))
            continue
        method = span(ElementType.METHOD, m.group("name"), m.start(), end)
        spans.append(method)
        receiver_type = _receiver_type(receiver)
        if receiver_type:
            receivers[id(method)] = receiver_type

    for m in _TYPE_RE.finditer(masked):
        if depth.at(m.start()) != 0:
            continue
        spans.append(_type_span(masked, braces, span, m.group("name"), m.start(), m.end()))

    for m in _DECL_RE.finditer(masked):
        if depth.at(m.start()) != 0:
            continue
        kind = ElementType.CONSTANT if m.group("kw") == "const" else ElementType.VARIABLE
        spans.append(span(kind, m.group("name"), m.start(), block_end(masked, m.end(), braces, stops="{\n")))

    for m in _GROUP_RE.finditer(masked):
        if depth.at(m.start()) != 0:
            continue
        open_paren = m.end() - 1
        close = parens.get(open_paren, len(masked) - 1)
        keyword = m.group("kw")
        for entry in _GROUP_ENTRY_RE.finditer(masked, open_paren + 1, close):
            between = masked[open_paren + 1 : entry.start()]
            if depth.at(entry.start()) != 0 or between.count("(") != between.count(")"):
                continue
            if keyword == "type":
                spans.append(_type_span(masked, braces, span, entry.group("name"), entry.start(), entry.end()))
                continue
            kind = ElementType.CONSTANT if keyword == "const" else ElementType.VARIABLE
            end = min(block_end(masked, entry.end(), braces, stops="{\n"), close)
            spans.append(span(kind, entry.group("name"), entry.start(), end))

    spans.sort(key=lambda s: (s.start, -s.end))
    types = {
        s.symbol.name: i for i, s in enumerate(spans) if s.symbol.element_type in _TYPE_DECLS
    }
    for s in spans:
        receiver_type = receivers.get(id(s))
        if receiver_type is not None and receiver_type in types:
            s.symbol.parent = types[receiver_type]
    return [s.symbol for s in spans]


def _type_span(masked, braces, span, name, start, after_name) -> Span:
    rest = masked[after_name:]
    rest = re.sub(r"^\s*\[[^\]]*\]", "", rest).lstrip()
    if rest.startswith("="):
        kind = ElementType.TYPE_ALIAS
    elif rest.startswith("struct"):
        kind = ElementType.STRUCT
    elif rest.startswith("interface"):
        kind = ElementType.INTERFACE
    else:
        kind = ElementType.TYPE_ALIAS  # defined type: `type Celsius float64`
    return span(kind, name, start, block_end(masked, after_name, braces, stops="{\n"))


def _line_end(masked: str, start: int) -> int:
    end = masked.find("\n", start)
    return len(masked) if end < 0 else end


def _receiver_type(receiver: str) -> str | None:
    """``(s *Server[T])`` → ``Server``."""
    parts = receiver.strip().split()
    if not parts:
        return None
    type_part = re.sub(r"\[.*$", "", parts[-1].lstrip("*"))
    return type_part or None
