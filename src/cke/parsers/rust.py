"""Lexical Rust parser.

Items are found with offset-based regex scans over masked source, so
several items on one line (``pub fn a() {} pub fn b() {}``) are all seen.
Functions nested directly inside ``impl`` or ``trait`` blocks become methods.
"""

from __future__ import annotations

import re

from cke.db.models import ElementType, ParsedSymbol
from cke.parsers.lexical import (
    RUST_NOISE,
    LineIndex,
    Span,
    assign_parents,
    block_end,
    make_span,
    mask,
    match_braces,
)

_VIS = r"(?:\bpub(?:\s*\([^)]*\))?\s+)?"
_IDENT = r"(?P<name>[A-Za-z_][A-Za-z0-9_]*)"

_ITEM_PATTERNS: list[tuple[ElementType, re.Pattern[str]]] = [
    (
        ElementType.FUNCTION,
        re.compile(
            _VIS
            + r"(?:(?:default|const|async|unsafe|extern(?:\s+\"[^\"]*\")?)\s+)*\bfn\s+"
            + _IDENT
        ),
    ),
    (ElementType.STRUCT, re.compile(_VIS + r"\b(?:struct|union)\s+" + _IDENT)),
    (ElementType.ENUM, re.compile(_VIS + r"\benum\s+" + _IDENT)),
    (ElementType.TRAIT, re.compile(_VIS + r"(?:unsafe\s+)?(?:auto\s+)?\btrait\s+" + _IDENT)),
    (ElementType.MODULE, re.compile(_VIS + r"\bmod\s+" + _IDENT)),
    (ElementType.TYPE_ALIAS, re.compile(_VIS + r"\btype\s+" + _IDENT + r"\s*(?:<[^;=]*>)?\s*=")),
    (ElementType.CONSTANT, re.compile(_VIS + r"\bconst\s+" + _IDENT + r"\s*:")),
    (ElementType.VARIABLE, re.compile(_VIS + r"\bstatic\s+(?P<mut>mut\s+)?" + _IDENT + r"\s*:")),
    (ElementType.MACRO, re.compile(r"(?:#\[macro_export\]\s*)?\bmacro_rules!\s*" + _IDENT)),
]
_IMPL_RE = re.compile(r"(?:\bunsafe\s+)?\bimpl\b\s*(?:<[^{;]*?>)?\s*(?P<head>[^{;]+?)\s*\{")
_ATTRIBUTE_RE = re.compile(r"^\s*#!?\[")
_CONTAINERS = {
    ElementType.IMPLEMENTATION,
    ElementType.TRAIT,
    ElementType.MODULE,
    ElementType.FUNCTION,
    ElementType.METHOD,
}


def parse_rust(source: str) -> list[ParsedSymbol]:
    masked = mask(source, RUST_NOISE)
    index = LineIndex(source)
    braces = match_braces(masked)
    lines = source.splitlines()

    spans: list[Span] = []
    for element_type, pattern in _ITEM_PATTERNS:
        for m in pattern.finditer(masked):
            kind = element_type
            if kind is ElementType.VARIABLE and not m.group("mut"):
                kind = ElementType.CONSTANT  # immutable static
            end = block_end(masked, m.end(), braces)
            spans.append(_span(source, index, lines, kind, m.group("name"), m.start(), end))

    for m in _IMPL_RE.finditer(masked):
        before = masked[max(0, m.start() - 64) : m.start()].rstrip()
        if before.endswith(("->", "(", ",", ":", "<", "=", "&")):
            continue  # `impl Trait` in type position
        name = _impl_name(m.group("head"))
        brace = m.end() - 1
        end = braces.get(brace, len(masked) - 1) + 1
        spans.append(_span(source, index, lines, ElementType.IMPLEMENTATION, name, m.start(), end))

    spans.sort(key=lambda s: (s.start, -s.end))
    assign_parents(spans, _CONTAINERS)
    for span in spans:
        sym = span.symbol
        if sym.element_type is ElementType.FUNCTION and sym.parent is not None:
            parent_type = spans[sym.parent].symbol.element_type
            if parent_type in (ElementType.IMPLEMENTATION, ElementType.TRAIT):
                sym.element_type = ElementType.METHOD
    return [s.symbol for s in spans]


def _span(source, index, lines, element_type, name, start, end) -> Span:
    return make_span(
        source, index, lines, element_type, name, start, end, doc_skip=_ATTRIBUTE_RE
    )


def _impl_name(head: str) -> str:
    """``Display for Foo<T> where ...`` → ``Display for Foo``; ``Foo<T>`` → ``Foo``."""
    head = re.split(r"\bwhere\b", head)[0].strip()
    trait = None
    if re.search(r"\bfor\b", head):
        trait, head = (part.strip() for part in re.split(r"\bfor\b", head, maxsplit=1))
    target = _last_ident(head)
    if trait:
        trait_name = _last_ident(trait)
        if trait_name and target:
            return f"{trait_name} for {target}"
    return target or "impl"


def _last_ident(text: str) -> str | None:
    cleaned = re.sub(r"<[^<>]*>", "", text)
    cleaned = re.sub(r"<[^<>]*>", "", cleaned)
    matches = re.findall(r"[A-Za-z_][A-Za-z0-9_]*", cleaned)
    matches = [m for m in matches if m not in {"mut", "dyn", "impl"}]
    return matches[-1] if matches else None
