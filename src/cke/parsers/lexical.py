"""Lexical helpers shared by the regex-driven language parsers.

Masking replaces comments and string literals with spaces while keeping
newlines, so character offsets, line numbers and columns in the masked
text line up exactly with the original source.
"""

from __future__ import annotations

import bisect
import re
from dataclasses import dataclass

from cke.db.models import ParsedSymbol

# Comment / string literal patterns per language family.
C_LIKE_NOISE = re.compile(
    r"//[^\n]*"
    r"|/\*[\s\S]*?(?:\*/|\Z)"
    r'|"(?:\\.|[^"\\\n])*"'
    r"|'(?:\\.|[^'\\\n])*'"
    r"|`(?:\\.|[^`\\])*`"
)
RUST_NOISE = re.compile(
    r"//[^\n]*"
    r"|/\*[\s\S]*?(?:\*/|\Z)"
    r'|(?<![A-Za-z0-9_])b?r(#*)"[\s\S]*?"\1'
    r'|b?"(?:\\.|[^"\\])*"'
    r"|b?'(?:\\.|[^\\'\n])'"
    r"|b?'\\[^'\n]{1,10}'"
)
GO_NOISE = re.compile(
    r"//[^\n]*"
    r"|/\*[\s\S]*?(?:\*/|\Z)"
    r'|"(?:\\.|[^"\\\n])*"'
    r"|`[^`]*`"
    r"|'(?:\\.|[^'\\\n])+'"
)
PYTHON_NOISE = re.compile(
    r"#[^\n]*"
    r'|[rRbBuUfF]{0,2}"""[\s\S]*?(?:"""|\Z)'
    r"|[rRbBuUfF]{0,2}'''[\s\S]*?(?:'''|\Z)"
    r'|[rRbBuUfF]{0,2}"(?:\\.|[^"\\\n])*"'
    r"|[rRbBuUfF]{0,2}'(?:\\.|[^'\\\n])*'"
)

_NON_NEWLINE = re.compile(r"[^\n]")


def mask(text: str, noise: re.Pattern[str]) -> str:
    """Blank out every *noise* match, preserving newlines and offsets."""
    return noise.sub(lambda m: _NON_NEWLINE.sub(" ", m.group(0)), text)


class LineIndex:
    """Offset ↔ (line, column) conversion, both 1-based."""

    def __init__(self, text: str) -> None:
        self.text = text
        self._starts = [0]
        for m in re.finditer("\n", text):
            self._starts.append(m.end())

    def position(self, offset: int) -> tuple[int, int]:
        idx = bisect.bisect_right(self._starts, offset) - 1
        return idx + 1, offset - self._starts[idx] + 1

    def line_start(self, line: int) -> int:
        return self._starts[max(0, min(line - 1, len(self._starts) - 1))]


def match_braces(masked: str, open_char: str = "{", close_char: str = "}") -> dict[int, int]:
    """Map each opening brace offset to its closing brace offset.

    Unclosed braces map to ``len(masked) - 1``; stray closers are ignored.
    """
    pairs: dict[int, int] = {}
    stack: list[int] = []
    for i, ch in enumerate(masked):
        if ch == open_char:
            stack.append(i)
        elif ch == close_char and stack:
            pairs[stack.pop()] = i
    for start in stack:
        pairs[start] = len(masked) - 1
    return pairs


class DepthMap:
    """Brace nesting depth at any offset of a masked text."""

    def __init__(self, masked: str, lines: LineIndex) -> None:
        self._masked = masked
        self._lines = lines
        self._before: list[int] = []
        depth = 0
        for line in masked.split("\n"):
            self._before.append(depth)
            depth = max(0, depth + line.count("{") - line.count("}"))

    def at(self, offset: int) -> int:
        line, col = self._lines.position(offset)
        start = self._lines.line_start(line)
        prefix = self._masked[start : start + col - 1]
        return max(0, self._before[line - 1] + prefix.count("{") - prefix.count("}"))


def block_end(masked: str, start: int, braces: dict[int, int], stops: str = "{;") -> int:
    """Return the exclusive end offset of a declaration beginning at *start*.

    Scans for the first character in *stops*; an opening brace extends the
    declaration to its matching closer, anything else ends it right there.
    Parentheses are skipped so ``;`` inside argument lists is ignored.
    """
    paren = 0
    i = start
    n = len(masked)
    while i < n:
        ch = masked[i]
        if ch in "([":
            paren += 1
        elif ch in ")]":
            paren = max(0, paren - 1)
        elif paren == 0 and ch in stops:
            if ch == "{":
                return braces.get(i, n - 1) + 1
            return i + 1
        i += 1
    return n


@dataclass
class Span:
    symbol: ParsedSymbol
    start: int
    end: int


def assign_parents(spans: list[Span], containers: set) -> None:
    """Set ``symbol.parent`` to the innermost enclosing container span.

    Indices refer to positions in *spans*, which must already be the final
    list handed to ``link_elements``.
    """
    order = sorted(range(len(spans)), key=lambda i: (spans[i].start, -spans[i].end))
    stack: list[int] = []
    for i in order:
        span = spans[i]
        while stack and spans[stack[-1]].end <= span.start:
            stack.pop()
        for j in reversed(stack):
            if spans[j].symbol.element_type in containers:
                span.symbol.parent = j
                break
        stack.append(i)


def leading_doc(
    lines: list[str],
    line: int,
    prefixes: tuple[str, ...] = ("///",),
    block_start: str | None = "/**",
    skip: re.Pattern[str] | None = None,
) -> str | None:
    """Collect the doc comment immediately above 1-based *line*.

    Line comments starting with one of *prefixes* are gathered upward;
    otherwise a ``/** ... */`` block ending on the previous line is used.
    Lines matching *skip* (attributes, decorators) are stepped over.
    """
    idx = line - 2
    while idx >= 0 and skip is not None and skip.match(lines[idx]):
        idx -= 1
    if idx < 0:
        return None

    collected: list[str] = []
    while idx >= 0:
        stripped = lines[idx].strip()
        prefix = next((p for p in prefixes if stripped.startswith(p)), None)
        if prefix is None:
            break
        collected.append(stripped[len(prefix) :].strip())
        idx -= 1
    if collected:
        return "\n".join(reversed(collected)).strip() or None

    if block_start is None or not lines[idx].rstrip().endswith("*/"):
        return None
    block: list[str] = []
    while idx >= 0:
        block.append(lines[idx])
        if block_start in lines[idx]:
            break
        idx -= 1
    else:
        return None
    raw = "\n".join(reversed(block))
    raw = raw[raw.find(block_start) + len(block_start) :]
    raw = raw[: raw.rfind("*/")]
    cleaned = [re.sub(r"^\s*\*\s?", "", part).rstrip() for part in raw.splitlines()]
    return "\n".join(cleaned).strip() or None


def byte_length(text: str) -> int:
    return len(text.encode("utf-8", errors="replace"))


def make_span(
    source: str,
    index: LineIndex,
    lines: list[str],
    element_type,
    name: str,
    start: int,
    end: int,
    *,
    doc_prefixes: tuple[str, ...] = ("///",),
    doc_block: str | None = "/**",
    doc_skip: re.Pattern[str] | None = None,
) -> Span:
    """Build a Span for ``source[start:end]`` with its leading doc comment.

    Doc comments are only looked up for declarations that begin their line.
    """
    line, column = index.position(start)
    code = source[start:end]
    doc = None
    if not source[index.line_start(line) : start].strip():
        doc = leading_doc(lines, line, prefixes=doc_prefixes, block_start=doc_block, skip=doc_skip)
    return Span(
        symbol=ParsedSymbol(
            element_type=element_type,
            name=name,
            line=line,
            column=column,
            length=byte_length(code),
            documentation=doc,
            code=code,
        ),
        start=start,
        end=end,
    )
