"""Python parser: ``ast`` first, lexical indentation scan when the file does not compile."""

from __future__ import annotations

import ast
import re

from cke.db.models import ElementType, ParsedSymbol
from cke.parsers.lexical import PYTHON_NOISE, byte_length, mask

_CONSTANT_NAME_RE = re.compile(r"^_?[A-Z][A-Z0-9_]*$")
_DEF_RE = re.compile(
    r"^(?P<indent>[ \t]*)(?:async[ \t]+)?(?P<kw>def|class)[ \t]+(?P<name>[A-Za-z_]\w*)"
)
_ASSIGN_RE = re.compile(r"^(?P<name>[A-Za-z_]\w*)[ \t]*(?::[^=\n]+)?=(?!=)")


def parse_python(source: str) -> list[ParsedSymbol]:
    try:
        tree = ast.parse(source)
    except (SyntaxError, ValueError):
        return _parse_lexical(source)
    collector = _Collector(source)
    collector.visit(tree)
    return collector.symbols


class _Collector(ast.NodeVisitor):
    """Collect classes, functions, methods and module-level bindings."""

    def __init__(self, source: str) -> None:
        self.source = source
        self.symbols: list[ParsedSymbol] = []
        self._stack: list[tuple[int, ElementType]] = []

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def visit_ClassDef(self, node: ast.ClassDef) -> None:  # noqa: N802
        self._enter(node, ElementType.CLASS, node.name)

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:  # noqa: N802
        self._enter(node, self._function_kind(), node.name)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:  # noqa: N802
        self._enter(node, self._function_kind(), node.name)

    def visit_Assign(self, node: ast.Assign) -> None:  # noqa: N802
        if self._stack:
            return
        for target in node.targets:
            if isinstance(target, ast.Name):
                self._add(node, _binding_kind(target.id), target.id)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:  # noqa: N802
        if self._stack or not isinstance(node.target, ast.Name):
            return
        annotation = ast.unparse(node.annotation)
        if annotation.endswith("TypeAlias"):
            kind = ElementType.TYPE_ALIAS
        else:
            kind = _binding_kind(node.target.id)
        self._add(node, kind, node.target.id)

    def visit_TypeAlias(self, node: ast.AST) -> None:  # noqa: N802
        # `type X = ...` statements, 3.12+
        if not self._stack and isinstance(node.name, ast.Name):
            self._add(node, ElementType.TYPE_ALIAS, node.name.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _function_kind(self) -> ElementType:
        if self._stack and self._stack[-1][1] is ElementType.CLASS:
            return ElementType.METHOD
        return ElementType.FUNCTION

    def _enter(self, node: ast.AST, kind: ElementType, name: str) -> None:
        index = self._add(node, kind, name, documentation=ast.get_docstring(node))
        self._stack.append((index, kind))
        try:
            self.generic_visit(node)
        finally:
            self._stack.pop()

    def _add(
        self,
        node: ast.AST,
        kind: ElementType,
        name: str,
        documentation: str | None = None,
    ) -> int:
        code = ast.get_source_segment(self.source, node) or ""
        self.symbols.append(
            ParsedSymbol(
                element_type=kind,
                name=name,
                line=node.lineno,
                column=node.col_offset + 1,
                length=byte_length(code),
                documentation=documentation,
                code=code,
                parent=self._stack[-1][0] if self._stack else None,
            )
        )
        return len(self.symbols) - 1


def _binding_kind(name: str) -> ElementType:
    return ElementType.CONSTANT if _CONSTANT_NAME_RE.match(name) else ElementType.VARIABLE


# ------------------------------------------------------------------
# Lexical fallback
# ------------------------------------------------------------------


def _parse_lexical(source: str) -> list[ParsedSymbol]:
    """Recover defs and classes from a file ``ast`` rejected.

    Nesting follows indentation; a block ends at the next non-blank line
    indented at or left of its header.
    """
    masked_lines = mask(source, PYTHON_NOISE).split("\n")
    lines = source.split("\n")
    symbols: list[ParsedSymbol] = []
    open_blocks: list[tuple[int, int]] = []  # (indent width, symbol index)

    def close_until(width: int, line_no: int) -> None:
        while open_blocks and open_blocks[-1][0] >= width:
            _, idx = open_blocks.pop()
            _finish(symbols[idx], lines, line_no)

    for line_no, masked in enumerate(masked_lines, start=1):
        if not masked.strip():
            continue
        width = len(masked.expandtabs(4)) - len(masked.expandtabs(4).lstrip())
        close_until(width, line_no)
        m = _DEF_RE.match(masked)
        if m is not None:
            parent = open_blocks[-1][1] if open_blocks else None
            if m.group("kw") == "class":
                kind = ElementType.CLASS
            elif parent is not None and symbols[parent].element_type is ElementType.CLASS:
                kind = ElementType.METHOD
            else:
                kind = ElementType.FUNCTION
            symbols.append(
                ParsedSymbol(
                    element_type=kind,
                    name=m.group("name"),
                    line=line_no,
                    column=len(m.group("indent")) + 1,
                    parent=parent,
                )
            )
            open_blocks.append((width, len(symbols) - 1))
            continue
        if width == 0:
            a = _ASSIGN_RE.match(masked)
            if a is not None:
                symbols.append(
                    ParsedSymbol(
                        element_type=_binding_kind(a.group("name")),
                        name=a.group("name"),
                        line=line_no,
                        code=lines[line_no - 1],
                        length=byte_length(lines[line_no - 1]),
                    )
                )
    close_until(-1, len(lines) + 1)
    return symbols


def _finish(symbol: ParsedSymbol, lines: list[str], next_line: int) -> None:
    end = next_line - 1
    while end > symbol.line and not lines[end - 1].strip():
        end -= 1
    code = "\n".join(lines[symbol.line - 1 : end])
    symbol.code = code[symbol.column - 1 :]
    symbol.length = byte_length(symbol.code)
