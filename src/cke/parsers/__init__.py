"""Language parsers and the registry that dispatches between them."""

from cke.parsers.base import Parser, decode_source
from cke.parsers.go import parse_go
from cke.parsers.javascript import parse_javascript, parse_typescript
from cke.parsers.python import parse_python
from cke.parsers.registry import ParserRegistry
from cke.parsers.rust import parse_rust

PYTHON = Parser("python", ("py", "pyi", "pyw"), parse_python, shebangs=("python",))
RUST = Parser("rust", ("rs",), parse_rust)
JAVASCRIPT = Parser(
    "javascript", ("js", "mjs", "cjs", "jsx"), parse_javascript, shebangs=("node", "nodejs", "bun")
)
TYPESCRIPT = Parser(
    "typescript", ("ts", "mts", "cts", "tsx"), parse_typescript, shebangs=("ts-node", "deno", "tsx")
)
GO = Parser("go", ("go",), parse_go)

BUILTIN_PARSERS = (PYTHON, RUST, JAVASCRIPT, TYPESCRIPT, GO)


def default_registry() -> ParserRegistry:
    """A fresh registry holding every built-in parser."""
    return ParserRegistry(list(BUILTIN_PARSERS))


__all__ = [
    "BUILTIN_PARSERS",
    "Parser",
    "ParserRegistry",
    "decode_source",
    "default_registry",
]
