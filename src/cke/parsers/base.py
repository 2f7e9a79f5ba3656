"""Parser capability records.

A parser is plain data: a language tag, the file extensions and shebang
interpreters it claims, and a function turning source text into
``ParsedSymbol`` drafts. ``Parser.parse()`` adds decoding, ids and links.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable

from cke.db.models import CodeElement, ParsedSymbol, link_elements
from cke.errors import ParseFailureError

SourceParser = Callable[[str], list[ParsedSymbol]]


@dataclass(frozen=True)
class Parser:
    """One language's parsing capability.

    Attributes:
        language_tag: Canonical lowercase tag, unique within a registry.
        extensions: File extensions without the leading dot, lowercase.
        parse_source: Function from decoded source to symbol drafts.
        shebangs: Interpreter names recognised on a ``#!`` first line.
    """

    language_tag: str
    extensions: tuple[str, ...]
    parse_source: SourceParser
    shebangs: tuple[str, ...] = ()

    def parse(self, data: bytes, file_path: str = "", line_offset: int = 0) -> list[CodeElement]:
        """Parse *data* into CodeElements located in *file_path*.

        Syntax errors never raise; a parser-internal fault raises
        ``ParseFailureError`` so the caller can keep the file unparsed.
        """
        text = decode_source(data)
        try:
            symbols = self.parse_source(text)
        except (RecursionError, ValueError, IndexError, KeyError) as exc:
            raise ParseFailureError(
                f"{self.language_tag} parser failed on {file_path or '<memory>'}: {exc}"
            ) from exc
        if line_offset:
            symbols = [replace(s, line=s.line + line_offset) for s in symbols]
        return link_elements(symbols, file_path, self.language_tag)


def decode_source(data: bytes) -> str:
    """UTF-8 decode with replacement; a leading BOM is dropped."""
    text = data.decode("utf-8", errors="replace")
    return text[1:] if text.startswith("\ufeff") else text
