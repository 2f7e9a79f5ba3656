"""Parser registry: language tag, extension and shebang lookups."""

from __future__ import annotations

import logging
import re
from pathlib import PurePosixPath

from cke.db.models import CodeElement
from cke.errors import DuplicateLanguageError, UnsupportedLanguageError
from cke.parsers.base import Parser

logger = logging.getLogger(__name__)

_SHEBANG_RE = re.compile(rb"^#!\s*(?P<cmd>\S+)(?:[ \t]+(?P<arg>[^\s]+))?")


class ParserRegistry:
    """Dispatch table from language tags, extensions and interpreters to parsers.

    Lookups are plain dict hits. When two parsers claim the same extension
    the first registration keeps it.
    """

    def __init__(self, parsers: list[Parser] | None = None) -> None:
        self._by_language: dict[str, Parser] = {}
        self._by_extension: dict[str, Parser] = {}
        self._by_shebang: dict[str, Parser] = {}
        for parser in parsers or []:
            self.register(parser)

    def register(self, parser: Parser) -> None:
        tag = parser.language_tag.lower()
        if tag in self._by_language:
            raise DuplicateLanguageError(f"A parser for language {tag!r} is already registered")
        self._by_language[tag] = parser
        for ext in parser.extensions:
            key = _normalize_extension(ext)
            if key in self._by_extension:
                logger.warning(
                    "Extension .%s already handled by %s; ignoring claim by %s",
                    key,
                    self._by_extension[key].language_tag,
                    tag,
                )
                continue
            self._by_extension[key] = parser
        for interpreter in parser.shebangs:
            self._by_shebang.setdefault(interpreter, parser)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def by_language(self, tag: str) -> Parser | None:
        return self._by_language.get(tag.lower())

    def by_extension(self, ext: str) -> Parser | None:
        return self._by_extension.get(_normalize_extension(ext))

    def by_shebang(self, first_line: bytes) -> Parser | None:
        """Resolve ``#!/usr/bin/env python3`` style lines to a parser."""
        m = _SHEBANG_RE.match(first_line)
        if m is None:
            return None
        cmd = PurePosixPath(m.group("cmd").decode("utf-8", errors="replace")).name
        if cmd == "env" and m.group("arg"):
            cmd = m.group("arg").decode("utf-8", errors="replace")
        cmd = re.sub(r"[\d.]+$", "", cmd)  # python3.12 -> python
        return self._by_shebang.get(cmd)

    def for_path(self, path: str, data: bytes = b"") -> Parser | None:
        """Parser for *path*: by extension, else by shebang when there is none."""
        suffix = PurePosixPath(path.replace("\\", "/")).suffix
        if suffix:
            return self.by_extension(suffix)
        first_line = data.split(b"\n", 1)[0]
        return self.by_shebang(first_line)

    def supported_languages(self) -> list[str]:
        return sorted(self._by_language)

    def supported_extensions(self) -> list[str]:
        return sorted(self._by_extension)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(self, path: str, data: bytes) -> list[CodeElement]:
        """Parse a file's bytes with the parser its path selects.

        Raises:
            UnsupportedLanguageError: No parser claims the extension or shebang.
            ParseFailureError: The selected parser faulted internally.
        """
        parser = self.for_path(path, data)
        if parser is None:
            raise UnsupportedLanguageError(f"No parser for {path}")
        return parser.parse(data, path)

    def parse_snippet(
        self, tag: str, text: str, file_path: str, line_offset: int = 0
    ) -> list[CodeElement]:
        """Parse a code block claimed to be *tag*, shifting lines by *line_offset*."""
        parser = self.by_language(tag)
        if parser is None:
            raise UnsupportedLanguageError(f"No parser for language {tag!r}")
        return parser.parse(text.encode("utf-8"), file_path, line_offset=line_offset)


def _normalize_extension(ext: str) -> str:
    return ext.lower().lstrip(".")
