"""Error taxonomy for the code knowledge engine.

Every fault the engine reports carries one ``ErrorKind``. Lower-level
exceptions (sqlite3, httpx, OSError) are converted at the component that
first sees them; callers only ever catch ``CKEError`` or a subclass.

Non-fatal kinds (Unsupported, FileTooLarge, BinaryFile, ParseFailure,
Network, Timeout, TooManyRedirects) normally travel as report entries, not
as raised exceptions.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    UNSUPPORTED = "Unsupported"
    FILE_TOO_LARGE = "FileTooLarge"
    BINARY_FILE = "BinaryFile"
    PARSE_FAILURE = "ParseFailure"
    STORE_WRITE = "StoreWrite"
    STORE_READ = "StoreRead"
    INDEX_CORRUPT = "IndexCorrupt"
    NETWORK = "Network"
    TIMEOUT = "Timeout"
    TOO_MANY_REDIRECTS = "TooManyRedirects"
    INVALID_QUERY = "InvalidQuery"
    CANCELLED = "Cancelled"
    DUPLICATE_LANGUAGE = "DuplicateLanguage"
    SCHEMA_MISMATCH = "SchemaMismatch"
    CONFIG = "Config"


class CKEError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.STORE_READ

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind
        self.message = message


class NotFoundError(CKEError):
    kind = ErrorKind.NOT_FOUND


class UnsupportedLanguageError(CKEError):
    """No registered parser handles the file's extension or shebang."""

    kind = ErrorKind.UNSUPPORTED


class DuplicateLanguageError(CKEError):
    """Raised when a parser is registered for a language tag twice."""

    kind = ErrorKind.DUPLICATE_LANGUAGE


class ParseFailureError(CKEError):
    """A parser hit an internal fault; the file is kept with no elements."""

    kind = ErrorKind.PARSE_FAILURE


class InvalidQueryError(CKEError):
    """Raised for malformed ``field:value`` syntax in a search query."""

    kind = ErrorKind.INVALID_QUERY


class StoreWriteError(CKEError):
    kind = ErrorKind.STORE_WRITE


class StoreReadError(CKEError):
    kind = ErrorKind.STORE_READ


class IndexCorruptError(CKEError):
    """The persistent stores are unreadable; only ``clear()`` recovers."""

    kind = ErrorKind.INDEX_CORRUPT


class SchemaMismatchError(IndexCorruptError):
    """The on-disk schema version differs from the running code."""

    kind = ErrorKind.SCHEMA_MISMATCH

    def __init__(self, found: str | None, expected: str) -> None:
        super().__init__(
            f"Index schema version {found!r} does not match expected {expected!r}. "
            "Open with rebuild=True (or run 'cke clear') to rebuild the index."
        )
        self.found = found
        self.expected = expected


class FetchError(CKEError):
    """Per-URL fetch fault (Network, Timeout or TooManyRedirects)."""

    kind = ErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, kind=kind)
        self.status_code = status_code


class CancelledError(CKEError):
    kind = ErrorKind.CANCELLED


class EngineUnhealthyError(CKEError):
    """Raised for writes attempted after a fatal store fault."""

    kind = ErrorKind.INDEX_CORRUPT
