"""Repository over the full-text and KV stores.

Single interface for: KV records (files, elements, remote content, search
history), full-text documents, BM25 search, and maintenance. Methods never
commit; the caller owns transaction boundaries (see ``begin_write()``).
"""

from __future__ import annotations

import hashlib
import json
import re
import sqlite3
from typing import Any, Iterable, Iterator

from cke.db.models import (
    CodeElement,
    FileRecord,
    RemoteContent,
    SearchFilters,
    SearchHistoryItem,
    dumps,
)

FILES_PREFIX = "files/"
ELEMENTS_PREFIX = "elements/"
REMOTE_PREFIX = "remote/"
HISTORY_PREFIX = "history/"

SOURCE_LOCAL = "local"
SOURCE_REMOTE = "remote"

# name, terms, doc, code_snippet, path, language, element_type
_ELEMENT_WEIGHTS = "10.0, 6.0, 2.0, 1.0, 1.0, 1.0, 1.0"

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def url_key(url: str) -> str:
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]


def identifier_terms(name: str) -> str:
    """``parseHTTPResponse_v2`` → ``parse http response v2``."""
    return " ".join(part.lower() for part in re.split(r"[_\-.\s]+", _CAMEL_RE.sub(" ", name)) if part)


def _prefix_end(prefix: str) -> str:
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class Repository:
    """Data access layer for every persisted CKE entity.

    Wraps an open connection from ``Database.connect()``; the KV store is
    reachable as schema ``kv``. The connection is owned by the caller.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin_write(self) -> None:
        """Take the write lock on both stores; fails fast when another writer holds it."""
        self._conn.execute("BEGIN IMMEDIATE")

    def begin_read(self) -> None:
        """Open a read transaction pinned to the current commit of both stores."""
        self._conn.execute("BEGIN")
        self._conn.execute("SELECT 1 FROM main.documents LIMIT 1").fetchall()
        self._conn.execute("SELECT 1 FROM kv.kv LIMIT 1").fetchall()

    def commit(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("COMMIT")

    def rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    # ------------------------------------------------------------------
    # KV primitives
    # ------------------------------------------------------------------

    def kv_get(self, key: str) -> Any | None:
        row = self._conn.execute("SELECT value FROM kv.kv WHERE key = ?", (key,)).fetchone()
        return json.loads(row["value"]) if row else None

    def kv_put(self, key: str, value: Any) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO kv.kv (key, value) VALUES (?, ?)", (key, dumps(value))
        )

    def kv_delete(self, key: str) -> bool:
        return self._conn.execute("DELETE FROM kv.kv WHERE key = ?", (key,)).rowcount > 0

    def kv_scan(self, prefix: str, *, reverse: bool = False) -> Iterator[tuple[str, Any]]:
        """Yield ``(key, value)`` for every key under *prefix*, in key order."""
        order = "DESC" if reverse else "ASC"
        rows = self._conn.execute(
            f"SELECT key, value FROM kv.kv WHERE key >= ? AND key < ? ORDER BY key {order}",
            (prefix, _prefix_end(prefix)),
        )
        for row in rows:
            yield row["key"], json.loads(row["value"])

    def kv_count(self, prefix: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM kv.kv WHERE key >= ? AND key < ?",
            (prefix, _prefix_end(prefix)),
        ).fetchone()[0]

    # ------------------------------------------------------------------
    # Files and elements
    # ------------------------------------------------------------------

    def get_file(self, path: str) -> FileRecord | None:
        data = self.kv_get(FILES_PREFIX + path)
        return FileRecord.from_dict(data) if data else None

    def list_files(self, prefix: str = "") -> list[FileRecord]:
        return [FileRecord.from_dict(v) for _, v in self.kv_scan(FILES_PREFIX + prefix)]

    def list_file_paths(self, prefix: str = "") -> list[str]:
        start = FILES_PREFIX + prefix
        rows = self._conn.execute(
            "SELECT key FROM kv.kv WHERE key >= ? AND key < ? ORDER BY key",
            (start, _prefix_end(start)),
        )
        return [row["key"][len(FILES_PREFIX) :] for row in rows]

    def get_element(self, element_id: str) -> CodeElement | None:
        data = self.kv_get(ELEMENTS_PREFIX + element_id)
        return CodeElement.from_dict(data) if data else None

    def get_elements(self, element_ids: Iterable[str]) -> dict[str, CodeElement]:
        found: dict[str, CodeElement] = {}
        for element_id in element_ids:
            element = self.get_element(element_id)
            if element is not None:
                found[element_id] = element
        return found

    def replace_file(
        self,
        record: FileRecord,
        content: str,
        elements: list[CodeElement],
        *,
        source: str = SOURCE_LOCAL,
    ) -> None:
        """Swap everything stored for ``record.path`` for the new state.

        Deletes prior documents and elements, adds one file document plus one
        document per element, and upserts the FileRecord and CodeElements.
        """
        self.delete_file(record.path)
        self._add_file_document(record, content, source)
        for element in elements:
            self._add_element_document(element, record.modified_at, source)
            self.kv_put(ELEMENTS_PREFIX + element.element_id, element.to_dict())
        record.element_ids = [e.element_id for e in elements]
        self.kv_put(FILES_PREFIX + record.path, record.to_dict())

    def delete_file(self, path: str) -> FileRecord | None:
        """Remove a FileRecord with its elements and documents; returns the old record."""
        record = self.get_file(path)
        if record is not None:
            for element_id in record.element_ids:
                self.kv_delete(ELEMENTS_PREFIX + element_id)
            self.kv_delete(FILES_PREFIX + path)
        self.delete_documents(path)
        return record

    # ------------------------------------------------------------------
    # Full-text documents
    # ------------------------------------------------------------------

    def _add_file_document(self, record: FileRecord, content: str, source: str) -> None:
        cur = self._conn.execute(
            """
            INSERT INTO main.documents (path, kind, source, language, modified_at)
            VALUES (?, 'file', ?, ?, ?)
            """,
            (record.path, source, record.language, record.modified_at),
        )
        self._conn.execute(
            "INSERT INTO main.files_fts (rowid, content, path, language, timestamp) VALUES (?, ?, ?, ?, ?)",
            (cur.lastrowid, content, record.path, record.language, record.modified_at),
        )

    def _add_element_document(self, element: CodeElement, modified_at: float, source: str) -> None:
        cur = self._conn.execute(
            """
            INSERT INTO main.documents
                (path, kind, source, language, element_type, element_id, start_line, modified_at)
            VALUES (?, 'element', ?, ?, ?, ?, ?, ?)
            """,
            (
                element.file_path,
                source,
                element.language,
                element.element_type.value,
                element.element_id,
                element.line,
                modified_at,
            ),
        )
        self._conn.execute(
            """
            INSERT INTO main.elements_fts
                (rowid, name, terms, doc, code_snippet, path, language, element_type, start_line)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                cur.lastrowid,
                element.name,
                identifier_terms(element.name),
                element.documentation or "",
                element.code_snippet,
                element.file_path,
                element.language,
                element.element_type.value,
                element.line,
            ),
        )

    def delete_documents(self, path: str) -> int:
        """Delete all FT documents tagged with *path*; returns how many."""
        rows = self._conn.execute(
            "SELECT id, kind FROM main.documents WHERE path = ?", (path,)
        ).fetchall()
        if not rows:
            return 0
        self._conn.executemany(
            "DELETE FROM main.elements_fts WHERE rowid = ?",
            [(r["id"],) for r in rows if r["kind"] == "element"],
        )
        self._conn.executemany(
            "DELETE FROM main.files_fts WHERE rowid = ?",
            [(r["id"],) for r in rows if r["kind"] == "file"],
        )
        self._conn.execute("DELETE FROM main.documents WHERE path = ?", (path,))
        return len(rows)

    def document_paths(self) -> set[str]:
        return {r["path"] for r in self._conn.execute("SELECT DISTINCT path FROM main.documents")}

    # ------------------------------------------------------------------
    # FTS5 / BM25 search
    # ------------------------------------------------------------------

    def search_elements(
        self, match: str, filters: SearchFilters, now: float, limit: int
    ) -> list[sqlite3.Row]:
        """Element documents matching an FTS5 expression, best BM25 first.

        bm25() returns negative values; lower (more negative) is better.
        """
        where, params = _filter_sql(filters, now)
        return self._conn.execute(
            f"""
            SELECT d.path, d.element_id, d.start_line, d.modified_at, d.source,
                   bm25(elements_fts, {_ELEMENT_WEIGHTS}) AS score
            FROM main.elements_fts JOIN main.documents AS d ON d.id = elements_fts.rowid
            WHERE elements_fts MATCH ? AND d.kind = 'element'{where}
            ORDER BY score, d.path, d.start_line
            LIMIT ?
            """,
            (match, *params, limit),
        ).fetchall()

    def search_files(
        self, match: str, filters: SearchFilters, now: float, limit: int
    ) -> list[sqlite3.Row]:
        """File documents matching an FTS5 expression, best BM25 first."""
        where, params = _filter_sql(filters, now, element_filter=False)
        return self._conn.execute(
            f"""
            SELECT d.path, d.modified_at, d.source, d.language, bm25(files_fts) AS score,
                   snippet(files_fts, 0, '', '', '...', 32) AS excerpt
            FROM main.files_fts JOIN main.documents AS d ON d.id = files_fts.rowid
            WHERE files_fts MATCH ? AND d.kind = 'file'{where}
            ORDER BY score, d.path
            LIMIT ?
            """,
            (match, *params, limit),
        ).fetchall()

    def recent_file_paths(self, filters: SearchFilters, now: float, limit: int) -> list[str]:
        """Paths of the most recently modified files (newest first)."""
        where, params = _filter_sql(filters, now, element_filter=False)
        rows = self._conn.execute(
            f"""
            SELECT d.path FROM main.documents AS d
            WHERE d.kind = 'file'{where}
            ORDER BY d.modified_at DESC, d.path ASC
            LIMIT ?
            """,
            (*params, limit),
        )
        return [r["path"] for r in rows]

    # ------------------------------------------------------------------
    # Remote content
    # ------------------------------------------------------------------

    def put_remote(self, content: RemoteContent) -> None:
        self.kv_put(REMOTE_PREFIX + url_key(content.url), content.to_dict())

    def get_remote(self, url: str) -> RemoteContent | None:
        data = self.kv_get(REMOTE_PREFIX + url_key(url))
        return RemoteContent.from_dict(data) if data else None

    def delete_remote(self, url: str) -> bool:
        return self.kv_delete(REMOTE_PREFIX + url_key(url))

    # ------------------------------------------------------------------
    # Search history
    # ------------------------------------------------------------------

    def replace_history(self, items: Iterable[SearchHistoryItem], max_items: int) -> None:
        """Rewrite the bounded log with the newest *max_items* of *items*."""
        self.clear_history()
        kept = list(items)[-max_items:] if max_items > 0 else []
        for seq, item in enumerate(kept, start=1):
            self.kv_put(f"{HISTORY_PREFIX}{seq:012d}", item.to_dict())

    def load_history(self, limit: int | None = None) -> list[SearchHistoryItem]:
        """Return the newest *limit* history items, oldest first."""
        items = []
        for _, value in self.kv_scan(HISTORY_PREFIX, reverse=True):
            if limit is not None and len(items) >= limit:
                break
            items.append(SearchHistoryItem.from_dict(value))
        items.reverse()
        return items

    def clear_history(self) -> None:
        self._conn.execute(
            "DELETE FROM kv.kv WHERE key >= ? AND key < ?",
            (HISTORY_PREFIX, _prefix_end(HISTORY_PREFIX)),
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reconcile(self) -> list[str]:
        """Restore "FileRecord iff FT documents" after an interrupted commit.

        Returns the paths that were repaired (dropped from both stores).
        """
        with_docs = self.document_paths()
        with_records = set(self.list_file_paths())
        broken = sorted(with_docs ^ with_records)
        for path in broken:
            self.delete_file(path)
        return broken

    def clear(self) -> None:
        """Empty both stores, keeping the schema marker."""
        self._conn.execute("DELETE FROM main.elements_fts")
        self._conn.execute("DELETE FROM main.files_fts")
        self._conn.execute("DELETE FROM main.documents")
        self._conn.execute("DELETE FROM kv.kv WHERE key != '__schema__'")

    def stats(self) -> dict[str, int]:
        return {
            "files": self.kv_count(FILES_PREFIX),
            "elements": self.kv_count(ELEMENTS_PREFIX),
            "remote": self.kv_count(REMOTE_PREFIX),
            "history": self.kv_count(HISTORY_PREFIX),
            "documents": self._conn.execute("SELECT COUNT(*) FROM main.documents").fetchone()[0],
        }

    def language_counts(self) -> dict[str, int]:
        """Indexed file count per language."""
        rows = self._conn.execute(
            "SELECT language, COUNT(*) AS n FROM main.documents WHERE kind = 'file' GROUP BY language"
        )
        return {r["language"]: r["n"] for r in rows}

    def integrity_problems(self) -> list[str]:
        """Run SQLite and FTS5 integrity checks; returns human-readable problems."""
        problems: list[str] = []
        for schema in ("main", "kv"):
            for row in self._conn.execute(f"PRAGMA {schema}.integrity_check"):
                if row[0] != "ok":
                    problems.append(f"{schema}: {row[0]}")
        for table in ("elements_fts", "files_fts"):
            try:
                self._conn.execute(f"INSERT INTO main.{table} ({table}) VALUES ('integrity-check')")
            except sqlite3.DatabaseError as exc:
                problems.append(f"{table}: {exc}")
        return problems

    def optimize(self) -> None:
        """Merge FTS5 segments. Must run inside a write transaction."""
        self._conn.execute("INSERT INTO main.elements_fts (elements_fts) VALUES ('optimize')")
        self._conn.execute("INSERT INTO main.files_fts (files_fts) VALUES ('optimize')")

    def vacuum(self) -> None:
        """Reclaim free pages. Must run outside any transaction."""
        self._conn.execute("VACUUM main")
        self._conn.execute("VACUUM kv")


# ------------------------------------------------------------------
# Filter → SQL helpers
# ------------------------------------------------------------------


def _filter_sql(
    filters: SearchFilters, now: float, *, element_filter: bool = True
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if filters.language:
        clauses.append(f"d.language IN ({','.join('?' * len(filters.language))})")
        params.extend(filters.language)
    if element_filter and filters.element_type:
        clauses.append(f"d.element_type IN ({','.join('?' * len(filters.element_type))})")
        params.extend(t.value for t in filters.element_type)
    if filters.path_prefix:
        clauses.append("substr(d.path, 1, ?) = ?")
        params.extend((len(filters.path_prefix), filters.path_prefix))
    if filters.max_age_seconds is not None:
        clauses.append("d.modified_at >= ?")
        params.append(now - filters.max_age_seconds)
    if filters.source:
        clauses.append("d.source = ?")
        params.append(filters.source)
    where = "".join(f" AND {c}" for c in clauses)
    return where, params
