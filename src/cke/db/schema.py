"""Store schema DDL, version marker and initialization.

The FTS5 tables keep stored columns for display and filtering; the regular
``documents`` table maps every FTS rowid back to its path so deletes by
path never scan the full-text index.
"""

from __future__ import annotations

import json
import sqlite3

from cke.errors import SchemaMismatchError

SCHEMA_VERSION = "1"
SCHEMA_KEY = "__schema__"

# rowid of elements_fts / files_fts == documents.id
_INDEX_SQL = """
CREATE TABLE IF NOT EXISTS main.documents (
    id              INTEGER PRIMARY KEY,
    path            TEXT NOT NULL,
    kind            TEXT NOT NULL,
    source          TEXT NOT NULL,
    language        TEXT NOT NULL,
    element_type    TEXT,
    element_id      TEXT,
    start_line      INTEGER,
    modified_at     REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS main.idx_documents_path ON documents(path);

CREATE VIRTUAL TABLE IF NOT EXISTS main.elements_fts USING fts5(
    name, terms, doc, code_snippet, path, language, element_type,
    start_line UNINDEXED,
    tokenize='porter unicode61'
);

CREATE VIRTUAL TABLE IF NOT EXISTS main.files_fts USING fts5(
    content, path, language,
    timestamp UNINDEXED,
    tokenize='porter unicode61'
);
"""

_KV_SQL = """
CREATE TABLE IF NOT EXISTS kv.kv (
    key     TEXT PRIMARY KEY,
    value   TEXT NOT NULL
) WITHOUT ROWID;
"""

_DROP_SQL = """
DROP TABLE IF EXISTS main.elements_fts;
DROP TABLE IF EXISTS main.files_fts;
DROP TABLE IF EXISTS main.documents;
DROP TABLE IF EXISTS kv.kv;
"""


def stored_version(conn: sqlite3.Connection) -> str | None:
    """Return the schema marker in the KV store, or None for a fresh store."""
    exists = conn.execute(
        "SELECT 1 FROM kv.sqlite_master WHERE type = 'table' AND name = 'kv'"
    ).fetchone()
    if not exists:
        return None
    row = conn.execute("SELECT value FROM kv.kv WHERE key = ?", (SCHEMA_KEY,)).fetchone()
    return json.loads(row["value"]) if row else None


def initialize(conn: sqlite3.Connection, *, rebuild: bool = False) -> bool:
    """Create or verify the schema (idempotent).

    Returns True when the stores were (re)created empty.

    Raises:
        SchemaMismatchError: The stores carry another schema version and
            *rebuild* is False.
    """
    found = stored_version(conn)
    if found == SCHEMA_VERSION and not rebuild:
        return False
    if found is not None and found != SCHEMA_VERSION and not rebuild:
        raise SchemaMismatchError(found, SCHEMA_VERSION)
    if found is not None or rebuild:
        conn.executescript(_DROP_SQL)
    # executescript() issues an implicit COMMIT before running.
    conn.executescript(_INDEX_SQL + _KV_SQL)
    conn.execute(
        "INSERT OR REPLACE INTO kv.kv (key, value) VALUES (?, ?)",
        (SCHEMA_KEY, json.dumps(SCHEMA_VERSION)),
    )
    return True
