"""Tests for store schema initialization and the version marker."""

from __future__ import annotations

import json

import pytest

from cke.db.connection import Database
from cke.db.schema import SCHEMA_KEY, SCHEMA_VERSION, initialize, stored_version
from cke.errors import ErrorKind, SchemaMismatchError


def _table_exists(conn, schema: str, table: str) -> bool:
    row = conn.execute(
        f"SELECT name FROM {schema}.sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


def test_tables_exist(tmp_db):
    assert _table_exists(tmp_db, "main", "documents")
    assert _table_exists(tmp_db, "main", "elements_fts")
    assert _table_exists(tmp_db, "main", "files_fts")
    assert _table_exists(tmp_db, "kv", "kv")


def test_schema_version_recorded(tmp_db):
    assert stored_version(tmp_db) == SCHEMA_VERSION


def test_initialize_idempotent(tmp_db):
    assert initialize(tmp_db) is False
    assert stored_version(tmp_db) == SCHEMA_VERSION


def test_fresh_store_reports_created(tmp_path):
    conn = Database(tmp_path / "d").connect(writer=True)
    try:
        assert stored_version(conn) is None
        assert initialize(conn) is True
    finally:
        conn.close()


def test_version_mismatch_raises(tmp_db):
    tmp_db.execute("UPDATE kv.kv SET value = ? WHERE key = ?", (json.dumps("0"), SCHEMA_KEY))
    with pytest.raises(SchemaMismatchError) as excinfo:
        initialize(tmp_db)
    assert excinfo.value.kind is ErrorKind.SCHEMA_MISMATCH
    assert excinfo.value.found == "0"


def test_rebuild_recreates_empty_stores(tmp_db):
    tmp_db.execute("INSERT INTO kv.kv (key, value) VALUES ('files/x', '{}')")
    tmp_db.execute("UPDATE kv.kv SET value = ? WHERE key = ?", (json.dumps("0"), SCHEMA_KEY))
    assert initialize(tmp_db, rebuild=True) is True
    assert stored_version(tmp_db) == SCHEMA_VERSION
    assert tmp_db.execute("SELECT COUNT(*) FROM kv.kv WHERE key = 'files/x'").fetchone()[0] == 0
