"""Tests for Searcher query execution over a committed index."""

from __future__ import annotations

import os
import sqlite3

import pytest

from cke.db.models import ElementType
from cke.db.repository import Repository
from cke.errors import IndexCorruptError, InvalidQueryError, StoreReadError
from cke.ingest.indexer import canonical_path
from cke.search.searcher import MIN_RAW_HITS, raw_limit


def _write(path, text, mtime=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def engine(make_engine, src_dir):
    _write(src_dir / "lib.rs", "/// Adds numbers.\npub fn alpha() {}\npub struct Beta;\n")
    _write(src_dir / "tool.py", "# frobnicate the widgets\ndef run():\n    return 1\n")
    _write(src_dir / "web" / "app.js", "function alphaHandler() {}\n")
    eng = make_engine()
    eng.add_paths([src_dir])
    eng.commit()
    return eng


def test_raw_limit():
    assert raw_limit(1) == MIN_RAW_HITS
    assert raw_limit(40) == 120


def test_empty_query_and_limit(engine):
    assert engine.search("") == []
    assert engine.search("   ") == []
    assert engine.search("alpha", limit=0) == []


def test_invalid_query_raises(engine):
    with pytest.raises(InvalidQueryError):
        engine.search("path:")


@pytest.mark.parametrize(
    "message, error",
    [
        ("no such table: elements", StoreReadError),
        ("database disk image is malformed", IndexCorruptError),
    ],
)
def test_store_faults_are_translated(engine, monkeypatch, message, error):
    def broken(self):
        raise sqlite3.DatabaseError(message)

    monkeypatch.setattr(Repository, "begin_read", broken)
    with pytest.raises(error):
        engine.search("alpha")


def test_hits_without_kv_record_are_dropped(engine, src_dir, monkeypatch):
    lib = canonical_path(src_dir / "lib.rs")
    get_file = Repository.get_file
    monkeypatch.setattr(
        Repository, "get_file", lambda self, path: None if path == lib else get_file(self, path)
    )
    assert [r.element.name for r in engine.search("alpha")] == ["alphaHandler"]


def test_unknown_field_returns_nothing(engine):
    assert engine.search("alpha colour:red") == []


def test_invalid_filters_raise(engine):
    with pytest.raises(InvalidQueryError):
        engine.search("alpha", filters={"colour": "red"})


def test_language_filter(engine):
    results = engine.search("alpha", filters={"language": "javascript"})
    assert [r.element.name for r in results] == ["alphaHandler"]


def test_language_field_in_query(engine):
    results = engine.search("alpha language:rust")
    assert [r.element.name for r in results] == ["alpha"]


def test_element_type_filter(engine):
    results = engine.search("beta", filters={"element_type": ["struct"]})
    assert [(r.element.name, r.element.element_type) for r in results] == [("Beta", ElementType.STRUCT)]


def test_path_prefix_filter(engine, src_dir):
    prefix = canonical_path(src_dir / "web") + "/"
    results = engine.search("alpha", filters={"path_prefix": prefix})
    assert [r.element.name for r in results] == ["alphaHandler"]


def test_source_filter(engine):
    assert engine.search("alpha", filters={"source": "remote"}) == []
    assert engine.search("alpha", filters={"source": "local"}) != []


def test_documentation_is_searchable(engine):
    results = engine.search("numbers")
    assert [r.element.name for r in results] == ["alpha"]


def test_file_hit_surfaces_as_module(engine, src_dir):
    (item,) = engine.search("frobnicate")
    assert item.result_type == "file"
    assert item.element.element_type is ElementType.MODULE
    assert item.element.name == "tool.py"
    assert item.path == canonical_path(src_dir / "tool.py")
    assert "frobnicate" in item.element.code_snippet


def test_file_hits_respect_element_type_filter(engine):
    assert engine.search("frobnicate", filters={"element_type": "function"}) == []


def test_stop_word_query_lists_recent_files(make_engine, src_dir):
    _write(src_dir / "old.rs", "fn old() {}\n", mtime=1_000_000)
    _write(src_dir / "new.rs", "fn new() {}\n", mtime=2_000_000)
    engine = make_engine()
    engine.add_paths([src_dir])
    engine.commit()
    results = engine.search("the of and")
    assert [r.element.name for r in results] == ["new.rs", "old.rs"]
    assert all(r.score.relevance == 0 for r in results)


def test_uncommitted_changes_are_invisible(engine, src_dir):
    _write(src_dir / "late.rs", "fn latecomer() {}\n")
    engine.add_paths([src_dir / "late.rs"])
    assert engine.search("latecomer") == []
    engine.commit()
    assert [r.element.name for r in engine.search("latecomer")] == ["latecomer"]


def test_queries_are_recorded_in_history(engine):
    engine.search("alpha")
    engine.search("class Beta")
    items = engine.history.snapshot()
    assert [i.query for i in items] == ["alpha", "class Beta"]
    assert items[1].inferred_intent == "ClassDefinition"
