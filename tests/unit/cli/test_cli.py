"""Tests for the cke command line (typer CliRunner, no network)."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from cke.cli.main import app
from cke.db.connection import Database
from cke.db.schema import SCHEMA_KEY
from cke.errors import IndexCorruptError, StoreWriteError

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every command from tmp_path so no stray cke.yaml or CKE_* var applies."""
    monkeypatch.chdir(tmp_path)
    for name in ("CKE_DATA_DIR", "CKE_MAX_FILE_BYTES", "CKE_USER_AGENT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / ".cke"


@pytest.fixture
def indexed(tmp_path: Path, data_dir: Path) -> Path:
    """A source tree with one Rust file, already indexed."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "lib.rs").write_text("/// Adds numbers.\npub fn alpha() {}\n", encoding="utf-8")
    result = runner.invoke(app, ["index", str(src), "--data-dir", str(data_dir)])
    assert result.exit_code == 0, result.output
    return src


def _search_json(data_dir: Path, *args: str) -> list[dict]:
    result = runner.invoke(app, ["search", *args, "--data-dir", str(data_dir), "--json"])
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


# ---------------------------------------------------------------------------
# cke index / cke search
# ---------------------------------------------------------------------------


def test_index_then_search_json(indexed: Path, data_dir: Path) -> None:
    (hit,) = _search_json(data_dir, "alpha")
    assert hit["name"] == "alpha"
    assert hit["element_type"] == "function"
    assert hit["language"] == "rust"
    assert hit["line"] == 2
    assert hit["path"].endswith("/src/lib.rs")
    assert 0 <= hit["score"]["overall"] <= 100


def test_index_reports_counts(tmp_path: Path, data_dir: Path) -> None:
    (tmp_path / "a.py").write_text("def a():\n    pass\n", encoding="utf-8")
    result = runner.invoke(app, ["index", str(tmp_path / "a.py"), "--data-dir", str(data_dir)])
    assert result.exit_code == 0, result.output
    assert "1 added" in result.output


def test_index_without_paths_fails(data_dir: Path) -> None:
    result = runner.invoke(app, ["index", "--data-dir", str(data_dir)])
    assert result.exit_code == 1
    assert "No paths given" in result.output


def test_search_filters_by_language(indexed: Path, data_dir: Path) -> None:
    assert _search_json(data_dir, "alpha", "--language", "python") == []
    assert len(_search_json(data_dir, "alpha", "--language", "rust")) == 1


def test_search_no_results(indexed: Path, data_dir: Path) -> None:
    result = runner.invoke(app, ["search", "zzzzqq", "--data-dir", str(data_dir)])
    assert result.exit_code == 0
    assert "No results for" in result.output


def test_search_table_output(indexed: Path, data_dir: Path) -> None:
    result = runner.invoke(app, ["search", "alpha", "--data-dir", str(data_dir), "--explain"])
    assert result.exit_code == 0, result.output
    assert "alpha" in result.output
    assert "Intent:" in result.output


def test_search_invalid_query_exits_1(indexed: Path, data_dir: Path) -> None:
    result = runner.invoke(app, ["search", "path:", "--data-dir", str(data_dir)])
    assert result.exit_code == 1
    assert "Error" in result.output


def test_schema_mismatch_needs_rebuild(indexed: Path, data_dir: Path) -> None:
    conn = Database(data_dir).connect()
    try:
        conn.execute("UPDATE kv.kv SET value = ? WHERE key = ?", (json.dumps("0"), SCHEMA_KEY))
    finally:
        conn.close()

    result = runner.invoke(app, ["search", "alpha", "--data-dir", str(data_dir)])
    assert result.exit_code == 1
    assert "Index schema version" in result.output

    result = runner.invoke(app, ["index", str(indexed), "--data-dir", str(data_dir), "--rebuild"])
    assert result.exit_code == 0, result.output
    assert len(_search_json(data_dir, "alpha")) == 1


# ---------------------------------------------------------------------------
# cke remove / cke clear
# ---------------------------------------------------------------------------


def test_remove_file(indexed: Path, data_dir: Path) -> None:
    target = str(indexed / "lib.rs")
    result = runner.invoke(app, ["remove", target, "--data-dir", str(data_dir), "--yes"])
    assert result.exit_code == 0, result.output
    assert "Removed:" in result.output
    assert _search_json(data_dir, "alpha") == []


def test_remove_not_indexed(indexed: Path, data_dir: Path) -> None:
    result = runner.invoke(app, ["remove", "nowhere.rs", "--data-dir", str(data_dir), "--yes"])
    assert result.exit_code == 0
    assert "Not indexed:" in result.output


def test_remove_prompt_declined(indexed: Path, data_dir: Path) -> None:
    target = str(indexed / "lib.rs")
    result = runner.invoke(app, ["remove", target, "--data-dir", str(data_dir)], input="n\n")
    assert result.exit_code == 0
    assert "Cancelled." in result.output
    assert len(_search_json(data_dir, "alpha")) == 1


def test_clear(indexed: Path, data_dir: Path) -> None:
    result = runner.invoke(app, ["clear", "--data-dir", str(data_dir), "--yes"])
    assert result.exit_code == 0, result.output
    assert "Index cleared." in result.output
    assert _search_json(data_dir, "alpha") == []


def test_clear_repairs_unreadable_store(indexed: Path, data_dir: Path) -> None:
    for path in (data_dir / "index").iterdir():
        path.unlink()
    (data_dir / "index" / "fts.db").write_bytes(b"this is not sqlite" * 512)

    result = runner.invoke(app, ["clear", "--data-dir", str(data_dir), "--yes"])
    assert result.exit_code == 0, result.output
    assert "Index cleared." in result.output


# ---------------------------------------------------------------------------
# cke status / cke compact / cke version
# ---------------------------------------------------------------------------


def test_status_without_index(data_dir: Path) -> None:
    result = runner.invoke(app, ["status", "--data-dir", str(data_dir)])
    assert result.exit_code == 0
    assert "No index found" in result.output


def test_status_verify(indexed: Path, data_dir: Path) -> None:
    result = runner.invoke(app, ["status", "--data-dir", str(data_dir), "--verify"])
    assert result.exit_code == 0, result.output
    assert "healthy" in result.output
    assert "rust" in result.output
    assert "Integrity check passed." in result.output


def test_compact(indexed: Path, data_dir: Path) -> None:
    result = runner.invoke(app, ["compact", "--data-dir", str(data_dir)])
    assert result.exit_code == 0, result.output
    assert "Index compacted." in result.output
    assert len(_search_json(data_dir, "alpha")) == 1


def test_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("cke ")


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("cke ")


# ---------------------------------------------------------------------------
# Engine faults
# ---------------------------------------------------------------------------


def test_locked_index_message(data_dir: Path) -> None:
    locked = StoreWriteError("Index is locked by another writer: database is locked")
    with patch("cke.cli.session.CodeKnowledgeEngine", side_effect=locked):
        result = runner.invoke(app, ["search", "alpha", "--data-dir", str(data_dir)])
    assert result.exit_code == 1
    assert "Another process is writing" in result.output


def test_corrupt_index_message(data_dir: Path) -> None:
    corrupt = IndexCorruptError("Index store is corrupt: file is not a database")
    with patch("cke.cli.session.CodeKnowledgeEngine", side_effect=corrupt):
        result = runner.invoke(app, ["compact", "--data-dir", str(data_dir)])
    assert result.exit_code == 1
    assert "cke clear --yes" in result.output
