"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from cke.config import EngineConfig, IndexConfig
from cke.db.connection import Database
from cke.db.repository import Repository
from cke.db.schema import initialize
from cke.engine import CodeKnowledgeEngine


@pytest.fixture
def tmp_db(tmp_path):
    """Writer connection on fresh stores in tmp_path, closed after test."""
    db = Database(tmp_path / ".cke")
    conn = db.connect(writer=True)
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def config(tmp_path):
    """Engine config rooted in tmp_path with a single parse worker."""
    return EngineConfig(data_dir=tmp_path / ".cke", index=IndexConfig(parse_workers=1))


@pytest.fixture
def make_engine(config):
    """Factory for engines on the test data dir; every engine is closed after the test."""
    engines: list[CodeKnowledgeEngine] = []

    def _make(cfg=None, **kwargs):
        engine = CodeKnowledgeEngine(cfg or config, **kwargs)
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()


@pytest.fixture
def src_dir(tmp_path):
    """Empty directory for source fixtures."""
    path = tmp_path / "src"
    path.mkdir()
    return path
