"""Tests for the cke config loader."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from cke.config import (
    ConfigError,
    EngineConfig,
    FetchConfig,
    IndexConfig,
    OptimizerWeights,
    SearchConfig,
    load_config,
)
from cke.errors import ErrorKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CKE_DATA_DIR", "CKE_MAX_FILE_BYTES", "CKE_USER_AGENT"):
        monkeypatch.delenv(name, raising=False)


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


def _load(tmp_path: Path, global_cfg: Path | None = None) -> EngineConfig:
    return load_config(
        project_dir=tmp_path,
        global_config_path=global_cfg or tmp_path / "nonexistent" / "config.yaml",
    )


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path) -> None:
    cfg = _load(tmp_path)

    assert cfg.data_dir == tmp_path / ".cke"
    assert cfg.index.max_file_bytes == 8 * 1024 * 1024
    assert cfg.index.allowed_extensions is None
    assert cfg.fetch.max_depth == 2
    assert cfg.fetch.max_concurrent_fetches == 10
    assert cfg.fetch.respect_robots_txt is False
    assert cfg.search.enable_personalization is False
    assert cfg.search.enable_diversity is True
    assert cfg.search.optimizer_weights == OptimizerWeights(0.7, 0.1, 0.1, 0.1)


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_config_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"fetch": {"max_depth": 4}})

    cfg = _load(tmp_path, global_cfg)
    assert cfg.fetch.max_depth == 4
    # Other defaults unchanged
    assert cfg.fetch.request_timeout == 30.0


def test_empty_global_config_gives_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text("", encoding="utf-8")
    assert _load(tmp_path, global_cfg) == _load(tmp_path)


def test_project_config_overrides_global(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"fetch": {"max_depth": 4, "request_timeout": 5}})
    _write_yaml(tmp_path / "cke.yaml", {"fetch": {"max_depth": 1}})

    cfg = _load(tmp_path, global_cfg)
    assert cfg.fetch.max_depth == 1
    # Deep merge keeps the sibling key from the global layer
    assert cfg.fetch.request_timeout == 5.0


def test_nested_weights_are_merged(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "cke.yaml", {"search": {"optimizer_weights": {"freshness": 0.3}}})
    weights = _load(tmp_path).search.optimizer_weights
    assert weights.freshness == 0.3
    assert weights.relevance == 0.7


def test_list_values_become_tuples(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "cke.yaml",
        {"index": {"allowed_extensions": ["rs", "py"], "deny_patterns": "*.gen.rs"},
         "fetch": {"allowed_hosts": ["docs.test"]}},
    )
    cfg = _load(tmp_path)
    assert cfg.index.allowed_extensions == ("rs", "py")
    assert cfg.index.deny_patterns == ("*.gen.rs",)
    assert cfg.fetch.allowed_hosts == ("docs.test",)


def test_relative_data_dir_resolves_against_project(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "cke.yaml", {"data_dir": "store/here"})
    assert _load(tmp_path).data_dir == tmp_path / "store" / "here"


def test_absolute_data_dir_kept(tmp_path: Path) -> None:
    target = tmp_path / "elsewhere"
    _write_yaml(tmp_path / "cke.yaml", {"data_dir": str(target)})
    assert _load(tmp_path).data_dir == target


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def test_env_overrides_win_over_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_yaml(tmp_path / "cke.yaml", {"index": {"max_file_bytes": 100}})
    monkeypatch.setenv("CKE_DATA_DIR", str(tmp_path / "env-data"))
    monkeypatch.setenv("CKE_MAX_FILE_BYTES", "2048")
    monkeypatch.setenv("CKE_USER_AGENT", "test-agent/1.0")

    cfg = _load(tmp_path)
    assert cfg.data_dir == tmp_path / "env-data"
    assert cfg.index.max_file_bytes == 2048
    assert cfg.fetch.user_agent == "test-agent/1.0"


def test_env_max_file_bytes_must_be_integer(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CKE_MAX_FILE_BYTES", "lots")
    with pytest.raises(ConfigError, match="CKE_MAX_FILE_BYTES"):
        _load(tmp_path)


def test_env_max_file_bytes_is_validated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CKE_MAX_FILE_BYTES", "0")
    with pytest.raises(ConfigError, match="max_file_bytes"):
        _load(tmp_path)


# ---------------------------------------------------------------------------
# Errors and warnings
# ---------------------------------------------------------------------------


def test_unknown_key_warns(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "cke.yaml", {"colour": "blue"})
    with pytest.warns(UserWarning, match="Unknown config key 'colour'"):
        _load(tmp_path)


def test_invalid_yaml_raises(tmp_path: Path) -> None:
    (tmp_path / "cke.yaml").write_text("index: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="not valid YAML"):
        _load(tmp_path)


def test_non_mapping_yaml_raises(tmp_path: Path) -> None:
    (tmp_path / "cke.yaml").write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        _load(tmp_path)


def test_non_numeric_value_raises(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "cke.yaml", {"fetch": {"max_depth": "deep"}})
    with pytest.raises(ConfigError, match="Invalid config value"):
        _load(tmp_path)


def test_out_of_range_value_raises(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "cke.yaml", {"fetch": {"max_depth": -1}})
    with pytest.raises(ConfigError, match="max_depth"):
        _load(tmp_path)


def test_config_error_kind() -> None:
    with pytest.raises(ConfigError) as info:
        EngineConfig(index=IndexConfig(parse_workers=0))
    assert info.value.kind is ErrorKind.CONFIG
    assert isinstance(info.value, ValueError)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"fetch": FetchConfig(request_timeout=0)},
        {"fetch": FetchConfig(max_redirects=-1)},
        {"search": SearchConfig(intent_threshold=1.5)},
        {"search": SearchConfig(optimizer_weights=OptimizerWeights(0, 0, 0, 0))},
        {"search": SearchConfig(history_window=-1)},
    ],
)
def test_engine_config_validation(kwargs: dict) -> None:
    with pytest.raises(ConfigError):
        EngineConfig(**kwargs)
