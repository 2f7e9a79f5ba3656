"""CKE configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (CKE_DATA_DIR, CKE_MAX_FILE_BYTES, CKE_USER_AGENT)
  3. Per-project cke.yaml
  4. Global ~/.cke/config.yaml
  5. Hardcoded defaults

The result is an immutable ``EngineConfig`` handed to the engine at
construction. All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from cke.errors import CKEError, ErrorKind

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".cke"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "cke.yaml"
_DEFAULT_DATA_DIR: str = ".cke"

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(["data_dir", "index", "fetch", "search"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(CKEError, ValueError):
    """Raised when a config file or value is invalid."""

    kind = ErrorKind.CONFIG


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OptimizerWeights:
    """Relative weights of the four sub-scores; normalized before use."""

    relevance: float = 0.7
    personalization: float = 0.1
    diversity: float = 0.1
    freshness: float = 0.1


@dataclass(frozen=True)
class IndexConfig:
    """Local ingest configuration (cke.yaml: index:).

    Attributes:
        max_file_bytes: Files larger than this are skipped; equal is accepted.
        allowed_extensions: Extensions to ingest; None means every extension
            a registered parser claims.
        deny_patterns: Globs excluded on top of the default directory excludes.
        parse_workers: Parser thread pool size; None means the CPU count.
    """

    max_file_bytes: int = 8 * 1024 * 1024
    allowed_extensions: tuple[str, ...] | None = None
    deny_patterns: tuple[str, ...] = ()
    parse_workers: int | None = None


@dataclass(frozen=True)
class FetchConfig:
    """Remote fetcher configuration (cke.yaml: fetch:)."""

    max_depth: int = 2
    max_concurrent_fetches: int = 10
    request_timeout: float = 30.0
    user_agent: str = "cke/0.1 (code knowledge engine)"
    allowed_hosts: tuple[str, ...] | None = None
    deny_url_patterns: tuple[str, ...] = ()
    follow_redirects: bool = True
    max_redirects: int = 3
    respect_robots_txt: bool = False
    politeness_delay: float = 0.0
    block_private_hosts: bool = False
    max_response_bytes: int = 5 * 1024 * 1024
    queue_size: int = 32


@dataclass(frozen=True)
class SearchConfig:
    """Ranking configuration (cke.yaml: search:)."""

    optimizer_weights: OptimizerWeights = field(default_factory=OptimizerWeights)
    enable_personalization: bool = False
    enable_diversity: bool = True
    max_history_items: int = 100
    history_window: int = 20
    intent_threshold: float = 0.8


@dataclass(frozen=True)
class EngineConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    data_dir: Path = Path(_DEFAULT_DATA_DIR)
    index: IndexConfig = field(default_factory=IndexConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    def __post_init__(self) -> None:
        _validate(self)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _validate(cfg: EngineConfig) -> None:
    if cfg.index.max_file_bytes <= 0:
        raise ConfigError("index.max_file_bytes must be > 0")
    if cfg.index.parse_workers is not None and cfg.index.parse_workers < 1:
        raise ConfigError("index.parse_workers must be >= 1")
    if cfg.fetch.max_depth < 0:
        raise ConfigError("fetch.max_depth must be >= 0")
    if cfg.fetch.max_concurrent_fetches <= 0:
        raise ConfigError("fetch.max_concurrent_fetches must be > 0")
    if cfg.fetch.request_timeout <= 0:
        raise ConfigError("fetch.request_timeout must be > 0")
    if cfg.fetch.max_redirects < 0:
        raise ConfigError("fetch.max_redirects must be >= 0")
    if cfg.fetch.politeness_delay < 0:
        raise ConfigError("fetch.politeness_delay must be >= 0")
    if cfg.fetch.max_response_bytes <= 0 or cfg.fetch.queue_size <= 0:
        raise ConfigError("fetch.max_response_bytes and fetch.queue_size must be > 0")
    weights = cfg.search.optimizer_weights
    values = (weights.relevance, weights.personalization, weights.diversity, weights.freshness)
    if any(w < 0 for w in values) or sum(values) <= 0:
        raise ConfigError("search.optimizer_weights must be >= 0 and not all zero")
    if cfg.search.max_history_items < 0 or cfg.search.history_window < 0:
        raise ConfigError("search.max_history_items and search.history_window must be >= 0")
    if not 0.0 <= cfg.search.intent_threshold <= 1.0:
        raise ConfigError("search.intent_threshold must be between 0 and 1")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level")
    return raw


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _str_tuple(value: Any, name: str) -> tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"{name} must be a list of strings")
    return tuple(str(v) for v in value)


def _cfg_from_dict(data: dict[str, Any], base_dir: Path) -> EngineConfig:
    """Build an *EngineConfig* from a merged raw YAML dict."""
    defaults = EngineConfig()
    try:
        i = data.get("index") or {}
        index = IndexConfig(
            max_file_bytes=int(i.get("max_file_bytes", defaults.index.max_file_bytes)),
            allowed_extensions=_str_tuple(i.get("allowed_extensions"), "index.allowed_extensions"),
            deny_patterns=_str_tuple(i.get("deny_patterns"), "index.deny_patterns") or (),
            parse_workers=int(i["parse_workers"]) if i.get("parse_workers") is not None else None,
        )

        f = data.get("fetch") or {}
        d = defaults.fetch
        fetch = FetchConfig(
            max_depth=int(f.get("max_depth", d.max_depth)),
            max_concurrent_fetches=int(f.get("max_concurrent_fetches", d.max_concurrent_fetches)),
            request_timeout=float(f.get("request_timeout", d.request_timeout)),
            user_agent=str(f.get("user_agent", d.user_agent)),
            allowed_hosts=_str_tuple(f.get("allowed_hosts"), "fetch.allowed_hosts"),
            deny_url_patterns=_str_tuple(f.get("deny_url_patterns"), "fetch.deny_url_patterns") or (),
            follow_redirects=bool(f.get("follow_redirects", d.follow_redirects)),
            max_redirects=int(f.get("max_redirects", d.max_redirects)),
            respect_robots_txt=bool(f.get("respect_robots_txt", d.respect_robots_txt)),
            politeness_delay=float(f.get("politeness_delay", d.politeness_delay)),
            block_private_hosts=bool(f.get("block_private_hosts", d.block_private_hosts)),
            max_response_bytes=int(f.get("max_response_bytes", d.max_response_bytes)),
            queue_size=int(f.get("queue_size", d.queue_size)),
        )

        s = data.get("search") or {}
        w = s.get("optimizer_weights") or {}
        dw = defaults.search.optimizer_weights
        search = SearchConfig(
            optimizer_weights=OptimizerWeights(
                relevance=float(w.get("relevance", dw.relevance)),
                personalization=float(w.get("personalization", dw.personalization)),
                diversity=float(w.get("diversity", dw.diversity)),
                freshness=float(w.get("freshness", dw.freshness)),
            ),
            enable_personalization=bool(
                s.get("enable_personalization", defaults.search.enable_personalization)
            ),
            enable_diversity=bool(s.get("enable_diversity", defaults.search.enable_diversity)),
            max_history_items=int(s.get("max_history_items", defaults.search.max_history_items)),
            history_window=int(s.get("history_window", defaults.search.history_window)),
            intent_threshold=float(s.get("intent_threshold", defaults.search.intent_threshold)),
        )
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid config value: {exc}") from exc

    data_dir = Path(str(data.get("data_dir", _DEFAULT_DATA_DIR))).expanduser()
    if not data_dir.is_absolute():
        data_dir = base_dir / data_dir
    return EngineConfig(data_dir=data_dir, index=index, fetch=fetch, search=search)


def _apply_env_overrides(cfg: EngineConfig) -> EngineConfig:
    """Apply CKE_* environment variable overrides (layer 2)."""
    if data_dir := os.environ.get("CKE_DATA_DIR"):
        cfg = replace(cfg, data_dir=Path(data_dir).expanduser())
    if max_bytes := os.environ.get("CKE_MAX_FILE_BYTES"):
        try:
            value = int(max_bytes)
        except ValueError as exc:
            raise ConfigError(f"CKE_MAX_FILE_BYTES must be an integer, got {max_bytes!r}") from exc
        cfg = replace(cfg, index=replace(cfg.index, max_file_bytes=value))
    if agent := os.environ.get("CKE_USER_AGENT"):
        cfg = replace(cfg, fetch=replace(cfg.fetch, user_agent=agent))
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> EngineConfig:
    """Load and return a merged *EngineConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *cke.yaml*. Defaults to CWD.
            A relative ``data_dir`` is resolved against it.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *EngineConfig* with env var overrides applied.

    Raises:
        ConfigError: If a file is not valid YAML or a value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged, search_dir)

    # Layer 3: env var overrides
    return _apply_env_overrides(cfg)
