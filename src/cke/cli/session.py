"""Open an engine for a CLI command and turn engine faults into exit codes."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterator

import typer
from rich.console import Console

from cke.cli.errors import (
    err_config,
    err_generic,
    err_index_corrupt,
    err_index_locked,
    err_invalid_query,
)
from cke.config import ConfigError, EngineConfig, load_config
from cke.engine import CodeKnowledgeEngine
from cke.errors import (
    CKEError,
    IndexCorruptError,
    InvalidQueryError,
    SchemaMismatchError,
    StoreWriteError,
)


def resolve_config(data_dir: Path | None, console: Console) -> EngineConfig:
    """Load layered config, then apply the ``--data-dir`` flag."""
    try:
        cfg = load_config()
        if data_dir is not None:
            cfg = replace(cfg, data_dir=data_dir)
    except ConfigError as exc:
        console.print(err_config(exc.message))
        raise typer.Exit(1) from exc
    return cfg


def report_error(exc: CKEError, cfg: EngineConfig, console: Console) -> None:
    if isinstance(exc, SchemaMismatchError):
        console.print(err_generic(exc))
    elif isinstance(exc, IndexCorruptError):
        console.print(err_index_corrupt(str(cfg.data_dir)))
    elif isinstance(exc, StoreWriteError) and "locked" in exc.message:
        console.print(err_index_locked(str(cfg.data_dir)))
    elif isinstance(exc, InvalidQueryError):
        console.print(err_invalid_query(exc.message))
    else:
        console.print(err_generic(exc))


@contextmanager
def open_engine(
    data_dir: Path | None,
    console: Console,
    *,
    rebuild: bool = False,
) -> Iterator[CodeKnowledgeEngine]:
    """Yield an open engine; any CKEError is printed and becomes exit code 1.

    Uncommitted work is rolled back when the command fails.
    """
    cfg = resolve_config(data_dir, console)
    try:
        engine = CodeKnowledgeEngine(cfg, rebuild=rebuild)
    except CKEError as exc:
        report_error(exc, cfg, console)
        raise typer.Exit(1) from exc
    try:
        yield engine
    except CKEError as exc:
        engine.rollback()
        report_error(exc, cfg, console)
        raise typer.Exit(1) from exc
    except BaseException:
        engine.rollback()
        raise
    finally:
        engine.close()
