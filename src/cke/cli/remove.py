"""cke remove / cke clear: lifecycle management of indexed content.

Removing a path deletes its FileRecord, its code elements and its
full-text documents in one commit. A directory removes every file under
it; a URL removes the stored page and its indexed copy.

Usage:
  cke remove src/legacy/
  cke remove https://docs.example.com/guide --yes
  cke clear --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from cke.cli.errors import err_not_indexed
from cke.cli.session import open_engine, report_error, resolve_config
from cke.db.connection import Database
from cke.engine import CodeKnowledgeEngine
from cke.errors import CKEError, IndexCorruptError, NotFoundError

console = Console()


def remove_cmd(
    target: Annotated[str, typer.Argument(help="Indexed file, directory or URL to remove.")],
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", "-d", help="Index directory (default: data_dir from cke.yaml, else .cke)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a file, directory or URL and everything indexed for it."""
    if not yes:
        if not typer.confirm(f"Remove '{target}' from the index?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    with open_engine(data_dir, console) as engine:
        if "://" in target:
            removed = 1 if engine.remove_remote(target) else 0
        else:
            try:
                removed = engine.remove_path(target)
            except NotFoundError:
                removed = 0
        if not removed:
            console.print(err_not_indexed(target))
            raise typer.Exit(0)
        engine.commit()

    console.print(f"[green]✓[/] Removed: {target}  ({removed} record(s))")


def clear_cmd(
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", "-d", help="Index directory (default: data_dir from cke.yaml, else .cke)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Delete everything in the index (also repairs a corrupt index)."""
    if not yes:
        if not typer.confirm("Delete the entire index and search history?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    cfg = resolve_config(data_dir, console)
    try:
        engine = CodeKnowledgeEngine(cfg, rebuild=True)
    except IndexCorruptError:
        # Unreadable store files: start over from an empty directory.
        Database(cfg.data_dir).destroy()
        engine = CodeKnowledgeEngine(cfg, rebuild=True)
    except CKEError as exc:
        report_error(exc, cfg, console)
        raise typer.Exit(1) from exc
    with engine:
        engine.clear()

    console.print("[green]✓[/] Index cleared.")
