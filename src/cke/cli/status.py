"""cke status / cke compact.

Shows index overview: data directory, record counts, languages, crawled
pages and search history; optionally verifies store integrity.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cke.cli.errors import err_index_corrupt
from cke.cli.session import open_engine, resolve_config
from cke.engine import CodeKnowledgeEngine

console = Console()


def status_cmd(
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", "-d", help="Index directory (default: data_dir from cke.yaml, else .cke)."),
    ] = None,
    verify: Annotated[
        bool,
        typer.Option("--verify", help="Run integrity checks on both stores."),
    ] = False,
) -> None:
    """Show what is indexed and whether the index is healthy."""
    cfg = resolve_config(data_dir, console)
    if not (cfg.data_dir / "index").exists():
        console.print(
            Panel(
                f"[yellow]No index found at '{cfg.data_dir}'.[/]\n"
                "  Run:  cke index <paths>",
                title="[bold]Index[/]",
                expand=False,
            )
        )
        return

    with open_engine(data_dir, console) as engine:
        problems = engine.verify() if verify else []
        _show_index_panel(engine)
        _show_languages_panel(engine)

    if verify:
        if problems:
            console.print(err_index_corrupt(str(cfg.data_dir)))
            for problem in problems:
                console.print(f"  [red]✗[/] {problem}")
            raise typer.Exit(1)
        console.print("[green]✓[/] Integrity check passed.")


def compact_cmd(
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", "-d", help="Index directory (default: data_dir from cke.yaml, else .cke)."),
    ] = None,
) -> None:
    """Merge full-text segments and reclaim free space."""
    with open_engine(data_dir, console) as engine:
        engine.compact()
    console.print("[green]✓[/] Index compacted.")


# ---------------------------------------------------------------------------
# Panel renderers
# ---------------------------------------------------------------------------


def _show_index_panel(engine: CodeKnowledgeEngine) -> None:
    stats = engine.stats()
    health = "[green]healthy[/]" if stats["healthy"] else "[red]corrupt, run: cke clear --yes[/]"
    lines = [
        f"Data dir:  {engine.config.data_dir}",
        f"State:     {health}",
        f"Files: [bold]{stats['files']:,}[/]  |  "
        f"Elements: [bold]{stats['elements']:,}[/]  |  "
        f"Pages: [bold]{stats['remote']:,}[/]  |  "
        f"Searches: [bold]{stats['history']:,}[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Index[/]", expand=False))


def _show_languages_panel(engine: CodeKnowledgeEngine) -> None:
    counts = engine.indexer.language_counts()
    if not counts:
        console.print(Panel("[dim]Nothing indexed yet.[/]", title="[bold]Languages[/]", expand=False))
        return
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Language", style="bold")
    table.add_column("Files", justify="right")
    for language, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
        table.add_row(language, str(count))
    console.print(Panel(table, title="[bold]Languages[/]", expand=False))
