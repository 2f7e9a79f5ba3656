"""cke index / cke crawl: stage sources and commit them in one batch.

  cke index PATH...           local files and directories (walked recursively)
  cke crawl URL... --depth N  web pages; code blocks become searchable elements

Each command commits once at the end, so a failed or interrupted run leaves
the index exactly as it was.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from cke.cli.errors import err_no_paths
from cke.cli.session import open_engine
from cke.ingest.indexer import IngestReport
from cke.ingest.web import CrawlReport

console = Console()


def index_cmd(
    paths: Annotated[
        list[Path] | None,
        typer.Argument(help="Files or directories to index."),
    ] = None,
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", "-d", help="Index directory (default: data_dir from cke.yaml, else .cke)."),
    ] = None,
    recursive: Annotated[
        bool,
        typer.Option("--recursive/--no-recursive", help="Descend into subdirectories."),
    ] = True,
    rebuild: Annotated[
        bool,
        typer.Option("--rebuild", help="Drop and recreate the index first (after a schema change)."),
    ] = False,
) -> None:
    """Index source files; unchanged files are skipped by content hash."""
    if not paths:
        console.print(err_no_paths())
        raise typer.Exit(1)

    with open_engine(data_dir, console, rebuild=rebuild) as engine:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task(f"Indexing {len(paths)} path(s)…", total=None)
            report = engine.add_paths(paths, recursive=recursive)
            engine.commit()

    _print_ingest_report(report)


def crawl_cmd(
    urls: Annotated[
        list[str] | None,
        typer.Argument(help="Seed URLs (http:// or https://)."),
    ] = None,
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", "-d", help="Index directory (default: data_dir from cke.yaml, else .cke)."),
    ] = None,
    depth: Annotated[
        int | None,
        typer.Option("--depth", min=0, help="Link hops to follow from each seed (default: fetch.max_depth)."),
    ] = None,
    add_to_kb: Annotated[
        bool,
        typer.Option("--add-to-kb/--store-only", help="Also make pages searchable (default) or only store them."),
    ] = True,
) -> None:
    """Crawl web pages and index their text and code blocks."""
    if not urls:
        console.print("[red]Error:[/] No URLs given.\n  Example:  cke crawl https://docs.example.com/guide --depth 1")
        raise typer.Exit(1)

    with open_engine(data_dir, console) as engine:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task(f"Crawling {len(urls)} seed(s)…", total=None)
            result = engine.ingest_remote(urls, depth=depth, add_to_kb=add_to_kb)
            engine.commit()

    _print_crawl_report(result.crawl)
    console.print(f"\n[green]✓[/] {len(result.stored)} page(s) stored")
    if add_to_kb:
        _print_ingest_report(result.ingest, heading=False)


# ------------------------------------------------------------------
# Report rendering
# ------------------------------------------------------------------


def _print_ingest_report(report: IngestReport, heading: bool = True) -> None:
    if heading:
        console.print(
            f"\n[green]✓[/] {len(report.added)} added  |  {len(report.updated)} updated  |  "
            f"{len(report.unchanged)} unchanged  |  {len(report.removed)} removed"
        )
    else:
        console.print(
            f"  Indexed: {len(report.added)} added, {len(report.updated)} updated, "
            f"{len(report.unchanged)} unchanged"
        )
    issues = [("skipped", i) for i in report.skipped] + [("failed", i) for i in report.failed]
    issues += [("no symbols", i) for i in report.recovered]
    if not issues:
        return
    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Status", style="bold")
    table.add_column("Kind", style="dim")
    table.add_column("Path")
    table.add_column("Reason", style="dim")
    for status, issue in issues:
        colour = "red" if status == "failed" else "yellow"
        table.add_row(f"[{colour}]{status}[/]", issue.kind.value, issue.path, issue.message)
    console.print(table)


def _print_crawl_report(report: CrawlReport) -> None:
    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("Status", style="bold")
    table.add_column("Depth", justify="right")
    table.add_column("URL")
    table.add_column("Detail", style="dim")
    for status in report.statuses:
        colour = {"fetched": "green", "skipped": "yellow"}.get(status.status, "red")
        detail = status.message
        if status.kind is not None:
            detail = f"{status.kind.value}: {detail}" if detail else status.kind.value
        table.add_row(f"[{colour}]{status.status}[/]", str(status.depth), status.url, detail)
    console.print(table)
