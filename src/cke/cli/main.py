"""CKE CLI entry point: an operator harness over the engine's library calls."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from cke.cli.ingest import crawl_cmd, index_cmd
from cke.cli.remove import clear_cmd, remove_cmd
from cke.cli.search import search_cmd
from cke.cli.status import compact_cmd, status_cmd


def _version() -> str:
    try:
        return importlib.metadata.version("cke")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cke {_version()}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Route library logging through rich; DEBUG with --verbose, else WARNING."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(show_time=False, show_path=verbose, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    logging.getLogger("cke").setLevel(logging.DEBUG if verbose else logging.WARNING)


app = typer.Typer(
    name="cke",
    help=(
        "Code Knowledge Engine: index source code and docs, then search them.\n\n"
        "  cke index src/           Parse and index local source files.\n"
        "  cke crawl URL --depth 1  Fetch web pages and index their code blocks.\n"
        "  cke search \"class Config\" Ranked, intent-aware search."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Code Knowledge Engine."""
    configure_logging(verbose)


app.command("index")(index_cmd)
app.command("crawl")(crawl_cmd)
app.command("search")(search_cmd)
app.command("remove")(remove_cmd)
app.command("clear")(clear_cmd)
app.command("status")(status_cmd)
app.command("compact")(compact_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed cke version."""
    typer.echo(f"cke {_version()}")


if __name__ == "__main__":
    app()
