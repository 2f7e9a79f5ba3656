"""cke search: ranked, intent-aware lookup over the committed index."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from cke.cli.session import open_engine
from cke.search.optimizer import SearchResultItem

console = Console()


def search_cmd(
    query: Annotated[str, typer.Argument(help='Query, e.g.  parse config  or  "class Config" language:python')],
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", "-d", help="Index directory (default: data_dir from cke.yaml, else .cke)."),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum number of results.")] = 10,
    language: Annotated[
        list[str] | None,
        typer.Option("--language", "-l", help="Only these languages (repeatable)."),
    ] = None,
    element_type: Annotated[
        list[str] | None,
        typer.Option("--type", "-t", help="Only these element types, e.g. function, class (repeatable)."),
    ] = None,
    path_prefix: Annotated[
        str | None,
        typer.Option("--path-prefix", help="Only paths or URLs starting with this prefix."),
    ] = None,
    max_age: Annotated[
        float | None,
        typer.Option("--max-age", min=0, help="Only files modified within this many seconds."),
    ] = None,
    source: Annotated[
        str | None,
        typer.Option("--source", help="Only 'local' files or 'remote' pages."),
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print results as JSON.")] = False,
    explain: Annotated[bool, typer.Option("--explain", help="Show why each result ranked where it did.")] = False,
) -> None:
    """Search indexed code and pages."""
    filters: dict[str, Any] = {}
    if language:
        filters["language"] = language
    if element_type:
        filters["element_type"] = element_type
    if path_prefix:
        filters["path_prefix"] = path_prefix
    if max_age is not None:
        filters["max_age_seconds"] = max_age
    if source:
        filters["source"] = source

    with open_engine(data_dir, console) as engine:
        results = engine.search(query, limit, filters=filters or None)
        engine.commit()

    if as_json:
        typer.echo(json.dumps([result_to_dict(r) for r in results], indent=2))
        return
    if not results:
        console.print(f"[dim]No results for[/] '{query}'.")
        return
    _print_results(results, explain)


def result_to_dict(item: SearchResultItem) -> dict[str, Any]:
    score = item.score
    return {
        "path": item.path,
        "line": item.element.line,
        "name": item.element.name,
        "element_type": item.element.element_type.value,
        "language": item.element.language,
        "element_id": item.element.element_id,
        "result_type": item.result_type,
        "intent": item.intent,
        "matched_keywords": item.matched_keywords,
        "score": {
            "overall": score.overall,
            "relevance": score.relevance,
            "personalization": score.personalization,
            "diversity": score.diversity,
            "freshness": score.freshness,
            "match_type": score.match_type.value,
        },
        "explanation": item.relevance_explanation,
    }


def _print_results(results: list[SearchResultItem], explain: bool) -> None:
    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("#", justify="right", style="dim")
    table.add_column("Score", justify="right", style="bold")
    table.add_column("Type", style="cyan")
    table.add_column("Name")
    table.add_column("Location", style="dim")
    if explain:
        table.add_column("Why", style="dim")
    for rank, item in enumerate(results, start=1):
        row = [
            str(rank),
            str(item.score.overall),
            item.element.element_type.value,
            item.element.name,
            f"{item.path}:{item.element.line}",
        ]
        if explain:
            row.append(f"{item.score.match_type.value}; {item.relevance_explanation}")
        table.add_row(*row)
    console.print(table)
    console.print(f"[dim]Intent: {results[0].intent}[/]")
