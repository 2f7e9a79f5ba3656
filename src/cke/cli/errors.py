"""CKE rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from cke.cli.errors import err_index_corrupt
    console.print(err_index_corrupt(".cke"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from cke.errors import CKEError, ErrorKind, SchemaMismatchError


def err_index_corrupt(data_dir: str) -> str:
    """The stores under *data_dir* cannot be read."""
    return (
        f"[red]Error:[/] The index at '{data_dir}' is corrupt.\n"
        "  Run:  cke clear --yes  then re-index your sources."
    )


def err_schema_mismatch(found: str | None, expected: str) -> str:
    """On-disk schema version differs from this build."""
    return (
        f"[red]Error:[/] Index schema version {found!r} does not match this version of cke ({expected!r}).\n"
        "  Rebuild it:  cke index --rebuild <paths>   or   cke clear --yes"
    )


def err_index_locked(data_dir: str) -> str:
    """Another process holds the writer lock."""
    return (
        f"[red]Error:[/] Another process is writing to the index at '{data_dir}'.\n"
        "  Wait for it to finish (only one writer is allowed), then retry."
    )


def err_config(message: str) -> str:
    """cke.yaml, ~/.cke/config.yaml or a CKE_* variable is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        "  Fix cke.yaml (or ~/.cke/config.yaml / the CKE_* environment variables) and retry."
    )


def err_invalid_query(message: str) -> str:
    """Malformed search query or filter."""
    return (
        f"[red]Error:[/] {message}\n"
        '  Query syntax:  words  "a phrase"  path:src/lib.rs  language:python  content:"some text"'
    )


def err_not_indexed(target: str) -> str:
    """Nothing is indexed under a path or URL."""
    return (
        f"[yellow]Not indexed:[/] '{target}' is not in the index.\n"
        "  Run:  cke status  to see what is indexed."
    )


def err_no_paths() -> str:
    return (
        "[red]Error:[/] No paths given.\n"
        "  Example:  cke index src/ lib/tools.py"
    )


def err_cancelled() -> str:
    return "[yellow]Cancelled:[/] staged changes were rolled back; the index is unchanged."


def err_generic(exc: CKEError) -> str:
    """Fallback for any other engine error, dispatched on its kind."""
    if isinstance(exc, SchemaMismatchError):
        return err_schema_mismatch(exc.found, exc.expected)
    if exc.kind is ErrorKind.CANCELLED:
        return err_cancelled()
    return f"[red]Error ({exc.kind.value}):[/] {exc.message}"
