#!/usr/bin/env python3
"""
steadykey CLI - deterministic idempotency keys

Main entrypoint for the steadykey command-line tool.

Examples:
    steadykey key '{"order_id": "order-123", "total": 42.5}'
    echo '{"b": 1, "a": 2}' | steadykey canonical -
    steadykey key --file payload.json --algorithm sha512 --json
"""

import json
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from steadykey import __version__
from steadykey.config import DEFAULT_KEY_PREFIX, normalize_key_prefix
from steadykey.core.canonical import canonicalize
from steadykey.core.errors import IdempotencyError
from steadykey.core.hashing import DEFAULT_HASH_ALGORITHM, SUPPORTED_HASH_ALGORITHMS, hash_canonical_value

app = typer.Typer(
    name="steadykey",
    help="Deterministic idempotency keys for JSON payloads",
    add_completion=False,
)

console = Console()
err_console = Console(stderr=True)


def _load_payload(payload: Optional[str], file: Optional[Path]) -> Any:
    """Read the payload from --file, stdin ("-") or the argument, and parse it."""
    if file is not None:
        text = file.read_text(encoding="utf-8")
    elif payload == "-":
        text = sys.stdin.read()
    elif payload is not None:
        text = payload
    else:
        err_console.print("[red]Error:[/red] provide a JSON payload, '-' for stdin, or --file")
        raise typer.Exit(2)

    try:
        return json.loads(text)
    except ValueError as e:
        err_console.print(f"[red]Error: invalid JSON payload:[/red] {e}")
        raise typer.Exit(2)


@app.command()
def key(
    payload: Optional[str] = typer.Argument(None, help="JSON payload, or '-' to read stdin"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", exists=True, dir_okay=False, help="Read payload from file"),
    algorithm: str = typer.Option(DEFAULT_HASH_ALGORITHM, "--algorithm", "-a", help="sha256 or sha512"),
    prefix: str = typer.Option(DEFAULT_KEY_PREFIX, "--prefix", "-p", help="Storage key prefix"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """
    Print the idempotency id of a payload.
    """
    data = _load_payload(payload, file)
    try:
        canonical = canonicalize(data)
        record_id = hash_canonical_value(canonical, algorithm)
        storage_key = f"{normalize_key_prefix(prefix)}:{record_id}"
    except IdempotencyError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2)

    if json_output:
        print(json.dumps({"id": record_id, "key": storage_key, "algorithm": algorithm, "canonical": canonical}))
    else:
        typer.echo(record_id)


@app.command()
def canonical(
    payload: Optional[str] = typer.Argument(None, help="JSON payload, or '-' to read stdin"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", exists=True, dir_okay=False, help="Read payload from file"),
):
    """
    Print the canonical form of a payload.
    """
    data = _load_payload(payload, file)
    try:
        typer.echo(canonicalize(data))
    except IdempotencyError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2)


@app.command()
def version():
    """Show version information."""
    table = Table(show_header=False, box=None)
    table.add_row("[bold]steadykey[/bold]", f"v{__version__}")
    table.add_row("Hash algorithms", ", ".join(SUPPORTED_HASH_ALGORITHMS))

    console.print(table)


def main():
    """Main entrypoint."""
    app()


if __name__ == "__main__":
    main()
