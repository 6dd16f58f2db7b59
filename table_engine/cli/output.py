"""Output formatting for CLI."""

from typing import Any
import json

from rich.console import Console
from rich.table import Table
from rich import box
import typer

from table_engine.models import QueryResult


console = Console()
error_console = Console(stderr=True)


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    print(json.dumps(data, indent=2, default=str))


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (list, dict)):
        return json.dumps(value, default=str)
    return str(value)


def print_table(
    data: list[dict[str, Any]],
    columns: list[str] | None = None,
    title: str | None = None,
) -> None:
    """Print a list of dicts as a formatted table."""
    if not data:
        console.print("[dim]No data[/dim]")
        return

    if columns is None:
        columns = list(data[0].keys())

    table = Table(title=title, box=box.ROUNDED)
    for col in columns:
        table.add_column(col, style="cyan" if col in ("id", "name", "tableName") else None)

    for row in data:
        table.add_row(*[_cell(row.get(col)) for col in columns])

    console.print(table)


def print_dict(
    data: dict[str, Any],
    title: str | None = None,
) -> None:
    """Print a single dict as a key-value table."""
    table = Table(title=title, box=box.ROUNDED, show_header=False)
    table.add_column("Key", style="cyan")
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, _cell(value))

    console.print(table)


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]{message}[/green]")


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]Error: {message}[/red]")


def print_failure(result: QueryResult) -> None:
    """Print the error of a failed engine result, including field errors."""
    error = result.error
    print_error(f"{error.message} ({error.error})")
    for item in (error.details or {}).get("errors", []):
        error_console.print(f"  - {item.get('field')}: {item.get('message')}")


def result_payload(result: QueryResult) -> dict[str, Any]:
    """Envelope as JSON-ready dict with camelCase keys."""
    return result.model_dump(mode="json", by_alias=True)


def parse_json_option(value: str | None, option: str) -> Any:
    """Decode a JSON command-line value, exiting with an error when malformed."""
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        error_console.print(f"[red]Error: Invalid JSON for {option}: {e}[/red]")
        raise typer.Exit(1)
