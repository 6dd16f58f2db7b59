"""Main CLI entry point for the table engine."""

import logging
import sys
from typing import Optional

import typer

from table_engine import __version__
from table_engine.engine import TableEngine
from table_engine.logging_setup import setup_logging
from table_engine.models import QueryResult
from .output import print_failure, print_json, result_payload


# Create main app
app = typer.Typer(
    name="table-engine",
    help="Manage per-project tables and records",
    no_args_is_help=True,
)

# Global state
class GlobalState:
    json_output: bool = False
    verbose: bool = False

state = GlobalState()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        print(f"table-engine version {__version__}")
        raise typer.Exit()


def get_engine() -> TableEngine:
    """Engine bound to the configured database, with the registry created."""
    engine = TableEngine()
    engine.initialize()
    return engine


def finish(result: QueryResult) -> QueryResult:
    """Print a failed result (or the JSON envelope) and exit non-zero on failure."""
    if state.json_output:
        print_json(result_payload(result))
    elif not result.success:
        print_failure(result)
    if not result.success:
        raise typer.Exit(1)
    return result


@app.callback()
def main(
    json_output: bool = typer.Option(
        False, "--json", "-j",
        help="Output as JSON instead of tables"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Show debug information"
    ),
    version: Optional[bool] = typer.Option(
        None, "--version", "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit"
    ),
) -> None:
    """Table engine CLI - create project tables and work with their records."""
    state.json_output = json_output
    state.verbose = verbose
    setup_logging(
        debug=verbose,
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
    )


# Import and register command groups
from .commands import records, tables

app.add_typer(tables.app, name="tables")
app.add_typer(records.app, name="records")


if __name__ == "__main__":
    app()
