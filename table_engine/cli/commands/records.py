"""Records commands for the table engine CLI."""

from typing import Any, List, Optional
import json

import typer

from ..main import finish, get_engine, state
from ..output import parse_json_option, print_dict, print_success, print_table

app = typer.Typer(help="Work with table records")

FILTER_OPERATORS = ("eq", "neq", "gt", "gte", "lt", "lte", "like", "ilike", "in", "between")


def parse_filter(expression: str) -> dict[str, Any]:
    """Parse ``field:operator:value``; the value is JSON-decoded when possible.

    Examples: ``price:gt:10``, ``status:in:["new","paid"]``, ``n:between:[3,5]``
    """
    parts = expression.split(":", 2)
    if len(parts) != 3 or parts[1] not in FILTER_OPERATORS:
        typer.echo(
            f"Error: Invalid filter '{expression}', expected field:operator:value "
            f"with operator one of {', '.join(FILTER_OPERATORS)}",
            err=True,
        )
        raise typer.Exit(1)
    field, operator, raw = parts
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = raw
    return {"field": field, "operator": operator, "value": value}


def parse_data(data: str) -> dict[str, Any]:
    parsed = parse_json_option(data, "data")
    if not isinstance(parsed, dict):
        typer.echo("Error: Record data must be a JSON object", err=True)
        raise typer.Exit(1)
    return parsed


@app.command("insert")
def insert_record(
    project: int = typer.Argument(..., help="Project ID"),
    table: str = typer.Argument(..., help="Table name"),
    data: str = typer.Argument(..., help='Record as JSON: \'{"nome":"Caneta","preco":2.5}\''),
) -> None:
    """Insert a record."""
    result = finish(get_engine().insert_record(project, table, parse_data(data)))

    if not state.json_output:
        print_success(f"Record inserted into '{table}'")
        print_dict(result.data)


@app.command("get")
def get_record(
    project: int = typer.Argument(..., help="Project ID"),
    table: str = typer.Argument(..., help="Table name"),
    record_id: str = typer.Argument(..., help="Primary key value"),
    include_deleted: bool = typer.Option(False, "--include-deleted", help="Include soft-deleted records"),
) -> None:
    """Show a record by primary key."""
    result = finish(
        get_engine().get_record_by_id(project, table, record_id, include_deleted=include_deleted)
    )

    if not state.json_output:
        print_dict(result.data, title=f"{table} {record_id}")


@app.command("update")
def update_record(
    project: int = typer.Argument(..., help="Project ID"),
    table: str = typer.Argument(..., help="Table name"),
    record_id: str = typer.Argument(..., help="Primary key value"),
    data: str = typer.Argument(..., help="Changed fields as JSON"),
) -> None:
    """Update fields of a record."""
    result = finish(get_engine().update_record(project, table, record_id, parse_data(data)))

    if not state.json_output:
        print_success(f"Record {record_id} updated")
        print_dict(result.data)


@app.command("delete")
def delete_record(
    project: int = typer.Argument(..., help="Project ID"),
    table: str = typer.Argument(..., help="Table name"),
    record_id: str = typer.Argument(..., help="Primary key value"),
    mode: Optional[str] = typer.Option(
        None, "--mode", "-m",
        help="soft, hard or auto (default from settings)"
    ),
) -> None:
    """Delete a record."""
    result = finish(get_engine().delete_record(project, table, record_id, mode=mode))

    if not state.json_output:
        print_success(f"Record {record_id} deleted ({result.data['mode']})")


@app.command("query")
def query_records(
    project: int = typer.Argument(..., help="Project ID"),
    table: str = typer.Argument(..., help="Table name"),
    filters: Optional[List[str]] = typer.Option(
        None, "--filter", "-f",
        help="Filter as field:operator:value (repeatable, combined with AND)"
    ),
    page: int = typer.Option(1, "--page", "-p", min=1, help="Page number"),
    page_size: Optional[int] = typer.Option(None, "--page-size", "-s", min=1, help="Rows per page"),
    order_by: Optional[str] = typer.Option(None, "--order-by", "-o", help="Order column"),
    desc: bool = typer.Option(False, "--desc", help="Descending order"),
    include_deleted: bool = typer.Option(False, "--include-deleted", help="Include soft-deleted records"),
) -> None:
    """Query records with filters and pagination."""
    pagination = {
        "page": page,
        "pageSize": page_size,
        "orderBy": order_by,
        "orderDirection": "desc" if desc else "asc",
    }
    result = finish(
        get_engine().query_records(
            project,
            table,
            filters=[parse_filter(expr) for expr in filters or []],
            pagination=pagination,
            include_deleted=include_deleted,
        )
    )

    if state.json_output:
        return

    meta = result.meta["pagination"]
    if not result.data:
        typer.echo(f"No records found in {table}")
    else:
        print_table(result.data)
    typer.echo(
        f"\nPage {meta['page']} of {max(meta['totalPages'], 1)} "
        f"({meta['total']} record(s))"
    )
