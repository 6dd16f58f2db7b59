"""Tables commands for the table engine CLI."""

from pathlib import Path
from typing import Any, List, Optional
import json

import typer
import yaml

from ..main import finish, get_engine, state
from ..output import parse_json_option, print_dict, print_success, print_table

app = typer.Typer(help="Manage project tables")


def load_document(path: Path) -> Any:
    """Load a JSON or YAML document (chosen by file extension)."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        return yaml.safe_load(text)
    return json.loads(text)


@app.command("create")
def create_table(
    project: int = typer.Argument(..., help="Project ID"),
    name: Optional[str] = typer.Argument(None, help="Table name (overrides the file)"),
    columns: Optional[str] = typer.Option(
        None, "--columns", "-c",
        help='Columns as JSON: \'[{"name":"id","type":"integer","isPrimary":true}]\''
    ),
    file: Optional[Path] = typer.Option(
        None, "--file", "-f",
        help="Table definition as a JSON or YAML file"
    ),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Table description"),
    timestamps: bool = typer.Option(False, "--timestamps", help="Add created_at/updated_at"),
    soft_delete: bool = typer.Option(False, "--soft-delete", help="Add deleted_at"),
    generate_api: bool = typer.Option(False, "--generate-api", help="Register default CRUD APIs"),
) -> None:
    """Create a new table.

    Examples:
        table-engine tables create 1 produtos \\
            --columns '[{"name":"id","type":"integer","isPrimary":true},{"name":"nome","type":"string"}]'

        table-engine tables create 1 --file produtos.yaml
    """
    if not columns and not file:
        typer.echo("Error: Either --columns or --file is required", err=True)
        raise typer.Exit(1)

    if columns and file:
        typer.echo("Error: Use either --columns or --file, not both", err=True)
        raise typer.Exit(1)

    if file:
        if not file.exists():
            typer.echo(f"Error: File not found: {file}", err=True)
            raise typer.Exit(1)
        loaded = load_document(file)
        definition = loaded if isinstance(loaded, dict) else {"columns": loaded}
    else:
        definition = {"columns": parse_json_option(columns, "--columns")}

    if name:
        definition["name"] = name
    if description is not None:
        definition["description"] = description
    # Flags only switch features on; a file may already enable them
    if timestamps:
        definition["timestamps"] = True
    if soft_delete:
        definition["softDelete"] = True
    if generate_api:
        definition["generateApi"] = True

    result = finish(get_engine().create_table(project, definition))

    if not state.json_output:
        table = result.data
        print_success(f"Table '{table.table_name}' created successfully")
        print_dict({
            "Name": table.table_name,
            "Columns": len(table.structure),
            "Primary Key": table.primary_key.name if table.primary_key else "-",
            "APIs": len((result.meta or {}).get("apis", [])),
        })


@app.command("list")
def list_tables(
    project: int = typer.Argument(..., help="Project ID"),
    built_in: bool = typer.Option(True, "--built-in/--no-built-in", help="Include built-in tables"),
) -> None:
    """List tables of a project."""
    result = finish(get_engine().list_tables(project, include_built_in=built_in))

    if state.json_output:
        return

    tables = result.data
    if not tables:
        typer.echo(f"No tables found in project {project}")
        return

    print_table([
        {
            "name": table.table_name,
            "displayName": table.display_name,
            "columns": len(table.structure),
            "apiEnabled": table.api_enabled,
            "builtIn": table.is_built_in,
        }
        for table in tables
    ])
    typer.echo(f"\nTotal: {len(tables)} table(s)")


@app.command("schema")
def table_schema(
    project: int = typer.Argument(..., help="Project ID"),
    table: str = typer.Argument(..., help="Table name"),
) -> None:
    """Show the live schema of a table."""
    result = finish(get_engine().get_table_schema(project, table))

    if state.json_output:
        return

    schema = result.data
    print_table(
        [col.model_dump(mode="json", by_alias=True) for col in schema.columns],
        columns=["name", "type", "physicalType", "nullable", "isPrimary", "unique", "defaultValue"],
        title=schema.table_name,
    )
    for index in schema.indexes:
        unique = "unique " if index.unique else ""
        typer.echo(f"Index {index.name}: {unique}({', '.join(index.columns)})")


@app.command("drop")
def drop_table(
    project: int = typer.Argument(..., help="Project ID"),
    table: str = typer.Argument(..., help="Table name"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    """Drop a table and deactivate its APIs."""
    if not force:
        typer.confirm(f"Drop table '{table}' and all its records?", abort=True)

    result = finish(get_engine().drop_table(project, table))

    if not state.json_output:
        print_success(f"Table '{table}' dropped")
        deactivated = result.data.get("apis_deactivated", 0)
        if deactivated:
            typer.echo(f"{deactivated} API(s) deactivated")


@app.command("alter")
def alter_table(
    project: int = typer.Argument(..., help="Project ID"),
    table: str = typer.Argument(..., help="Table name"),
    add: Optional[str] = typer.Option(None, "--add", help="Columns to add as JSON list"),
    drop: Optional[List[str]] = typer.Option(None, "--drop", help="Column to drop (repeatable)"),
    alter: Optional[str] = typer.Option(
        None, "--alter",
        help='Column changes as JSON list: \'[{"name":"price","type":"decimal"}]\''
    ),
) -> None:
    """Add, drop or change columns of a table."""
    alterations = {
        "addColumns": parse_json_option(add, "--add") or [],
        "dropColumns": drop or [],
        "alterColumns": parse_json_option(alter, "--alter") or [],
    }
    result = finish(get_engine().alter_table(project, table, alterations))

    if not state.json_output:
        print_success(f"Table '{table}' altered")
        typer.echo("Columns: " + ", ".join(col.name for col in result.data.structure))


@app.command("index-add")
def add_index(
    project: int = typer.Argument(..., help="Project ID"),
    table: str = typer.Argument(..., help="Table name"),
    index: str = typer.Argument(..., help="Index name"),
    columns: str = typer.Option(..., "--columns", "-c", help="Indexed columns (comma-separated)"),
    unique: bool = typer.Option(False, "--unique", help="Create a unique index"),
) -> None:
    """Create a named index."""
    column_list = [col.strip() for col in columns.split(",") if col.strip()]
    result = finish(get_engine().add_index(project, table, index, column_list, unique=unique))

    if not state.json_output:
        print_success(f"Index '{result.data.name}' created on {table}({', '.join(result.data.columns)})")


@app.command("index-drop")
def drop_index(
    project: int = typer.Argument(..., help="Project ID"),
    table: str = typer.Argument(..., help="Table name"),
    index: str = typer.Argument(..., help="Index name"),
) -> None:
    """Drop a named index."""
    finish(get_engine().drop_index(project, table, index))

    if not state.json_output:
        print_success(f"Index '{index}' dropped")
