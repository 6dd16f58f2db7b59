"""Live catalog introspection of project tables.

The registry keeps a cached ``structure`` per table; this module reads the
ground truth from DuckDB's catalog and reconciles the two.
"""

import re
from dataclasses import dataclass

import duckdb

from table_engine.column_types import (
    catalog_type,
    infer_logical_type,
    normalize_catalog_type,
    physical_type,
)
from table_engine.models import IndexInfo, TableColumn
from table_engine.naming import logical_index_name

_INDEX_COLUMNS_RE = re.compile(r"\(([^()]*)\)\s*;?\s*$")


@dataclass
class LiveColumn:
    """Column as reported by information_schema and duckdb_constraints()."""

    name: str
    data_type: str
    nullable: bool
    has_default: bool
    is_primary: bool = False
    unique: bool = False


def table_exists(conn: duckdb.DuckDBPyConnection, physical_name: str) -> bool:
    result = conn.execute(
        """
        SELECT 1 FROM information_schema.tables
        WHERE table_schema = 'main' AND table_name = ? AND table_type = 'BASE TABLE'
        """,
        [physical_name],
    ).fetchone()
    return result is not None


def introspect_columns(conn: duckdb.DuckDBPyConnection, physical_name: str) -> list[LiveColumn]:
    """
    Read columns, nullability, primary key and unique constraints.

    Returns an empty list when the table does not exist.
    """
    rows = conn.execute(
        """
        SELECT column_name, data_type, is_nullable, column_default
        FROM information_schema.columns
        WHERE table_schema = 'main' AND table_name = ?
        ORDER BY ordinal_position
        """,
        [physical_name],
    ).fetchall()

    columns = [
        LiveColumn(
            name=row[0],
            data_type=row[1],
            nullable=row[2] == "YES",
            has_default=row[3] is not None,
        )
        for row in rows
    ]
    if not columns:
        return columns

    constraints = conn.execute(
        """
        SELECT constraint_type, constraint_column_names
        FROM duckdb_constraints()
        WHERE schema_name = 'main' AND table_name = ?
          AND constraint_type IN ('PRIMARY KEY', 'UNIQUE')
        """,
        [physical_name],
    ).fetchall()

    by_name = {col.name: col for col in columns}
    for constraint_type, column_names in constraints:
        names = list(column_names or [])
        for name in names:
            col = by_name.get(name)
            if col is None:
                continue
            if constraint_type == "PRIMARY KEY":
                col.is_primary = True
            elif len(names) == 1:
                col.unique = True
    return columns


def reconcile_structure(
    live: list[LiveColumn],
    hints: list[TableColumn],
) -> list[TableColumn]:
    """
    Build the cached structure from the live catalog.

    ``hints`` carries what the catalog cannot express: the logical type
    where storage is shared (string/text), defaults and references.
    """
    hint_by_name = {col.name.lower(): col for col in hints}
    structure = []
    for col in live:
        hint = hint_by_name.get(col.name.lower())
        logical = infer_logical_type(col.data_type, hint.type if hint else None)
        structure.append(
            TableColumn(
                name=col.name,
                type=logical,
                physical_type=hint.physical_type if hint and hint.type == logical else physical_type(logical),
                nullable=col.nullable and not col.is_primary,
                is_primary=col.is_primary,
                is_foreign=hint.is_foreign if hint else False,
                unique=col.unique,
                default_value=hint.default_value if hint and col.has_default else None,
                references=hint.references if hint else None,
            )
        )
    return structure


def diff_structure(cached: list[TableColumn], live: list[LiveColumn]) -> list[str]:
    """Describe every disagreement between the cached structure and the catalog."""
    differences = []
    live_by_name = {col.name.lower(): col for col in live}
    cached_names = {col.name.lower() for col in cached}

    for col in cached:
        current = live_by_name.get(col.name.lower())
        if current is None:
            differences.append(f"column '{col.name}' is missing from the table")
            continue
        expected_type = normalize_catalog_type(catalog_type(col.type))
        actual_type = normalize_catalog_type(current.data_type)
        if expected_type != actual_type:
            differences.append(
                f"column '{col.name}' has type {actual_type}, expected {expected_type}"
            )
        if col.nullable != (current.nullable and not current.is_primary):
            differences.append(
                f"column '{col.name}' nullability is {'NULL' if current.nullable else 'NOT NULL'}"
            )
        if col.is_primary != current.is_primary:
            differences.append(f"column '{col.name}' primary key flag differs")

    for col in live:
        if col.name.lower() not in cached_names:
            differences.append(f"column '{col.name}' is not in the cached structure")

    return differences


def list_indexes(conn: duckdb.DuckDBPyConnection, physical_name: str) -> list[IndexInfo]:
    """Indexes created on a table, named by their logical names."""
    rows = conn.execute(
        """
        SELECT index_name, is_unique, sql
        FROM duckdb_indexes()
        WHERE schema_name = 'main' AND table_name = ?
        ORDER BY index_name
        """,
        [physical_name],
    ).fetchall()
    return [
        IndexInfo(
            name=logical_index_name(physical_name, name),
            columns=_index_columns(sql or ""),
            unique=bool(is_unique),
        )
        for name, is_unique, sql in rows
    ]


def index_exists(conn: duckdb.DuckDBPyConnection, physical_index: str) -> bool:
    result = conn.execute(
        "SELECT 1 FROM duckdb_indexes() WHERE schema_name = 'main' AND index_name = ?",
        [physical_index],
    ).fetchone()
    return result is not None


def _index_columns(sql: str) -> list[str]:
    match = _INDEX_COLUMNS_RE.search(sql.strip())
    if not match:
        return []
    return [part.strip().strip('"') for part in match.group(1).split(",") if part.strip()]
