"""Generic record access for project tables.

Statements are built from the cached table structure. Table and column
names come from the registry and are always quoted identifiers; every
value travels as a bind parameter.
"""

import math
from typing import Any

import duckdb
import structlog

from table_engine import catalog
from table_engine.column_types import coerce_value, decode_value
from table_engine.config import settings
from table_engine.database import EngineDB
from table_engine.errors import NotFoundError, SchemaDriftError, ValidationError
from table_engine.ids import generate_record_id
from table_engine.models import (
    FieldRule,
    LogicalType,
    PaginationMeta,
    PaginationOptions,
    ProjectDatabase,
    QueryFilter,
    RecordPage,
    TableColumn,
    parse_model,
)
from table_engine.naming import quote_identifier
from table_engine.resolver import IsolationResolver, ResolvedTable
from table_engine.validator import SOFT_DELETE_COLUMN, check_record, validate_data

logger = structlog.get_logger()

COMPARISON_OPERATORS = {
    "eq": "=",
    "neq": "<>",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}

DELETE_MODES = ("auto", "soft", "hard")

_TEXT_TYPES = (LogicalType.STRING, LogicalType.TEXT)


class RecordAccessLayer:
    """CRUD and filtered, paginated queries over registered project tables."""

    def __init__(self, db: EngineDB, resolver: IsolationResolver) -> None:
        self.db = db
        self.resolver = resolver

    # ========================================
    # Helpers
    # ========================================

    def _resolve(
        self,
        conn: duckdb.DuckDBPyConnection,
        project_id: int,
        table_name: str,
    ) -> ResolvedTable:
        resolved = self.resolver.resolve(project_id, table_name, conn=conn)
        if settings.verify_structure_on_access:
            live = catalog.introspect_columns(conn, resolved.physical_name)
            differences = (
                catalog.diff_structure(resolved.record.structure, live)
                if live
                else [f"table '{resolved.table_name}' is missing from the store"]
            )
            if differences:
                raise SchemaDriftError(
                    f"Cached structure of table '{resolved.table_name}' disagrees with the store",
                    details={"table_name": resolved.table_name, "differences": differences},
                )
        return resolved

    @staticmethod
    def _primary_key(table: ProjectDatabase) -> TableColumn:
        pk = table.primary_key
        if pk is None:
            raise SchemaDriftError(
                f"Table '{table.table_name}' has no primary key",
                details={"table_name": table.table_name},
            )
        return pk

    @staticmethod
    def _key_value(pk: TableColumn, record_id: Any) -> Any:
        try:
            value = coerce_value(pk.type, record_id)
        except ValueError as e:
            raise ValidationError(
                f"Invalid id '{record_id}': {e}",
                error="invalid_id",
                details={"field": pk.name},
            ) from None
        if value is None:
            raise ValidationError("Record id is required", error="invalid_id")
        return value

    @staticmethod
    def _include_deleted(include_deleted: bool | None) -> bool:
        return settings.include_deleted_default if include_deleted is None else include_deleted

    @staticmethod
    def _fetch_rows(
        result: duckdb.DuckDBPyConnection,
        table: ProjectDatabase,
    ) -> list[dict[str, Any]]:
        names = [desc[0] for desc in result.description]
        types = {}
        for name in names:
            col = table.column(name)
            types[name] = col.type if col else None
        return [
            {
                name: decode_value(types[name], value) if types[name] else value
                for name, value in zip(names, row)
            }
            for row in result.fetchall()
        ]

    @staticmethod
    def _schema_errors(
        data: dict[str, Any],
        schema: dict[str, FieldRule | dict[str, Any]] | None,
        partial: bool,
    ) -> None:
        if not schema:
            return
        if partial:
            schema = {name: rule for name, rule in schema.items() if name in data}
        errors = validate_data(data, schema)
        if errors:
            raise ValidationError(
                "Record failed schema validation",
                errors=errors,
                error="schema_validation_failed",
            )

    # ========================================
    # Single-row operations
    # ========================================

    def insert_record(
        self,
        project_id: int,
        table_name: str,
        data: dict[str, Any],
        schema: dict[str, FieldRule | dict[str, Any]] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Insert a record and return the stored row.

        An omitted primary key is generated: integer keys draw from the
        table's sequence, string keys get a prefixed random id.
        """
        with self.db.transaction(timeout=timeout) as conn:
            resolved = self._resolve(conn, project_id, table_name)
            table = resolved.record
            values = check_record(table, data)
            self._schema_errors(data, schema, partial=False)

            pk = self._primary_key(table)
            if values.get(pk.name) is None:
                values.pop(pk.name, None)
                if pk.type in _TEXT_TYPES and pk.default_value is None:
                    values[pk.name] = generate_record_id(table.table_name)

            physical = quote_identifier(resolved.physical_name)
            if values:
                columns = ", ".join(quote_identifier(name) for name in values)
                placeholders = ", ".join("?" for _ in values)
                sql = f"INSERT INTO {physical} ({columns}) VALUES ({placeholders}) RETURNING *"
            else:
                sql = f"INSERT INTO {physical} DEFAULT VALUES RETURNING *"
            rows = self._fetch_rows(conn.execute(sql, list(values.values())), table)

        return rows[0]

    def get_record_by_id(
        self,
        project_id: int,
        table_name: str,
        record_id: Any,
        include_deleted: bool | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        with self.db.connection(timeout=timeout) as conn:
            resolved = self._resolve(conn, project_id, table_name)
            table = resolved.record
            pk = self._primary_key(table)
            key = self._key_value(pk, record_id)

            sql = (
                f"SELECT * FROM {quote_identifier(resolved.physical_name)} "
                f"WHERE {quote_identifier(pk.name)} = ?"
            )
            if table.has_soft_delete and not self._include_deleted(include_deleted):
                sql += f" AND {quote_identifier(SOFT_DELETE_COLUMN)} IS NULL"
            rows = self._fetch_rows(conn.execute(sql, [key]), table)

        if not rows:
            raise NotFoundError(
                f"Record '{record_id}' not found in table '{table.table_name}'",
                error="record_not_found",
                details={"table_name": table.table_name, "id": str(record_id)},
            )
        return rows[0]

    def update_record(
        self,
        project_id: int,
        table_name: str,
        record_id: Any,
        data: dict[str, Any],
        schema: dict[str, FieldRule | dict[str, Any]] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Update fields of one record.

        The primary key is immutable: it may only be repeated with its
        current value. ``updated_at`` is refreshed when the table has it.
        """
        if not isinstance(data, dict) or not data:
            raise ValidationError("No fields to update", error="no_changes_specified")

        with self.db.transaction(timeout=timeout) as conn:
            resolved = self._resolve(conn, project_id, table_name)
            table = resolved.record
            pk = self._primary_key(table)
            key = self._key_value(pk, record_id)

            changes = {}
            for name, value in data.items():
                col = table.column(name) if isinstance(name, str) else None
                if col is not None and col.is_primary:
                    try:
                        same = coerce_value(pk.type, value) == key
                    except ValueError:
                        same = False
                    if not same:
                        raise ValidationError(
                            f"Primary key '{pk.name}' cannot be modified",
                            errors=[{
                                "field": pk.name,
                                "message": "Primary key is immutable",
                                "code": "immutable_primary_key",
                            }],
                            error="immutable_primary_key",
                        )
                    continue
                changes[name] = value

            values = check_record(table, changes, partial=True)
            self._schema_errors(changes, schema, partial=True)

            assignments = [f"{quote_identifier(name)} = ?" for name in values]
            updated_at = table.column("updated_at")
            if updated_at is not None and updated_at.name not in values:
                assignments.append(f"{quote_identifier(updated_at.name)} = current_timestamp")
            if not assignments:
                raise ValidationError("No fields to update", error="no_changes_specified")

            sql = (
                f"UPDATE {quote_identifier(resolved.physical_name)} SET {', '.join(assignments)} "
                f"WHERE {quote_identifier(pk.name)} = ?"
            )
            if table.has_soft_delete:
                sql += f" AND {quote_identifier(SOFT_DELETE_COLUMN)} IS NULL"
            rows = self._fetch_rows(
                conn.execute(sql + " RETURNING *", list(values.values()) + [key]), table
            )

        if not rows:
            raise NotFoundError(
                f"Record '{record_id}' not found in table '{table.table_name}'",
                error="record_not_found",
                details={"table_name": table.table_name, "id": str(record_id)},
            )
        return rows[0]

    def delete_record(
        self,
        project_id: int,
        table_name: str,
        record_id: Any,
        mode: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Delete one record.

        ``mode``: "soft" sets deleted_at, "hard" removes the row, None uses
        ``settings.default_delete_mode`` ("auto": soft when the table has a
        deleted_at column, hard otherwise).
        """
        mode = mode or settings.default_delete_mode
        if mode not in DELETE_MODES:
            raise ValidationError(
                f"Invalid delete mode '{mode}'",
                error="invalid_delete_mode",
                details={"allowed": list(DELETE_MODES)},
            )

        with self.db.transaction(timeout=timeout) as conn:
            resolved = self._resolve(conn, project_id, table_name)
            table = resolved.record
            pk = self._primary_key(table)
            key = self._key_value(pk, record_id)
            physical = quote_identifier(resolved.physical_name)
            pk_sql = quote_identifier(pk.name)

            if mode == "auto":
                mode = "soft" if table.has_soft_delete else "hard"
            if mode == "soft":
                if not table.has_soft_delete:
                    raise ValidationError(
                        f"Table '{table.table_name}' does not support soft delete",
                        error="soft_delete_unsupported",
                    )
                deleted_at = quote_identifier(SOFT_DELETE_COLUMN)
                assignments = [f"{deleted_at} = current_timestamp"]
                if table.column("updated_at") is not None:
                    assignments.append(f"{quote_identifier('updated_at')} = current_timestamp")
                sql = (
                    f"UPDATE {physical} SET {', '.join(assignments)} "
                    f"WHERE {pk_sql} = ? AND {deleted_at} IS NULL RETURNING {pk_sql}"
                )
            else:
                sql = f"DELETE FROM {physical} WHERE {pk_sql} = ? RETURNING {pk_sql}"
            row = conn.execute(sql, [key]).fetchone()

        if row is None:
            raise NotFoundError(
                f"Record '{record_id}' not found in table '{table.table_name}'",
                error="record_not_found",
                details={"table_name": table.table_name, "id": str(record_id)},
            )
        return {"id": row[0], "mode": mode}

    # ========================================
    # Queries
    # ========================================

    def build_predicate(
        self,
        table: ProjectDatabase,
        filters: list[QueryFilter | dict[str, Any]],
    ) -> tuple[list[str], list[Any]]:
        """
        Translate filters into AND-combined predicate fragments.

        Returns (fragments, params). Unknown fields and values that do not
        fit the column type are reported together.
        """
        fragments: list[str] = []
        params: list[Any] = []
        errors: list[dict[str, str]] = []

        for position, raw in enumerate(filters):
            label = f"filters[{position}]"
            flt = parse_model(QueryFilter, raw, label)
            col = table.column(flt.field)
            if col is None:
                errors.append({
                    "field": flt.field,
                    "message": f"Field '{flt.field}' does not exist in table '{table.table_name}'",
                    "code": "unknown_field",
                })
                continue
            try:
                fragment, values = self._translate(col, flt)
            except ValueError as e:
                errors.append({
                    "field": flt.field,
                    "message": f"Invalid value for operator '{flt.operator}': {e}",
                    "code": "invalid_filter",
                })
                continue
            fragments.append(fragment)
            params.extend(values)

        if errors:
            raise ValidationError("Invalid query filters", errors=errors, error="invalid_filter")
        return fragments, params

    @staticmethod
    def _translate(col: TableColumn, flt: QueryFilter) -> tuple[str, list[Any]]:
        column = quote_identifier(col.name)
        op = flt.operator

        if op in COMPARISON_OPERATORS:
            if flt.value is None:
                if op == "eq":
                    return f"{column} IS NULL", []
                if op == "neq":
                    return f"{column} IS NOT NULL", []
                raise ValueError("a value is required")
            return f"{column} {COMPARISON_OPERATORS[op]} ?", [coerce_value(col.type, flt.value)]

        if op in ("like", "ilike"):
            if flt.value is None or isinstance(flt.value, (list, dict)):
                raise ValueError("a text pattern is required")
            pattern = str(flt.value)
            if "%" not in pattern:
                pattern = f"%{pattern}%"
            target = column if col.type in _TEXT_TYPES else f"CAST({column} AS VARCHAR)"
            return f"{target} {'LIKE' if op == 'like' else 'ILIKE'} ?", [pattern]

        if op == "in":
            if not isinstance(flt.value, (list, tuple)):
                raise ValueError("a list of values is required")
            if not flt.value:
                return "FALSE", []
            values = [coerce_value(col.type, v) for v in flt.value]
            return f"{column} IN ({', '.join('?' for _ in values)})", values

        if op == "between":
            if not isinstance(flt.value, (list, tuple)) or len(flt.value) != 2:
                raise ValueError("exactly two values are required")
            low, high = (coerce_value(col.type, v) for v in flt.value)
            if low is None or high is None:
                raise ValueError("range bounds cannot be null")
            return f"{column} BETWEEN ? AND ?", [low, high]

        raise ValueError(f"unsupported operator '{op}'")

    def query_records(
        self,
        project_id: int,
        table_name: str,
        filters: list[QueryFilter | dict[str, Any]] | None = None,
        pagination: PaginationOptions | dict[str, Any] | None = None,
        include_deleted: bool | None = None,
        timeout: float | None = None,
    ) -> RecordPage:
        """
        Filtered, ordered, paginated query.

        The total is counted with the same predicate as the page, inside the
        same transaction, so it does not depend on the requested page.
        """
        pagination = parse_model(PaginationOptions, pagination or {}, "pagination")
        page = pagination.page or 1
        page_size = min(pagination.page_size or settings.default_page_size, settings.max_page_size)

        with self.db.transaction(timeout=timeout) as conn:
            resolved = self._resolve(conn, project_id, table_name)
            table = resolved.record
            fragments, params = self.build_predicate(table, filters or [])
            if table.has_soft_delete and not self._include_deleted(include_deleted):
                fragments.append(f"{quote_identifier(SOFT_DELETE_COLUMN)} IS NULL")
            where = f" WHERE {' AND '.join(fragments)}" if fragments else ""

            pk = table.primary_key
            if pagination.order_by:
                order_col = table.column(pagination.order_by)
                if order_col is None:
                    raise ValidationError(
                        f"Cannot order by unknown field '{pagination.order_by}'",
                        errors=[{
                            "field": pagination.order_by,
                            "message": "Unknown order field",
                            "code": "unknown_field",
                        }],
                    )
            else:
                order_col = pk or table.structure[0]
            order = f"{quote_identifier(order_col.name)} {pagination.order_direction.upper()}"
            if pk is not None and order_col.name != pk.name:
                # Stable pages for non-unique sort keys
                order += f", {quote_identifier(pk.name)} ASC"

            physical = quote_identifier(resolved.physical_name)
            total = conn.execute(f"SELECT COUNT(*) FROM {physical}{where}", params).fetchone()[0]
            result = conn.execute(
                f"SELECT * FROM {physical}{where} ORDER BY {order} LIMIT ? OFFSET ?",
                params + [page_size, (page - 1) * page_size],
            )
            rows = self._fetch_rows(result, table)

        logger.debug(
            "records_queried",
            project_id=resolved.project_id,
            table_name=table.table_name,
            filters=len(fragments),
            total=total,
        )
        return RecordPage(
            rows=rows,
            pagination=PaginationMeta(
                page=page,
                page_size=page_size,
                total=total,
                total_pages=math.ceil(total / page_size) if total else 0,
            ),
        )
