"""Schema manager - DDL for project tables.

Every mutation issues its DDL and its registry write inside one transaction,
then re-reads the live catalog and stores the reconciled structure. A table
and its registry row become visible together or not at all.
"""

from typing import Any

import duckdb
import structlog

from table_engine import catalog, metrics
from table_engine.column_types import (
    parse_logical_type,
    physical_type,
    render_default,
)
from table_engine.database import EngineDB
from table_engine.errors import ConflictError, NotFoundError, SchemaDriftError, ValidationError
from table_engine.models import (
    ColumnDefinition,
    ColumnReference,
    IndexInfo,
    LogicalType,
    ProjectApi,
    ProjectDatabase,
    TableAlterations,
    TableColumn,
    TableDefinition,
    TableSchema,
    parse_model,
)
from table_engine.naming import (
    physical_index_name,
    quote_identifier,
    sanitize,
    sequence_name,
    validate_project_id,
)
from table_engine.resolver import IsolationResolver, ResolvedTable
from table_engine.validator import (
    IDENTIFIER_RE,
    SOFT_DELETE_COLUMN,
    TIMESTAMP_COLUMNS,
    validate,
    validate_column,
)

logger = structlog.get_logger()


def _column_error(field_name: str, message: str, code: str) -> dict[str, str]:
    return {"field": field_name, "message": message, "code": code}


def _is_immutable(column: TableColumn) -> bool:
    return column.is_primary or column.name.lower() == "id"


class SchemaManager:
    """Creates, alters and drops project tables and their indexes."""

    def __init__(self, db: EngineDB, resolver: IsolationResolver) -> None:
        self.db = db
        self.resolver = resolver

    # ========================================
    # Structure building
    # ========================================

    def build_structure(self, definition: TableDefinition) -> list[TableColumn]:
        """Resolve logical columns plus the automatic timestamp/soft delete columns."""
        structure = []
        for col in definition.columns:
            logical = parse_logical_type(col.type)
            structure.append(
                TableColumn(
                    name=col.name,
                    type=logical,
                    physical_type=physical_type(logical),
                    nullable=col.nullable and not col.is_primary,
                    is_primary=col.is_primary,
                    is_foreign=col.is_foreign or col.references is not None,
                    unique=col.unique and not col.is_primary,
                    default_value=col.default_value,
                    references=col.references,
                )
            )

        if definition.timestamps:
            for name in TIMESTAMP_COLUMNS:
                structure.append(
                    TableColumn(
                        name=name,
                        type=LogicalType.DATETIME,
                        physical_type=physical_type(LogicalType.DATETIME),
                        nullable=False,
                        default_value="current_timestamp",
                    )
                )
        if definition.soft_delete:
            structure.append(
                TableColumn(
                    name=SOFT_DELETE_COLUMN,
                    type=LogicalType.DATETIME,
                    physical_type=physical_type(LogicalType.DATETIME),
                    nullable=True,
                )
            )
        return structure

    @staticmethod
    def _column_ddl(column: TableColumn, physical_name: str) -> str:
        parts = [quote_identifier(column.name), column.physical_type]
        if column.is_primary:
            parts.append("PRIMARY KEY")
        elif not column.nullable:
            parts.append("NOT NULL")
        if column.unique:
            parts.append("UNIQUE")
        if column.default_value is not None:
            parts.append(f"DEFAULT {render_default(column.type, column.default_value)}")
        elif column.is_primary and column.type == LogicalType.INTEGER:
            seq = sequence_name(physical_name, column.name)
            parts.append(f"DEFAULT nextval('{seq}')")
        return " ".join(parts)

    def _reference_errors(
        self,
        conn: duckdb.DuckDBPyConnection,
        project_id: int,
        table_name: str,
        own_columns: set[str],
        ref: ColumnReference,
        label: str,
    ) -> list[dict[str, str]]:
        if ref.table == table_name:
            target_columns = own_columns
        else:
            target = self.db.get_project_database(project_id, ref.table, conn=conn)
            if target is None:
                return [_column_error(
                    label, f"Referenced table '{ref.table}' does not exist", "invalid_reference"
                )]
            target_columns = {c.name.lower() for c in target.structure}
        if ref.column.lower() not in target_columns:
            return [_column_error(
                label,
                f"Referenced column '{ref.table}.{ref.column}' does not exist",
                "invalid_reference",
            )]
        return []

    def _check_references(
        self,
        conn: duckdb.DuckDBPyConnection,
        project_id: int,
        definition: TableDefinition,
    ) -> None:
        """References must point at columns of tables registered in the same project."""
        own_columns = {c.name.lower() for c in definition.columns}
        errors = []
        for position, col in enumerate(definition.columns):
            if col.references is not None:
                errors.extend(self._reference_errors(
                    conn, project_id, definition.name, own_columns,
                    col.references, f"columns[{position}].references",
                ))
        if errors:
            raise ValidationError(
                f"Invalid references in table '{definition.name}'",
                errors=errors,
                error="invalid_reference",
            )

    def _introspect(
        self,
        conn: duckdb.DuckDBPyConnection,
        physical_name: str,
        table_name: str,
        hints: list[TableColumn],
    ) -> list[TableColumn]:
        live = catalog.introspect_columns(conn, physical_name)
        if not live:
            raise SchemaDriftError(
                f"Table '{table_name}' is registered but missing from the store",
                details={"table_name": table_name},
            )
        return catalog.reconcile_structure(live, hints)

    # ========================================
    # Table lifecycle
    # ========================================

    def create_table(
        self,
        project_id: int,
        definition: TableDefinition | dict[str, Any],
        timeout: float | None = None,
    ) -> tuple[ProjectDatabase, list[ProjectApi]]:
        """
        Create a project table and register it.

        The CREATE TABLE statement, the registry row and (with generate_api)
        the default API rows are written in one transaction.

        Raises:
            ValidationError: invalid definition or references
            ConflictError: the table already exists for the project
        """
        project_id = validate_project_id(project_id)
        definition = validate(definition).raise_for_errors()
        physical_name = self.resolver.physical_name(project_id, definition.name)
        structure = self.build_structure(definition)
        pk = next(col for col in structure if col.is_primary)

        column_sql = ",\n    ".join(self._column_ddl(col, physical_name) for col in structure)
        create_sql = f"CREATE TABLE {quote_identifier(physical_name)} (\n    {column_sql}\n)"

        logger.debug("create_table_ddl", project_id=project_id, sql=create_sql)

        with self.db.transaction(timeout=timeout) as conn:
            if self.db.get_project_database(project_id, definition.name, conn=conn):
                raise ConflictError(
                    f"Table '{definition.name}' already exists",
                    error="table_exists",
                    details={"table_name": definition.name},
                )
            self._check_references(conn, project_id, definition)

            if pk.type == LogicalType.INTEGER and pk.default_value is None:
                seq = sequence_name(physical_name, pk.name)
                conn.execute(f"CREATE SEQUENCE {quote_identifier(seq)}")
            conn.execute(create_sql)

            reconciled = self._introspect(conn, physical_name, definition.name, structure)
            record = self.db.insert_project_database(
                conn,
                project_id=project_id,
                table_name=definition.name,
                structure=reconciled,
                display_name=definition.display_name,
                description=definition.description,
                is_built_in=definition.is_built_in,
                is_generated=False,
                api_enabled=definition.generate_api,
            )
            apis = []
            if definition.generate_api:
                apis = self.db.create_default_apis(conn, project_id, record)

        metrics.DDL_STATEMENTS.labels(statement="create_table").inc()
        metrics.TABLES_TOTAL.inc()
        return record, apis

    def alter_table(
        self,
        project_id: int,
        table_name: str,
        alterations: TableAlterations | dict[str, Any],
        timeout: float | None = None,
    ) -> ProjectDatabase:
        """
        Add, drop and change columns of a project table.

        The primary key (and any column named ``id``) cannot be dropped or
        have its type or nullability changed. The cached structure is
        replaced by the re-introspected live schema.
        """
        alterations = parse_model(TableAlterations, alterations, "table alterations")
        if alterations.is_empty():
            raise ValidationError("At least one change must be specified", error="no_changes_specified")

        errors = []
        for position, col in enumerate(alterations.add_columns):
            errors.extend(validate_column(col, f"addColumns[{position}]"))
        for position, change in enumerate(alterations.alter_columns):
            if change.type is None and change.nullable is None:
                errors.append(_column_error(
                    f"alterColumns[{position}]", f"No change given for column '{change.name}'", "no_changes_specified"
                ))
            if change.type is not None and parse_logical_type(change.type) is None:
                errors.append(_column_error(
                    f"alterColumns[{position}].type", f"Unsupported column type '{change.type}'", "invalid_type"
                ))
        if errors:
            raise ValidationError(f"Invalid alterations for table '{table_name}'", errors=errors)

        with self.db.transaction(timeout=timeout) as conn:
            resolved = self.resolver.resolve(project_id, table_name, conn=conn)
            table = resolved.record
            statements, hints = self._plan_alterations(resolved, alterations, conn)

            for sql in statements:
                logger.debug("alter_table_ddl", project_id=resolved.project_id, sql=sql)
                conn.execute(sql)
                metrics.DDL_STATEMENTS.labels(statement="alter_table").inc()

            reconciled = self._introspect(conn, resolved.physical_name, table.table_name, hints)
            self.db.update_structure(conn, table.id, reconciled)
            updated = self.db.get_project_database_by_id(resolved.project_id, table.id, conn=conn)

        logger.info(
            "table_structure_reconciled",
            project_id=resolved.project_id,
            table_name=table.table_name,
            columns=len(reconciled),
        )
        return updated

    def _plan_alterations(
        self,
        resolved: ResolvedTable,
        alterations: TableAlterations,
        conn: duckdb.DuckDBPyConnection,
    ) -> tuple[list[str], list[TableColumn]]:
        """Check alterations against the current structure and build the ALTER statements."""
        table = resolved.record
        physical = quote_identifier(resolved.physical_name)
        hints = [col.model_copy() for col in table.structure]
        statements = []
        errors = []

        for position, name in enumerate(alterations.drop_columns):
            col = table.column(name)
            if col is None:
                errors.append(_column_error(
                    f"dropColumns[{position}]", f"Column '{name}' does not exist", "unknown_column"
                ))
            elif _is_immutable(col):
                errors.append(_column_error(
                    f"dropColumns[{position}]", f"Column '{col.name}' is the primary key and cannot be dropped", "immutable_primary_key"
                ))
            else:
                statements.append(f"ALTER TABLE {physical} DROP COLUMN {quote_identifier(col.name)}")

        for position, change in enumerate(alterations.alter_columns):
            col = table.column(change.name)
            if col is None:
                errors.append(_column_error(
                    f"alterColumns[{position}]", f"Column '{change.name}' does not exist", "unknown_column"
                ))
                continue
            if _is_immutable(col):
                errors.append(_column_error(
                    f"alterColumns[{position}]", f"Column '{col.name}' is the primary key and cannot be altered", "immutable_primary_key"
                ))
                continue
            column_sql = quote_identifier(col.name)
            hint = next(h for h in hints if h.name == col.name)
            if change.type is not None:
                logical = parse_logical_type(change.type)
                statements.append(
                    f"ALTER TABLE {physical} ALTER COLUMN {column_sql} TYPE {physical_type(logical)}"
                )
                hint.type = logical
                hint.physical_type = physical_type(logical)
                hint.default_value = None
            if change.nullable is not None and change.nullable != col.nullable:
                action = "DROP NOT NULL" if change.nullable else "SET NOT NULL"
                statements.append(f"ALTER TABLE {physical} ALTER COLUMN {column_sql} {action}")

        added = [parse_model(ColumnDefinition, raw) for raw in alterations.add_columns]
        own_columns = {col.name.lower() for col in hints} | {new.name.lower() for new in added}
        for position, new in enumerate(added):
            if table.column(new.name) is not None:
                raise ConflictError(
                    f"Column '{new.name}' already exists",
                    error="column_exists",
                    details={"column": new.name},
                )
            if new.references is not None:
                errors.extend(self._reference_errors(
                    conn, resolved.project_id, table.table_name, own_columns,
                    new.references, f"addColumns[{position}].references",
                ))
            logical = parse_logical_type(new.type)
            column_sql = quote_identifier(new.name)
            add_sql = f"ALTER TABLE {physical} ADD COLUMN {column_sql} {physical_type(logical)}"
            if new.default_value is not None:
                add_sql += f" DEFAULT {render_default(logical, new.default_value)}"
            statements.append(add_sql)
            if not new.nullable:
                if new.default_value is None and self._has_rows(conn, physical):
                    errors.append(_column_error(
                        f"addColumns[{position}].nullable",
                        f"Column '{new.name}' needs a default to be NOT NULL on a table with rows",
                        "not_null_without_default",
                    ))
                # NOT NULL cannot be declared by ADD COLUMN
                statements.append(f"ALTER TABLE {physical} ALTER COLUMN {column_sql} SET NOT NULL")
            hints.append(
                TableColumn(
                    name=new.name,
                    type=logical,
                    physical_type=physical_type(logical),
                    nullable=new.nullable,
                    is_foreign=new.is_foreign or new.references is not None,
                    default_value=new.default_value,
                    references=new.references,
                )
            )

        if errors:
            only_references = all(e["code"] == "invalid_reference" for e in errors)
            raise ValidationError(
                f"Invalid alterations for table '{table.table_name}'",
                errors=errors,
                error="invalid_reference" if only_references else None,
            )
        return statements, hints

    @staticmethod
    def _has_rows(conn: duckdb.DuckDBPyConnection, physical: str) -> bool:
        return conn.execute(f"SELECT 1 FROM {physical} LIMIT 1").fetchone() is not None

    def drop_table(
        self, project_id: int, table_name: str, timeout: float | None = None
    ) -> dict[str, Any]:
        """
        Drop a project table, delete its registry row and deactivate its APIs.

        APIs are kept (inactive, detached) so recreating the table restores them.
        """
        with self.db.transaction(timeout=timeout) as conn:
            resolved = self.resolver.resolve(project_id, table_name, conn=conn)
            table = resolved.record
            conn.execute(f"DROP TABLE {quote_identifier(resolved.physical_name)}")
            pk = table.primary_key
            if pk is not None and pk.type == LogicalType.INTEGER:
                seq = sequence_name(resolved.physical_name, pk.name)
                conn.execute(f"DROP SEQUENCE IF EXISTS {quote_identifier(seq)}")
            deactivated = self.db.deactivate_table_apis(conn, resolved.project_id, table.id)
            self.db.delete_project_database(conn, table.id)

        metrics.DDL_STATEMENTS.labels(statement="drop_table").inc()
        metrics.TABLES_TOTAL.dec()
        return {"table_name": table.table_name, "dropped": True, "apis_deactivated": deactivated}

    def get_table_schema(
        self, project_id: int, table_name: str, timeout: float | None = None
    ) -> TableSchema:
        """
        Introspect the live schema of a table.

        This is the reconciliation authority: a cached structure that
        disagrees with the catalog is overwritten.
        """
        with self.db.transaction(timeout=timeout) as conn:
            resolved = self.resolver.resolve(project_id, table_name, conn=conn)
            table = resolved.record
            live = catalog.introspect_columns(conn, resolved.physical_name)
            if not live:
                raise SchemaDriftError(
                    f"Table '{table.table_name}' is registered but missing from the store",
                    details={"table_name": table.table_name},
                )
            differences = catalog.diff_structure(table.structure, live)
            structure = catalog.reconcile_structure(live, table.structure)
            if differences:
                logger.warning(
                    "schema_drift_reconciled",
                    project_id=resolved.project_id,
                    table_name=table.table_name,
                    differences=differences,
                )
                self.db.update_structure(conn, table.id, structure)
            indexes = catalog.list_indexes(conn, resolved.physical_name)

        pk = next((col.name for col in structure if col.is_primary), None)
        return TableSchema(
            table_name=table.table_name,
            display_name=table.display_name,
            description=table.description,
            columns=structure,
            primary_key=pk,
            indexes=indexes,
            created_at=table.created_at,
            updated_at=table.updated_at,
        )

    # ========================================
    # Indexes
    # ========================================

    def add_index(
        self,
        project_id: int,
        table_name: str,
        index_name: str,
        columns: list[str],
        unique: bool = False,
        timeout: float | None = None,
    ) -> IndexInfo:
        """Create a named index. Index names are scoped per table."""
        if not isinstance(index_name, str) or not IDENTIFIER_RE.match(index_name):
            raise ValidationError(
                f"Invalid index name '{index_name}'",
                errors=[_column_error("indexName", "Index name must be an identifier", "invalid_index_name")],
            )
        if not columns:
            raise ValidationError(
                "An index needs at least one column",
                errors=[_column_error("columns", "At least one column is required", "no_columns")],
            )

        with self.db.transaction(timeout=timeout) as conn:
            resolved = self.resolver.resolve(project_id, table_name, conn=conn)
            table = resolved.record
            resolved_columns = []
            errors = []
            for position, name in enumerate(columns):
                col = table.column(name) if isinstance(name, str) else None
                if col is None:
                    errors.append(_column_error(
                        f"columns[{position}]", f"Column '{name}' does not exist", "unknown_column"
                    ))
                else:
                    resolved_columns.append(col.name)
            if errors:
                raise ValidationError(f"Invalid index on table '{table.table_name}'", errors=errors)

            index_physical = physical_index_name(resolved.physical_name, index_name)
            if catalog.index_exists(conn, index_physical):
                raise ConflictError(
                    f"Index '{index_name}' already exists on table '{table.table_name}'",
                    error="index_exists",
                    details={"index_name": sanitize(index_name)},
                )
            column_sql = ", ".join(quote_identifier(name) for name in resolved_columns)
            conn.execute(
                f"CREATE {'UNIQUE ' if unique else ''}INDEX {quote_identifier(index_physical)} "
                f"ON {quote_identifier(resolved.physical_name)} ({column_sql})"
            )

        metrics.DDL_STATEMENTS.labels(statement="create_index").inc()
        return IndexInfo(name=sanitize(index_name), columns=resolved_columns, unique=unique)

    def drop_index(
        self,
        project_id: int,
        table_name: str,
        index_name: str,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        with self.db.transaction(timeout=timeout) as conn:
            resolved = self.resolver.resolve(project_id, table_name, conn=conn)
            index_physical = physical_index_name(resolved.physical_name, index_name)
            if not catalog.index_exists(conn, index_physical):
                raise NotFoundError(
                    f"Index '{index_name}' not found on table '{resolved.table_name}'",
                    error="index_not_found",
                    details={"index_name": index_name},
                )
            conn.execute(f"DROP INDEX {quote_identifier(index_physical)}")

        metrics.DDL_STATEMENTS.labels(statement="drop_index").inc()
        return {"index_name": sanitize(index_name), "dropped": True}

    def list_indexes(
        self, project_id: int, table_name: str, timeout: float | None = None
    ) -> list[IndexInfo]:
        with self.db.connection(timeout=timeout) as conn:
            resolved = self.resolver.resolve(project_id, table_name, conn=conn)
            return catalog.list_indexes(conn, resolved.physical_name)

    # ========================================
    # Registry views
    # ========================================

    def list_tables(
        self, project_id: int, include_built_in: bool = True, timeout: float | None = None
    ) -> list[ProjectDatabase]:
        project_id = validate_project_id(project_id)
        return self.db.list_project_databases(
            project_id, include_built_in=include_built_in, timeout=timeout
        )

    def update_table_info(
        self,
        project_id: int,
        table_name: str,
        display_name: str | None = None,
        description: str | None = None,
        api_enabled: bool | None = None,
        timeout: float | None = None,
    ) -> ProjectDatabase:
        """Update the descriptive fields of a registered table."""
        with self.db.connection(timeout=timeout) as conn:
            resolved = self.resolver.resolve(project_id, table_name, conn=conn)
        updated = self.db.update_table_info(
            resolved.project_id,
            resolved.table_name,
            display_name=display_name,
            description=description,
            api_enabled=api_enabled,
            timeout=timeout,
        )
        if updated is None:
            raise NotFoundError(f"Table '{table_name}' not found", error="table_not_found")
        return updated

    def detect_drift(
        self, project_id: int, table_name: str, timeout: float | None = None
    ) -> list[str]:
        """Differences between the cached structure and the live catalog."""
        with self.db.connection(timeout=timeout) as conn:
            resolved = self.resolver.resolve(project_id, table_name, conn=conn)
            live = catalog.introspect_columns(conn, resolved.physical_name)
        if not live:
            return [f"table '{resolved.table_name}' is missing from the store"]
        return catalog.diff_structure(resolved.record.structure, live)

    def verify_structure(
        self, project_id: int, table_name: str, timeout: float | None = None
    ) -> None:
        """Raise SchemaDriftError when the cached structure is stale."""
        differences = self.detect_drift(project_id, table_name, timeout=timeout)
        if differences:
            raise SchemaDriftError(
                f"Cached structure of table '{table_name}' disagrees with the store",
                details={"table_name": table_name, "differences": differences},
            )

    def delete_table_apis(
        self, project_id: int, table_name: str, timeout: float | None = None
    ) -> int:
        """Permanently delete generated APIs of a table, registered or already dropped."""
        project_id = validate_project_id(project_id)
        with self.db.connection(timeout=timeout) as conn:
            record = self.db.get_project_database(project_id, table_name, conn=conn)
        deleted = self.db.delete_table_apis(
            project_id, table_name, table_id=record.id if record else None, timeout=timeout
        )
        logger.info(
            "table_apis_deleted",
            project_id=project_id,
            table_name=table_name,
            deleted=deleted,
        )
        return deleted
