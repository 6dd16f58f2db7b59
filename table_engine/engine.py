"""Table engine facade.

Every public operation takes ``project_id`` first and returns a
``QueryResult`` envelope. Engine errors become failed envelopes; each call
is logged, measured and (for mutations) written to the audit trail.
"""

import time
from typing import Any, Callable

import structlog

from table_engine import metrics
from table_engine.database import EngineDB, engine_db
from table_engine.errors import TableEngineError
from table_engine.models import (
    FieldRule,
    PaginationOptions,
    QueryFilter,
    QueryResult,
    TableAlterations,
    TableDefinition,
)
from table_engine.records import RecordAccessLayer
from table_engine.resolver import IsolationResolver
from table_engine.schema_manager import SchemaManager

logger = structlog.get_logger()

RecordSchema = dict[str, FieldRule | dict[str, Any]]


class TableEngine:
    """Per-project dynamic tables and generic record access."""

    def __init__(self, db: EngineDB | None = None) -> None:
        self.db = db or engine_db
        self.resolver = IsolationResolver(self.db)
        self.schema = SchemaManager(self.db, self.resolver)
        self.records = RecordAccessLayer(self.db, self.resolver)

    def initialize(self) -> None:
        """Create the registry schema if needed."""
        self.db.initialize()
        metrics.TABLES_TOTAL.set(self.db.count_tables())

    # ========================================
    # Operation wrapper
    # ========================================

    def _run(
        self,
        operation: str,
        call: Callable[[], Any],
        project_id: Any,
        table_name: str | None = None,
        audit: bool = False,
        resource_type: str = "table",
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> QueryResult:
        start_time = time.time()
        log = logger.bind(project_id=project_id, table_name=table_name)
        log.info(f"{operation}_start")

        try:
            outcome = call()
        except TableEngineError as e:
            duration = time.time() - start_time
            metrics.OPERATION_COUNT.labels(operation=operation, status="failed").inc()
            metrics.OPERATION_DURATION.labels(operation=operation).observe(duration)
            metrics.ERROR_COUNT.labels(type=e.error_type).inc()
            log.warning(
                f"{operation}_failed",
                error=e.error,
                message=e.message,
                duration_ms=int(duration * 1000),
            )
            if audit:
                self._audit(
                    operation, "failed", project_id, resource_type,
                    resource_id or table_name, details, int(duration * 1000), e.message,
                )
            return QueryResult.failure(e)
        except Exception:
            metrics.OPERATION_COUNT.labels(operation=operation, status="error").inc()
            log.error(f"{operation}_failed", exc_info=True)
            raise

        data, meta = outcome if isinstance(outcome, tuple) else (outcome, None)
        duration = time.time() - start_time
        metrics.OPERATION_COUNT.labels(operation=operation, status="success").inc()
        metrics.OPERATION_DURATION.labels(operation=operation).observe(duration)
        log.info(f"{operation}_success", duration_ms=int(duration * 1000))
        if audit:
            self._audit(
                operation, "success", project_id, resource_type,
                resource_id or table_name, details, int(duration * 1000),
            )
        return QueryResult.ok(data=data, meta=meta)

    def _audit(
        self,
        operation: str,
        status: str,
        project_id: Any,
        resource_type: str,
        resource_id: str | None,
        details: dict[str, Any] | None,
        duration_ms: int,
        error_message: str | None = None,
    ) -> None:
        try:
            self.db.log_operation(
                operation=operation,
                status=status,
                project_id=project_id if isinstance(project_id, int) and not isinstance(project_id, bool) else None,
                resource_type=resource_type,
                resource_id=str(resource_id) if resource_id is not None else None,
                details=details,
                duration_ms=duration_ms,
                error_message=error_message,
            )
        except TableEngineError as e:
            # The operation itself already completed
            logger.error("audit_log_failed", operation=operation, error=e.message)

    # ========================================
    # Tables
    # ========================================

    def create_table(
        self,
        project_id: int,
        definition: TableDefinition | dict[str, Any],
        timeout: float | None = None,
    ) -> QueryResult:
        name = definition.name if isinstance(definition, TableDefinition) else (definition or {}).get("name")

        def call():
            record, apis = self.schema.create_table(project_id, definition, timeout=timeout)
            return record, {"apis": apis} if apis else None

        return self._run("create_table", call, project_id, table_name=name, audit=True)

    def alter_table(
        self,
        project_id: int,
        table_name: str,
        alterations: TableAlterations | dict[str, Any],
        timeout: float | None = None,
    ) -> QueryResult:
        details = (
            alterations.model_dump(mode="json", by_alias=True)
            if isinstance(alterations, TableAlterations)
            else alterations
        )
        return self._run(
            "alter_table",
            lambda: self.schema.alter_table(project_id, table_name, alterations, timeout=timeout),
            project_id, table_name=table_name, audit=True, details=details,
        )

    def drop_table(self, project_id: int, table_name: str, timeout: float | None = None) -> QueryResult:
        return self._run(
            "drop_table",
            lambda: self.schema.drop_table(project_id, table_name, timeout=timeout),
            project_id, table_name=table_name, audit=True,
        )

    def get_table_schema(self, project_id: int, table_name: str, timeout: float | None = None) -> QueryResult:
        return self._run(
            "get_table_schema",
            lambda: self.schema.get_table_schema(project_id, table_name, timeout=timeout),
            project_id, table_name=table_name,
        )

    def list_tables(
        self, project_id: int, include_built_in: bool = True, timeout: float | None = None
    ) -> QueryResult:
        return self._run(
            "list_tables",
            lambda: self.schema.list_tables(
                project_id, include_built_in=include_built_in, timeout=timeout
            ),
            project_id,
        )

    def update_table_info(
        self,
        project_id: int,
        table_name: str,
        display_name: str | None = None,
        description: str | None = None,
        api_enabled: bool | None = None,
        timeout: float | None = None,
    ) -> QueryResult:
        return self._run(
            "update_table_info",
            lambda: self.schema.update_table_info(
                project_id, table_name,
                display_name=display_name, description=description, api_enabled=api_enabled,
                timeout=timeout,
            ),
            project_id, table_name=table_name, audit=True,
        )

    def detect_drift(self, project_id: int, table_name: str, timeout: float | None = None) -> QueryResult:
        return self._run(
            "detect_drift",
            lambda: self.schema.detect_drift(project_id, table_name, timeout=timeout),
            project_id, table_name=table_name,
        )

    def verify_structure(
        self, project_id: int, table_name: str, timeout: float | None = None
    ) -> QueryResult:
        def call():
            self.schema.verify_structure(project_id, table_name, timeout=timeout)
            return {"table_name": table_name, "in_sync": True}

        return self._run("verify_structure", call, project_id, table_name=table_name)

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
    ) -> QueryResult:
        return self._run(
            "add_index",
            lambda: self.schema.add_index(
                project_id, table_name, index_name, columns, unique=unique, timeout=timeout
            ),
            project_id, table_name=table_name, audit=True,
            resource_type="index", resource_id=f"{table_name}.{index_name}",
            details={"columns": columns, "unique": unique},
        )

    def drop_index(
        self,
        project_id: int,
        table_name: str,
        index_name: str,
        timeout: float | None = None,
    ) -> QueryResult:
        return self._run(
            "drop_index",
            lambda: self.schema.drop_index(project_id, table_name, index_name, timeout=timeout),
            project_id, table_name=table_name, audit=True,
            resource_type="index", resource_id=f"{table_name}.{index_name}",
        )

    def list_indexes(self, project_id: int, table_name: str, timeout: float | None = None) -> QueryResult:
        return self._run(
            "list_indexes",
            lambda: self.schema.list_indexes(project_id, table_name, timeout=timeout),
            project_id, table_name=table_name,
        )

    # ========================================
    # APIs
    # ========================================

    def list_apis(
        self,
        project_id: int,
        table_name: str | None = None,
        include_inactive: bool = False,
        timeout: float | None = None,
    ) -> QueryResult:
        def call():
            with self.db.connection(timeout=timeout) as conn:
                table_id = None
                if table_name is not None:
                    table_id = self.resolver.resolve(project_id, table_name, conn=conn).record.id
                return self.db.list_project_apis(
                    project_id, table_id=table_id, include_inactive=include_inactive, conn=conn
                )

        return self._run("list_apis", call, project_id, table_name=table_name)

    def delete_table_apis(
        self, project_id: int, table_name: str, timeout: float | None = None
    ) -> QueryResult:
        return self._run(
            "delete_table_apis",
            lambda: {"deleted": self.schema.delete_table_apis(project_id, table_name, timeout=timeout)},
            project_id, table_name=table_name, audit=True, resource_type="api",
        )

    # ========================================
    # Records
    # ========================================

    def insert_record(
        self,
        project_id: int,
        table_name: str,
        data: dict[str, Any],
        schema: RecordSchema | None = None,
        timeout: float | None = None,
    ) -> QueryResult:
        return self._run(
            "insert_record",
            lambda: self.records.insert_record(
                project_id, table_name, data, schema=schema, timeout=timeout
            ),
            project_id, table_name=table_name, audit=True, resource_type="record",
        )

    def get_record_by_id(
        self,
        project_id: int,
        table_name: str,
        record_id: Any,
        include_deleted: bool | None = None,
        timeout: float | None = None,
    ) -> QueryResult:
        return self._run(
            "get_record",
            lambda: self.records.get_record_by_id(
                project_id, table_name, record_id, include_deleted=include_deleted, timeout=timeout
            ),
            project_id, table_name=table_name,
        )

    def update_record(
        self,
        project_id: int,
        table_name: str,
        record_id: Any,
        data: dict[str, Any],
        schema: RecordSchema | None = None,
        timeout: float | None = None,
    ) -> QueryResult:
        return self._run(
            "update_record",
            lambda: self.records.update_record(
                project_id, table_name, record_id, data, schema=schema, timeout=timeout
            ),
            project_id, table_name=table_name, audit=True,
            resource_type="record", resource_id=f"{table_name}/{record_id}",
        )

    def delete_record(
        self,
        project_id: int,
        table_name: str,
        record_id: Any,
        mode: str | None = None,
        timeout: float | None = None,
    ) -> QueryResult:
        return self._run(
            "delete_record",
            lambda: self.records.delete_record(
                project_id, table_name, record_id, mode=mode, timeout=timeout
            ),
            project_id, table_name=table_name, audit=True,
            resource_type="record", resource_id=f"{table_name}/{record_id}",
            details={"mode": mode},
        )

    def query_records(
        self,
        project_id: int,
        table_name: str,
        filters: list[QueryFilter | dict[str, Any]] | None = None,
        pagination: PaginationOptions | dict[str, Any] | None = None,
        include_deleted: bool | None = None,
        timeout: float | None = None,
    ) -> QueryResult:
        def call():
            page = self.records.query_records(
                project_id, table_name, filters=filters, pagination=pagination,
                include_deleted=include_deleted, timeout=timeout,
            )
            return page.rows, {"pagination": page.pagination.model_dump(by_alias=True)}

        return self._run("query_records", call, project_id, table_name=table_name)
