"""DuckDB database management - engine connection and association registry.

All project tables and the registry live in one shared DuckDB file:

- ``project_databases``: one row per logical table (cached structure)
- ``project_apis``: generated/custom APIs exposed over a table
- ``operations_log``: audit trail of engine operations

Project tables themselves are created in the ``main`` schema under their
prefixed physical names (see ``table_engine.naming``).
"""

import json
import threading
from contextlib import contextmanager
from typing import Any, Generator

import duckdb
import structlog

from table_engine import metrics
from table_engine.config import settings
from table_engine.errors import ConflictError, DatabaseError, TableEngineError
from table_engine.models import ProjectApi, ProjectDatabase, TableColumn
from table_engine.naming import scrub_physical_names

logger = structlog.get_logger()


# ============================================
# Schema definitions
# ============================================

REGISTRY_SCHEMA = """
-- Logical tables per project
CREATE SEQUENCE IF NOT EXISTS project_databases_seq;

CREATE TABLE IF NOT EXISTS project_databases (
    id BIGINT DEFAULT nextval('project_databases_seq') PRIMARY KEY,
    project_id BIGINT NOT NULL,
    table_name VARCHAR NOT NULL,
    display_name VARCHAR,
    description VARCHAR,
    is_built_in BOOLEAN DEFAULT false,
    is_generated BOOLEAN DEFAULT false,
    api_enabled BOOLEAN DEFAULT false,
    structure JSON,
    created_at TIMESTAMPTZ DEFAULT now(),
    updated_at TIMESTAMPTZ DEFAULT now(),
    UNIQUE (project_id, table_name)
);

-- APIs exposed over project tables
-- table_id is a soft reference: it is cleared when the table is dropped
CREATE SEQUENCE IF NOT EXISTS project_apis_seq;

CREATE TABLE IF NOT EXISTS project_apis (
    id BIGINT DEFAULT nextval('project_apis_seq') PRIMARY KEY,
    project_id BIGINT NOT NULL,
    api_path VARCHAR NOT NULL,
    method VARCHAR NOT NULL,
    table_id BIGINT,
    is_custom BOOLEAN DEFAULT false,
    is_active BOOLEAN DEFAULT true,
    configuration JSON,
    created_at TIMESTAMPTZ DEFAULT now(),
    updated_at TIMESTAMPTZ DEFAULT now()
);

-- Audit trail
CREATE SEQUENCE IF NOT EXISTS operations_log_seq;

CREATE TABLE IF NOT EXISTS operations_log (
    id BIGINT DEFAULT nextval('operations_log_seq') PRIMARY KEY,
    timestamp TIMESTAMPTZ DEFAULT now(),
    project_id BIGINT,
    operation VARCHAR NOT NULL,
    resource_type VARCHAR,
    resource_id VARCHAR,
    details JSON,
    duration_ms INTEGER,
    status VARCHAR NOT NULL,
    error_message VARCHAR
);
"""

PROJECT_DATABASE_COLUMNS = (
    "id, project_id, table_name, display_name, description, is_built_in, "
    "is_generated, api_enabled, structure, created_at, updated_at"
)

PROJECT_API_COLUMNS = (
    "id, project_id, api_path, method, table_id, is_custom, is_active, "
    "configuration, created_at, updated_at"
)

# (method, path template, operation) of the APIs generated for a table
DEFAULT_API_ROUTES = [
    ("GET", "/{table}", "list"),
    ("GET", "/{table}/:id", "get"),
    ("POST", "/{table}", "create"),
    ("PUT", "/{table}/:id", "update"),
    ("DELETE", "/{table}/:id", "delete"),
]


def default_api_paths(table_name: str) -> list[str]:
    return sorted({path.format(table=table_name) for _, path, _ in DEFAULT_API_ROUTES})


# ============================================
# Error mapping
# ============================================


def map_store_error(exc: duckdb.Error, timed_out: bool = False) -> TableEngineError:
    """
    Translate a DuckDB exception into the engine error taxonomy.

    The caller-facing message is the first line of the driver message with
    physical names replaced by logical ones; SQL text is never included.
    """
    raw = str(exc).strip().splitlines()[0] if str(exc).strip() else exc.__class__.__name__
    reason = scrub_physical_names(raw)

    if timed_out or isinstance(exc, duckdb.InterruptException):
        metrics.STATEMENT_TIMEOUTS.inc()
        return DatabaseError(
            "Operation exceeded the configured timeout",
            error="timeout",
            details={"reason": "timeout"},
        )
    if isinstance(exc, duckdb.ConstraintException):
        return ConflictError(reason, error="constraint_violation")
    if isinstance(exc, duckdb.CatalogException) and "already exists" in raw:
        return ConflictError(reason, error="already_exists")
    if isinstance(exc, duckdb.TransactionException):
        return ConflictError(
            "Concurrent modification conflict",
            error="transaction_conflict",
            details={"reason": reason},
        )
    if isinstance(exc, duckdb.DependencyException) or "depends on" in raw:
        # Indexes pin the columns (and column order) of a table
        return ConflictError(reason, error="dependency_conflict")
    return DatabaseError("Store operation failed", details={"reason": reason})


class _Deadline:
    """Interrupts a connection once ``timeout`` seconds have elapsed."""

    def __init__(self, conn: duckdb.DuckDBPyConnection, timeout: float | None) -> None:
        self.expired = False
        self._conn = conn
        self._timer: threading.Timer | None = None
        if timeout and timeout > 0:
            self._timer = threading.Timer(timeout, self._fire)
            self._timer.daemon = True

    def _fire(self) -> None:
        self.expired = True
        self._conn.interrupt()

    def start(self) -> None:
        if self._timer is not None:
            self._timer.start()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()


# ============================================
# Engine database
# ============================================


class EngineDB:
    """
    Singleton class for managing the shared engine database.

    Each unit of work opens its own connection to the database file and
    closes it when done; DuckDB shares the underlying database instance
    between connections of the same process.
    Note: db_path is read from settings on each access to support testing.
    """

    _instance: "EngineDB | None" = None
    _lock = threading.Lock()

    def __new__(cls) -> "EngineDB":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._initialized = True

    @property
    def _db_path(self):
        """Get db path from settings (allows runtime override in tests)."""
        return settings.engine_db_path

    def initialize(self) -> None:
        """Initialize the engine database and create the registry schema."""
        db_path = self._db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = duckdb.connect(str(db_path))
        try:
            conn.execute(f"SET threads = {int(settings.duckdb_threads)}")
            conn.execute("SET memory_limit = ?", [settings.duckdb_memory_limit])
            conn.execute(REGISTRY_SCHEMA)
            conn.commit()
            logger.info("engine_db_schema_created", path=str(db_path))
        finally:
            conn.close()

    @contextmanager
    def connection(
        self, timeout: float | None = None
    ) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """
        Get a connection to the engine database.

        The whole unit of work runs under ``timeout`` seconds (defaults to
        ``settings.operation_timeout``); on expiry the running statement is
        interrupted and DatabaseError(timeout) is raised.

        Usage:
            with engine_db.connection() as conn:
                conn.execute("SELECT * FROM project_databases")
        """
        metrics.CONNECTIONS_ACTIVE.inc()
        conn = duckdb.connect(str(self._db_path))
        deadline = _Deadline(conn, settings.operation_timeout if timeout is None else timeout)
        deadline.start()
        try:
            yield conn
        except duckdb.Error as e:
            logger.error("engine_db_error", error=str(e), error_type=e.__class__.__name__)
            raise map_store_error(e, timed_out=deadline.expired) from e
        finally:
            deadline.cancel()
            conn.close()
            metrics.CONNECTIONS_ACTIVE.dec()

    @contextmanager
    def transaction(
        self, timeout: float | None = None
    ) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """
        Run a unit of work inside a single transaction.

        Commits on success; rolls back on any error so DDL and registry
        mutations become visible together or not at all.
        """
        with self.connection(timeout=timeout) as conn:
            conn.begin()
            try:
                yield conn
                conn.commit()
            except BaseException:
                self._rollback(conn)
                raise

    @staticmethod
    def _rollback(conn: duckdb.DuckDBPyConnection) -> None:
        try:
            conn.rollback()
        except duckdb.Error as e:
            # Failed commits already ended the transaction
            logger.debug("engine_db_rollback_skipped", reason=str(e))

    def execute(
        self, query: str, params: list | None = None, timeout: float | None = None
    ) -> list[tuple]:
        """Execute a read query and return results."""
        with self.connection(timeout=timeout) as conn:
            return conn.execute(query, params or []).fetchall()

    def execute_write(self, query: str, params: list | None = None) -> None:
        """Execute a write query (INSERT, UPDATE, DELETE)."""
        with self.transaction() as conn:
            conn.execute(query, params or [])

    @contextmanager
    def _use(
        self, conn: duckdb.DuckDBPyConnection | None
    ) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """Reuse the caller's connection or open a short-lived one."""
        if conn is not None:
            yield conn
            return
        with self.connection() as own:
            yield own

    # ========================================
    # ProjectDatabase operations
    # ========================================

    def get_project_database(
        self,
        project_id: int,
        table_name: str,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> ProjectDatabase | None:
        """Get the registry row of a logical table."""
        with self._use(conn) as c:
            row = c.execute(
                f"SELECT {PROJECT_DATABASE_COLUMNS} FROM project_databases "
                "WHERE project_id = ? AND table_name = ?",
                [project_id, table_name],
            ).fetchone()
        return self._row_to_project_database(row)

    def get_project_database_by_id(
        self,
        project_id: int,
        table_id: int,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> ProjectDatabase | None:
        with self._use(conn) as c:
            row = c.execute(
                f"SELECT {PROJECT_DATABASE_COLUMNS} FROM project_databases "
                "WHERE project_id = ? AND id = ?",
                [project_id, table_id],
            ).fetchone()
        return self._row_to_project_database(row)

    def list_project_databases(
        self,
        project_id: int,
        include_built_in: bool = True,
        timeout: float | None = None,
    ) -> list[ProjectDatabase]:
        """List registry rows of a project ordered by table name."""
        query = f"SELECT {PROJECT_DATABASE_COLUMNS} FROM project_databases WHERE project_id = ?"
        if not include_built_in:
            query += " AND NOT is_built_in"
        query += " ORDER BY table_name"
        rows = self.execute(query, [project_id], timeout=timeout)
        return [self._row_to_project_database(row) for row in rows]

    def insert_project_database(
        self,
        conn: duckdb.DuckDBPyConnection,
        project_id: int,
        table_name: str,
        structure: list[TableColumn],
        display_name: str | None = None,
        description: str | None = None,
        is_built_in: bool = False,
        is_generated: bool = False,
        api_enabled: bool = False,
    ) -> ProjectDatabase:
        """Insert a registry row inside the caller's transaction."""
        row = conn.execute(
            f"""
            INSERT INTO project_databases
            (project_id, table_name, display_name, description, is_built_in,
             is_generated, api_enabled, structure)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING {PROJECT_DATABASE_COLUMNS}
            """,
            [
                project_id,
                table_name,
                display_name or table_name,
                description or "",
                is_built_in,
                is_generated,
                api_enabled,
                self._dump_structure(structure),
            ],
        ).fetchone()
        return self._row_to_project_database(row)

    def update_structure(
        self,
        conn: duckdb.DuckDBPyConnection,
        table_id: int,
        structure: list[TableColumn],
    ) -> None:
        conn.execute(
            "UPDATE project_databases SET structure = ?, updated_at = now() WHERE id = ?",
            [self._dump_structure(structure), table_id],
        )

    def update_table_info(
        self,
        project_id: int,
        table_name: str,
        display_name: str | None = None,
        description: str | None = None,
        api_enabled: bool | None = None,
        timeout: float | None = None,
    ) -> ProjectDatabase | None:
        """Update descriptive fields of a registry row."""
        updates = []
        params: list[Any] = []
        if display_name is not None:
            updates.append("display_name = ?")
            params.append(display_name)
        if description is not None:
            updates.append("description = ?")
            params.append(description)
        if api_enabled is not None:
            updates.append("api_enabled = ?")
            params.append(api_enabled)

        with self.transaction(timeout=timeout) as conn:
            if updates:
                updates.append("updated_at = now()")
                conn.execute(
                    f"UPDATE project_databases SET {', '.join(updates)} "
                    "WHERE project_id = ? AND table_name = ?",
                    params + [project_id, table_name],
                )
            return self.get_project_database(project_id, table_name, conn=conn)

    def delete_project_database(self, conn: duckdb.DuckDBPyConnection, table_id: int) -> None:
        conn.execute("DELETE FROM project_databases WHERE id = ?", [table_id])

    def count_tables(self) -> int:
        result = self.execute("SELECT COUNT(*) FROM project_databases")
        return result[0][0] if result else 0

    # ========================================
    # ProjectApi operations
    # ========================================

    def create_default_apis(
        self,
        conn: duckdb.DuckDBPyConnection,
        project_id: int,
        table: ProjectDatabase,
    ) -> list[ProjectApi]:
        """
        Register the default CRUD APIs of a table.

        Inactive rows left behind by a previous drop of a table with the same
        name are reactivated instead of duplicated.
        """
        apis = []
        for method, template, operation in DEFAULT_API_ROUTES:
            api_path = template.format(table=table.table_name)
            configuration = json.dumps({"tableName": table.table_name, "operation": operation})
            row = conn.execute(
                f"""
                UPDATE project_apis
                SET table_id = ?, is_active = true, configuration = ?, updated_at = now()
                WHERE project_id = ? AND api_path = ? AND method = ?
                  AND table_id IS NULL AND NOT is_active AND NOT is_custom
                RETURNING {PROJECT_API_COLUMNS}
                """,
                [table.id, configuration, project_id, api_path, method],
            ).fetchone()
            if row is None:
                row = conn.execute(
                    f"""
                    INSERT INTO project_apis
                    (project_id, api_path, method, table_id, is_custom, is_active, configuration)
                    VALUES (?, ?, ?, ?, false, true, ?)
                    RETURNING {PROJECT_API_COLUMNS}
                    """,
                    [project_id, api_path, method, table.id, configuration],
                ).fetchone()
            apis.append(self._row_to_project_api(row))
        return apis

    def list_project_apis(
        self,
        project_id: int,
        table_id: int | None = None,
        include_inactive: bool = False,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> list[ProjectApi]:
        query = f"SELECT {PROJECT_API_COLUMNS} FROM project_apis WHERE project_id = ?"
        params: list[Any] = [project_id]
        if table_id is not None:
            query += " AND table_id = ?"
            params.append(table_id)
        if not include_inactive:
            query += " AND is_active"
        query += " ORDER BY id"
        with self._use(conn) as c:
            rows = c.execute(query, params).fetchall()
        return [self._row_to_project_api(row) for row in rows]

    def deactivate_table_apis(
        self,
        conn: duckdb.DuckDBPyConnection,
        project_id: int,
        table_id: int,
    ) -> int:
        """Deactivate every API of a table and clear its table reference."""
        rows = conn.execute(
            """
            UPDATE project_apis
            SET is_active = false, table_id = NULL, updated_at = now()
            WHERE project_id = ? AND table_id = ?
            RETURNING id
            """,
            [project_id, table_id],
        ).fetchall()
        return len(rows)

    def delete_table_apis(
        self,
        project_id: int,
        table_name: str,
        table_id: int | None = None,
        timeout: float | None = None,
    ) -> int:
        """
        Permanently delete the generated APIs of a table.

        Covers both APIs still attached to ``table_id`` and inactive APIs
        detached by a previous drop of ``table_name``.
        """
        paths = default_api_paths(table_name)
        placeholders = ", ".join("?" for _ in paths)
        with self.transaction(timeout=timeout) as conn:
            rows = conn.execute(
                f"""
                DELETE FROM project_apis
                WHERE project_id = ? AND NOT is_custom
                  AND (table_id = ? OR (table_id IS NULL AND api_path IN ({placeholders})))
                RETURNING id
                """,
                [project_id, table_id] + paths,
            ).fetchall()
        return len(rows)

    # ========================================
    # Audit trail
    # ========================================

    def log_operation(
        self,
        operation: str,
        status: str,
        project_id: int | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
        duration_ms: int | None = None,
        error_message: str | None = None,
    ) -> None:
        """Log an operation to the audit trail."""
        self.execute_write(
            """
            INSERT INTO operations_log
            (project_id, operation, resource_type, resource_id,
             details, duration_ms, status, error_message)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                project_id,
                operation,
                resource_type,
                resource_id,
                json.dumps(details, default=str) if details is not None else None,
                duration_ms,
                status,
                error_message,
            ],
        )

    def list_operations(self, project_id: int, limit: int = 100) -> list[dict[str, Any]]:
        rows = self.execute(
            """
            SELECT operation, status, resource_type, resource_id, details, error_message
            FROM operations_log
            WHERE project_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            [project_id, limit],
        )
        return [
            {
                "operation": row[0],
                "status": row[1],
                "resource_type": row[2],
                "resource_id": row[3],
                "details": json.loads(row[4]) if isinstance(row[4], str) else row[4],
                "error_message": row[5],
            }
            for row in rows
        ]

    # ========================================
    # Row mapping
    # ========================================

    @staticmethod
    def _dump_structure(structure: list[TableColumn]) -> str:
        return json.dumps([col.model_dump(mode="json", by_alias=True) for col in structure])

    @staticmethod
    def _row_to_project_database(row: tuple | None) -> ProjectDatabase | None:
        """Convert database row to ProjectDatabase."""
        if row is None:
            return None

        structure = row[8]
        if isinstance(structure, str):
            structure = json.loads(structure)

        return ProjectDatabase(
            id=row[0],
            project_id=row[1],
            table_name=row[2],
            display_name=row[3],
            description=row[4],
            is_built_in=bool(row[5]),
            is_generated=bool(row[6]),
            api_enabled=bool(row[7]),
            structure=structure or [],
            created_at=row[9],
            updated_at=row[10],
        )

    @staticmethod
    def _row_to_project_api(row: tuple | None) -> ProjectApi | None:
        if row is None:
            return None

        configuration = row[7]
        if isinstance(configuration, str):
            configuration = json.loads(configuration)

        return ProjectApi(
            id=row[0],
            project_id=row[1],
            api_path=row[2],
            method=row[3],
            table_id=row[4],
            is_custom=bool(row[5]),
            is_active=bool(row[6]),
            configuration=configuration,
            created_at=row[8],
            updated_at=row[9],
        )


# Global singleton instance
engine_db = EngineDB()
