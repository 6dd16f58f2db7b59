"""Isolation and registry resolver.

Turns a (project_id, logical table name) pair into the physical table it
addresses. Resolution is registry-backed: a name that has no registry row
for the requesting project never reaches DDL or DML.
"""

from dataclasses import dataclass

import duckdb
import structlog

from table_engine.database import EngineDB
from table_engine.errors import ForbiddenError, NotFoundError, ValidationError
from table_engine.models import ProjectDatabase
from table_engine.naming import (
    is_project_table,
    parse_physical_name,
    physical_table_name,
    validate_project_id,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class ResolvedTable:
    """A registered table of a project."""

    project_id: int
    record: ProjectDatabase

    @property
    def table_name(self) -> str:
        return self.record.table_name

    @property
    def physical_name(self) -> str:
        # Derived on every access, never stored
        return physical_table_name(self.project_id, self.record.table_name)


class IsolationResolver:
    """Sole path from logical names to physical tables."""

    def __init__(self, db: EngineDB) -> None:
        self.db = db

    def resolve(
        self,
        project_id: int,
        table_name: str,
        conn: duckdb.DuckDBPyConnection | None = None,
    ) -> ResolvedTable:
        """
        Resolve a logical table of a project.

        Raises:
            ValidationError: malformed project id or table name
            ForbiddenError: the name addresses another project's physical table
            NotFoundError: the table is not registered for the project
        """
        project_id = validate_project_id(project_id)
        if not isinstance(table_name, str) or not table_name.strip():
            raise ValidationError("Table name is required", error="invalid_table_name")

        record = self.db.get_project_database(project_id, table_name, conn=conn)
        if record is None:
            owner, _ = parse_physical_name(table_name.lower())
            if owner is not None and owner != project_id:
                logger.warning(
                    "foreign_table_access_denied",
                    project_id=project_id,
                    owner_project_id=owner,
                )
                raise ForbiddenError(
                    "Table belongs to another project",
                    details={"table_name": self.to_logical(table_name)},
                )
            raise NotFoundError(
                f"Table '{table_name}' not found",
                error="table_not_found",
                details={"table_name": table_name},
            )

        resolved = ResolvedTable(project_id=project_id, record=record)
        if not is_project_table(resolved.physical_name, project_id):
            raise ForbiddenError("Table belongs to another project")
        return resolved

    def physical_name(self, project_id: int, table_name: str) -> str:
        """Physical name for a table that is about to be created."""
        return physical_table_name(project_id, table_name)

    @staticmethod
    def to_logical(physical_name: str) -> str:
        _, basename = parse_physical_name(physical_name)
        return basename
