"""Per-project dynamic tables on a shared DuckDB database."""

__version__ = "0.1.0"

from table_engine.engine import TableEngine
from table_engine.errors import (
    ConflictError,
    DatabaseError,
    ForbiddenError,
    NotFoundError,
    SchemaDriftError,
    TableEngineError,
    ValidationError,
)
from table_engine.models import (
    ColumnDefinition,
    PaginationOptions,
    QueryFilter,
    QueryResult,
    TableAlterations,
    TableDefinition,
)

__all__ = [
    "__version__",
    "TableEngine",
    "TableEngineError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "ForbiddenError",
    "SchemaDriftError",
    "DatabaseError",
    "ColumnDefinition",
    "TableDefinition",
    "TableAlterations",
    "QueryFilter",
    "PaginationOptions",
    "QueryResult",
]
