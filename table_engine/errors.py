"""Typed errors raised by the table engine.

Every error carries the same three fields as the standard error response:
a machine readable ``error`` code, a human readable ``message`` and optional
``details``. The facade turns them into failed ``QueryResult`` envelopes.
"""

from typing import Any


class TableEngineError(Exception):
    """Base class for all engine errors."""

    error_type: str = "engine_error"

    def __init__(
        self,
        message: str,
        error: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error = error or self.error_type
        self.details = details


class ValidationError(TableEngineError):
    """Malformed names, columns, types or record values. Never touches the store."""

    error_type = "validation_error"

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        error: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if errors:
            details["errors"] = errors
        super().__init__(message, error=error, details=details or None)
        self.errors = errors or []


class ConflictError(TableEngineError):
    """Duplicate logical/physical table name or index name."""

    error_type = "conflict"


class NotFoundError(TableEngineError):
    """Unregistered table, missing record or missing project/table pairing."""

    error_type = "not_found"


class ForbiddenError(TableEngineError):
    """Attempt to address a table owned by another project."""

    error_type = "forbidden"


class SchemaDriftError(TableEngineError):
    """Cached structure disagrees with the live catalog."""

    error_type = "schema_drift"


class DatabaseError(TableEngineError):
    """Underlying store failure, including statement timeouts."""

    error_type = "database_error"
