"""Data models for table definitions, registry rows and engine results.

Models accept both the camelCase keys used by API payloads
(``isPrimary``, ``pageSize``) and snake_case attribute names, and dump
with camelCase aliases for outward responses.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Literal, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from table_engine.errors import TableEngineError, ValidationError


class EngineModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ============================================
# Table definition models
# ============================================


class LogicalType(str, Enum):
    """Closed set of column types a tenant can declare."""

    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    NUMBER = "number"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    JSON = "json"


class ColumnReference(EngineModel):
    """Logical reference to a column of another table in the same project."""

    table: str
    column: str = "id"


class ColumnDefinition(EngineModel):
    """Column as declared by a tenant. Names and types are checked by the validator."""

    name: str = Field(description="Column name (identifier-safe)")
    type: str = Field(description="Logical type, one of LogicalType values")
    nullable: bool = Field(default=True, description="Whether column allows NULL")
    is_primary: bool = Field(default=False, description="Primary key column")
    is_foreign: bool = Field(default=False, description="Foreign key column")
    unique: bool = Field(default=False, description="Unique constraint")
    default_value: Any = Field(default=None, description="Default value")
    references: ColumnReference | None = Field(
        default=None, description="Referenced table/column for foreign keys"
    )


class TableDefinition(EngineModel):
    """Input to table creation. Not persisted as-is."""

    name: str = Field(description="Logical table name as seen by the tenant")
    display_name: str | None = Field(default=None, description="Human-readable name")
    description: str | None = Field(default=None, description="Table description")
    columns: list[ColumnDefinition] = Field(default_factory=list)
    timestamps: bool = Field(default=False, description="Add created_at/updated_at")
    soft_delete: bool = Field(default=False, description="Add nullable deleted_at")
    generate_api: bool = Field(default=False, description="Register default CRUD APIs")
    is_built_in: bool = Field(default=False, description="Table shipped with the project")


class AlterColumn(EngineModel):
    """Change to an existing column."""

    name: str
    type: str | None = None
    nullable: bool | None = None


class TableAlterations(EngineModel):
    """Set of column changes applied by alter_table."""

    add_columns: list[ColumnDefinition] = Field(default_factory=list)
    drop_columns: list[str] = Field(default_factory=list)
    alter_columns: list[AlterColumn] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.add_columns or self.drop_columns or self.alter_columns)


# ============================================
# Query models
# ============================================


FilterOperator = Literal["eq", "neq", "gt", "gte", "lt", "lte", "like", "ilike", "in", "between"]


class QueryFilter(EngineModel):
    """Single predicate of a record query."""

    field: str
    operator: FilterOperator
    value: Any = None


class PaginationOptions(EngineModel):
    """Page selection and ordering for record queries."""

    page: int | None = Field(default=None, ge=1)
    page_size: int | None = Field(default=None, ge=1)
    order_by: str | None = None
    order_direction: Literal["asc", "desc"] = "asc"


class FieldRule(EngineModel):
    """Custom validation rule for one record field."""

    required: bool = False
    type: Literal["string", "number", "boolean", "date", "email", "url", "array", "object"] | None = None
    min_length: int | None = None
    max_length: int | None = None
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    enum: list[Any] | None = None
    message: str | None = None

    @field_validator("pattern")
    @classmethod
    def pattern_compiles(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"invalid regular expression: {e}") from None
        return v


# ============================================
# Registry models
# ============================================


class TableColumn(EngineModel):
    """Cached column structure stored in the registry."""

    name: str
    type: LogicalType
    physical_type: str
    nullable: bool = True
    is_primary: bool = False
    is_foreign: bool = False
    unique: bool = False
    default_value: Any = None
    references: ColumnReference | None = None


class ProjectDatabase(EngineModel):
    """Registry row, one per logical table."""

    id: int
    project_id: int
    table_name: str
    display_name: str | None = None
    description: str | None = None
    is_built_in: bool = False
    is_generated: bool = False
    api_enabled: bool = False
    structure: list[TableColumn] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def column(self, name: str) -> TableColumn | None:
        """Find a column by name (case-insensitive, like the store)."""
        lowered = name.lower()
        for col in self.structure:
            if col.name.lower() == lowered:
                return col
        return None

    @property
    def primary_key(self) -> TableColumn | None:
        for col in self.structure:
            if col.is_primary:
                return col
        return None

    @property
    def has_soft_delete(self) -> bool:
        return self.column("deleted_at") is not None

    @property
    def has_timestamps(self) -> bool:
        return self.column("created_at") is not None and self.column("updated_at") is not None


class ProjectApi(EngineModel):
    """Registry row for an API exposed over a table."""

    id: int
    project_id: int
    api_path: str
    method: str
    table_id: int | None = None
    is_custom: bool = False
    is_active: bool = True
    configuration: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class IndexInfo(EngineModel):
    """Index on a project table, addressed by its logical name."""

    name: str
    columns: list[str]
    unique: bool = False


class TableSchema(EngineModel):
    """Live schema of a project table as reported by the catalog."""

    table_name: str
    display_name: str | None = None
    description: str | None = None
    columns: list[TableColumn]
    primary_key: str | None = None
    indexes: list[IndexInfo] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ============================================
# Result envelope
# ============================================


class ErrorDescriptor(EngineModel):
    """Error part of a failed QueryResult."""

    error: str
    message: str
    details: dict[str, Any] | None = None


class PaginationMeta(EngineModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class RecordPage(EngineModel):
    """Rows of one page plus pagination metadata."""

    rows: list[dict[str, Any]]
    pagination: PaginationMeta


T = TypeVar("T")


class QueryResult(EngineModel, Generic[T]):
    """Uniform return envelope of every engine operation."""

    success: bool
    data: T | None = None
    meta: dict[str, Any] | None = None
    error: ErrorDescriptor | None = None

    @classmethod
    def ok(cls, data: Any = None, meta: dict[str, Any] | None = None) -> "QueryResult":
        return cls(success=True, data=data, meta=meta)

    @classmethod
    def failure(cls, exc: TableEngineError) -> "QueryResult":
        return cls(
            success=False,
            error=ErrorDescriptor(error=exc.error, message=exc.message, details=exc.details),
        )


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_model(model_cls: type[ModelT], value: Any, what: str | None = None) -> ModelT:
    """Build ``model_cls`` from a model instance or a dict.

    pydantic errors are re-raised as engine ValidationErrors so callers
    only ever see the engine's error taxonomy.
    """
    if isinstance(value, model_cls):
        return value
    try:
        return model_cls.model_validate(value)
    except pydantic.ValidationError as e:
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or (what or "value"),
                "message": err["msg"],
                "code": err["type"],
            }
            for err in e.errors()
        ]
        raise ValidationError(
            f"Invalid {what or model_cls.__name__}",
            errors=errors,
        ) from e
