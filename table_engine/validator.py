"""Validation of table definitions and record payloads.

Everything in this module is pure: no I/O, no side effects. Validators
collect every violation instead of stopping at the first one so callers can
report a complete error list.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from table_engine.column_types import coerce_value, parse_logical_type, render_default
from table_engine.errors import ValidationError
from table_engine.models import (
    ColumnDefinition,
    FieldRule,
    ProjectDatabase,
    TableDefinition,
    parse_model,
)

IDENTIFIER_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

TIMESTAMP_COLUMNS = ("created_at", "updated_at")
SOFT_DELETE_COLUMN = "deleted_at"

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
URL_RE = re.compile(r"^(https?://)?[\da-z.-]+\.[a-z.]{2,6}(/[\w./?%&=-]*)?$", re.IGNORECASE)


def _error(field_name: str, message: str, code: str) -> dict[str, str]:
    return {"field": field_name, "message": message, "code": code}


@dataclass
class ValidationOutcome:
    """Result of validating a table definition."""

    definition: TableDefinition
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> TableDefinition:
        if self.errors:
            raise ValidationError(
                f"Invalid definition for table '{self.definition.name}'",
                errors=self.errors,
                error="invalid_table_definition",
            )
        return self.definition


# ============================================
# Table definitions
# ============================================


def validate(definition: TableDefinition | dict[str, Any]) -> ValidationOutcome:
    """
    Validate a proposed table definition.

    Checks, in order: table name, column names (pattern and case-insensitive
    uniqueness), logical types, exactly one primary key, reserved column
    conflicts with timestamps/softDelete.
    """
    definition = parse_model(TableDefinition, definition, "table definition")
    errors: list[dict[str, str]] = []

    if not IDENTIFIER_RE.match(definition.name or ""):
        errors.append(_error(
            "name",
            "Table name must start with a letter and contain only letters, digits and underscores",
            "invalid_table_name",
        ))

    if not definition.columns:
        errors.append(_error("columns", "Table must have at least one column", "no_columns"))

    seen: set[str] = set()
    for position, column in enumerate(definition.columns):
        label = f"columns[{position}]"
        if not IDENTIFIER_RE.match(column.name or ""):
            errors.append(_error(
                f"{label}.name",
                f"Column name '{column.name}' must start with a letter and contain only letters, digits and underscores",
                "invalid_column_name",
            ))
        lowered = (column.name or "").lower()
        if lowered in seen:
            errors.append(_error(f"{label}.name", f"Duplicate column name '{column.name}'", "duplicate_column"))
        seen.add(lowered)

    for position, column in enumerate(definition.columns):
        errors.extend(_check_column_type(column, f"columns[{position}]"))

    primary = [c for c in definition.columns if c.is_primary]
    if len(primary) != 1:
        errors.append(_error(
            "columns",
            f"Exactly one primary key column is required, found {len(primary)}",
            "primary_key_count",
        ))

    for position, column in enumerate(definition.columns):
        lowered = (column.name or "").lower()
        if definition.timestamps and lowered in TIMESTAMP_COLUMNS:
            errors.append(_error(
                f"columns[{position}].name",
                f"Column '{column.name}' is added automatically when timestamps are enabled",
                "reserved_column",
            ))
        if definition.soft_delete and lowered == SOFT_DELETE_COLUMN:
            errors.append(_error(
                f"columns[{position}].name",
                f"Column '{column.name}' is added automatically when soft delete is enabled",
                "reserved_column",
            ))

    return ValidationOutcome(definition=definition, errors=errors)


def _check_column_type(column: ColumnDefinition, label: str) -> list[dict[str, str]]:
    errors = []
    logical = parse_logical_type(column.type)
    if logical is None:
        errors.append(_error(f"{label}.type", f"Unsupported column type '{column.type}'", "invalid_type"))
        return errors
    if column.default_value is not None:
        try:
            render_default(logical, column.default_value)
        except ValueError as e:
            errors.append(_error(
                f"{label}.defaultValue",
                f"Default for column '{column.name}' is invalid: {e}",
                "invalid_default",
            ))
    return errors


def validate_column(column: ColumnDefinition | dict[str, Any], label: str = "column") -> list[dict[str, str]]:
    """Validate a column added to an existing table."""
    column = parse_model(ColumnDefinition, column, label)
    errors = []
    if not IDENTIFIER_RE.match(column.name or ""):
        errors.append(_error(
            f"{label}.name",
            f"Column name '{column.name}' must start with a letter and contain only letters, digits and underscores",
            "invalid_column_name",
        ))
    errors.extend(_check_column_type(column, label))
    if (column.name or "").lower() in TIMESTAMP_COLUMNS + (SOFT_DELETE_COLUMN,):
        errors.append(_error(
            f"{label}.name",
            f"Column '{column.name}' is reserved for timestamps and soft delete",
            "reserved_column",
        ))
    if column.unique:
        errors.append(_error(
            f"{label}.unique",
            "Unique constraints on new columns are created with a unique index",
            "unsupported_constraint",
        ))
    if column.is_primary:
        errors.append(_error(
            f"{label}.isPrimary",
            "A table has exactly one primary key; new columns cannot be primary",
            "primary_key_count",
        ))
    return errors


# ============================================
# Record payloads
# ============================================


def check_record(
    table: ProjectDatabase,
    data: dict[str, Any],
    partial: bool = False,
) -> dict[str, Any]:
    """
    Validate ``data`` against the cached table structure.

    Returns the payload keyed by actual column names with values converted to
    their bind representation.

    Raises:
        ValidationError: listing every unknown field, null violation,
            type mismatch and (unless ``partial``) missing required field
    """
    if not isinstance(data, dict):
        raise ValidationError("Record data must be an object", error="invalid_record")

    errors: list[dict[str, str]] = []
    values: dict[str, Any] = {}

    for key, value in data.items():
        column = table.column(key) if isinstance(key, str) else None
        if column is None:
            errors.append(_error(str(key), f"Field '{key}' does not exist in table '{table.table_name}'", "unknown_field"))
            continue
        if value is None:
            if not column.nullable:
                errors.append(_error(column.name, f"Field '{column.name}' cannot be null", "not_nullable"))
                continue
            values[column.name] = None
            continue
        try:
            values[column.name] = coerce_value(column.type, value)
        except ValueError as e:
            errors.append(_error(column.name, f"Invalid value for field '{column.name}': {e}", "invalid_type"))

    if not partial:
        for column in table.structure:
            if column.nullable or column.is_primary or column.default_value is not None:
                continue
            if column.name.lower() in TIMESTAMP_COLUMNS:
                continue
            if column.name not in values and not any(e["field"] == column.name for e in errors):
                errors.append(_error(column.name, f"Field '{column.name}' is required", "required"))

    if errors:
        raise ValidationError(
            f"Invalid record for table '{table.table_name}'",
            errors=errors,
            error="invalid_record",
        )
    return values


def validate_data(data: dict[str, Any], schema: dict[str, FieldRule | dict[str, Any]]) -> list[dict[str, str]]:
    """Apply custom field rules to a record payload and return all violations."""
    errors: list[dict[str, str]] = []

    for field_name, raw_rule in schema.items():
        rule = parse_model(FieldRule, raw_rule, f"rule for '{field_name}'")
        value = data.get(field_name)

        if rule.required and (value is None or value == ""):
            errors.append(_error(field_name, rule.message or f"Field '{field_name}' is required", "REQUIRED"))
            continue
        if value is None:
            continue

        if rule.type:
            type_error = _check_rule_type(field_name, value, rule.type)
            if type_error:
                errors.append(type_error)
                continue

        if isinstance(value, str):
            if rule.min_length is not None and len(value) < rule.min_length:
                errors.append(_error(
                    field_name,
                    rule.message or f"Field '{field_name}' must have at least {rule.min_length} characters",
                    "MIN_LENGTH",
                ))
            if rule.max_length is not None and len(value) > rule.max_length:
                errors.append(_error(
                    field_name,
                    rule.message or f"Field '{field_name}' must have at most {rule.max_length} characters",
                    "MAX_LENGTH",
                ))
            if rule.pattern and not re.search(rule.pattern, value):
                errors.append(_error(
                    field_name,
                    rule.message or f"Field '{field_name}' has an invalid format",
                    "PATTERN",
                ))

        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            if rule.min is not None and value < rule.min:
                errors.append(_error(
                    field_name,
                    rule.message or f"Field '{field_name}' must be greater than or equal to {rule.min}",
                    "MIN_VALUE",
                ))
            if rule.max is not None and value > rule.max:
                errors.append(_error(
                    field_name,
                    rule.message or f"Field '{field_name}' must be less than or equal to {rule.max}",
                    "MAX_VALUE",
                ))

        if rule.enum is not None and value not in rule.enum:
            errors.append(_error(
                field_name,
                rule.message or f"Field '{field_name}' must be one of: {', '.join(map(str, rule.enum))}",
                "ENUM",
            ))

    return errors


def _check_rule_type(field_name: str, value: Any, expected: str) -> dict[str, str] | None:
    ok = True
    if expected == "string":
        ok = isinstance(value, str)
    elif expected == "number":
        ok = isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)
    elif expected == "boolean":
        ok = isinstance(value, bool)
    elif expected == "date":
        if isinstance(value, (date, datetime)):
            ok = True
        elif isinstance(value, str):
            try:
                datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                ok = False
        else:
            ok = False
    elif expected == "email":
        ok = isinstance(value, str) and bool(EMAIL_RE.match(value))
    elif expected == "url":
        ok = isinstance(value, str) and bool(URL_RE.match(value))
    elif expected == "array":
        ok = isinstance(value, list)
    elif expected == "object":
        ok = isinstance(value, dict)

    if ok:
        return None
    return _error(field_name, f"Field '{field_name}' must be of type {expected}", f"TYPE_{expected.upper()}")
