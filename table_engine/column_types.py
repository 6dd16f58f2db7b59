"""Logical column types and their DuckDB counterparts.

The translation table is the only place that knows how a logical type is
stored. Anything that needs a physical type, a catalog type name, a DDL
default literal or a bind value goes through the helpers below.
"""

import json
import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from table_engine.models import LogicalType

# Logical type -> DDL type
PHYSICAL_TYPES: dict[LogicalType, str] = {
    LogicalType.STRING: "VARCHAR(255)",
    LogicalType.TEXT: "TEXT",
    LogicalType.INTEGER: "INTEGER",
    LogicalType.NUMBER: "DECIMAL(18,4)",
    LogicalType.DECIMAL: "DECIMAL(18,4)",
    LogicalType.BOOLEAN: "BOOLEAN",
    LogicalType.DATE: "DATE",
    LogicalType.DATETIME: "TIMESTAMPTZ",
    LogicalType.JSON: "JSON",
}

# Logical type -> type name as reported by information_schema.columns
CATALOG_TYPES: dict[LogicalType, str] = {
    LogicalType.STRING: "VARCHAR",
    LogicalType.TEXT: "VARCHAR",
    LogicalType.INTEGER: "INTEGER",
    LogicalType.NUMBER: "DECIMAL(18,4)",
    LogicalType.DECIMAL: "DECIMAL(18,4)",
    LogicalType.BOOLEAN: "BOOLEAN",
    LogicalType.DATE: "DATE",
    LogicalType.DATETIME: "TIMESTAMP WITH TIME ZONE",
    LogicalType.JSON: "JSON",
}

_TYPE_ALIASES = {
    "TEXT": "VARCHAR",
    "STRING": "VARCHAR",
    "INT": "INTEGER",
    "INT4": "INTEGER",
    "BOOL": "BOOLEAN",
    "TIMESTAMPTZ": "TIMESTAMP WITH TIME ZONE",
}

_INTEGER_TYPES = {"TINYINT", "SMALLINT", "INTEGER", "BIGINT", "HUGEINT", "UBIGINT", "UINTEGER"}
_FLOAT_TYPES = {"FLOAT", "REAL", "DOUBLE"}

_INT_RE = re.compile(r"^-?\d+$")
_TRUE_VALUES = {"true", "t", "1", "yes"}
_FALSE_VALUES = {"false", "f", "0", "no"}

# Defaults that are rendered as SQL expressions rather than literals
_CURRENT_TIMESTAMP_DEFAULTS = {"current_timestamp", "now()", "now"}


def parse_logical_type(value: str | LogicalType) -> LogicalType | None:
    """Return the LogicalType for ``value`` or None if it is not supported."""
    if isinstance(value, LogicalType):
        return value
    if not isinstance(value, str):
        return None
    try:
        return LogicalType(value.strip().lower())
    except ValueError:
        return None


def physical_type(logical: LogicalType) -> str:
    return PHYSICAL_TYPES[logical]


def normalize_catalog_type(data_type: str) -> str:
    """Normalize a catalog/DDL type name so equivalent spellings compare equal."""
    normalized = " ".join(data_type.strip().upper().split())
    normalized = _TYPE_ALIASES.get(normalized, normalized)
    if normalized.startswith("VARCHAR("):
        return "VARCHAR"
    return normalized.replace(", ", ",")


def catalog_type(logical: LogicalType) -> str:
    return CATALOG_TYPES[logical]


def infer_logical_type(data_type: str, hint: LogicalType | None = None) -> LogicalType:
    """Map a live catalog type back to a logical type.

    ``hint`` is the type recorded in the cached structure; it wins whenever it
    is consistent with the catalog (string and text share VARCHAR storage).
    """
    normalized = normalize_catalog_type(data_type)
    if hint is not None and normalize_catalog_type(catalog_type(hint)) == normalized:
        return hint
    if normalized == "VARCHAR":
        return LogicalType.STRING
    if normalized in _INTEGER_TYPES:
        return LogicalType.INTEGER
    if normalized.startswith("DECIMAL") or normalized.startswith("NUMERIC") or normalized in _FLOAT_TYPES:
        return LogicalType.DECIMAL
    if normalized == "BOOLEAN":
        return LogicalType.BOOLEAN
    if normalized == "DATE":
        return LogicalType.DATE
    if normalized.startswith("TIMESTAMP"):
        return LogicalType.DATETIME
    if normalized == "JSON":
        return LogicalType.JSON
    return LogicalType.TEXT


# ============================================
# Value conversion
# ============================================


def coerce_value(logical: LogicalType, value: Any) -> Any:
    """
    Convert a record value into the bind value for a column of ``logical`` type.

    Raises:
        ValueError: if the value is not compatible with the column type
    """
    if value is None:
        return None

    if logical in (LogicalType.STRING, LogicalType.TEXT):
        if isinstance(value, str):
            return value
        raise ValueError("expected a string")

    if logical == LogicalType.INTEGER:
        if isinstance(value, bool):
            raise ValueError("expected an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and _INT_RE.match(value.strip()):
            return int(value.strip())
        raise ValueError("expected an integer")

    if logical in (LogicalType.NUMBER, LogicalType.DECIMAL):
        if isinstance(value, bool):
            raise ValueError("expected a number")
        if isinstance(value, Decimal):
            return value
        if isinstance(value, (int, float, str)):
            try:
                converted = Decimal(str(value).strip())
            except InvalidOperation:
                raise ValueError("expected a number") from None
            if not converted.is_finite():
                raise ValueError("expected a finite number")
            return converted
        raise ValueError("expected a number")

    if logical == LogicalType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _TRUE_VALUES | _FALSE_VALUES:
            return value.strip().lower() in _TRUE_VALUES
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise ValueError("expected a boolean")

    if logical == LogicalType.DATE:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value.strip()[:10])
            except ValueError:
                raise ValueError("expected an ISO date (YYYY-MM-DD)") from None
        raise ValueError("expected a date")

    if logical == LogicalType.DATETIME:
        # Naive values are taken as UTC
        if isinstance(value, datetime):
            return _as_utc(value)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        if isinstance(value, str):
            text = value.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                return _as_utc(datetime.fromisoformat(text))
            except ValueError:
                raise ValueError("expected an ISO datetime") from None
        raise ValueError("expected a datetime")

    if logical == LogicalType.JSON:
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError):
            raise ValueError("expected a JSON-serializable value") from None

    raise ValueError(f"unsupported type {logical.value}")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def decode_value(logical: LogicalType, value: Any) -> Any:
    """Convert a fetched value back to its Python representation."""
    if value is None:
        return None
    if logical == LogicalType.JSON and isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def is_current_timestamp(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() in _CURRENT_TIMESTAMP_DEFAULTS


def render_default(logical: LogicalType, value: Any) -> str:
    """
    Render a column default as a SQL literal for DDL.

    DDL cannot carry bind parameters, so the value is first coerced to the
    column type and then rendered with quoting applied.

    Raises:
        ValueError: if the default is not compatible with the column type
    """
    if logical in (LogicalType.DATE, LogicalType.DATETIME) and is_current_timestamp(value):
        return "CURRENT_DATE" if logical == LogicalType.DATE else "current_timestamp"

    coerced = coerce_value(logical, value)
    if coerced is None:
        return "NULL"
    if isinstance(coerced, bool):
        return "TRUE" if coerced else "FALSE"
    if isinstance(coerced, (int, Decimal)):
        return str(coerced)
    if isinstance(coerced, datetime):
        return f"TIMESTAMPTZ {quote_literal(coerced.isoformat())}"
    if isinstance(coerced, date):
        return f"DATE {quote_literal(coerced.isoformat())}"
    if logical == LogicalType.JSON:
        return f"{quote_literal(coerced)}::JSON"
    return quote_literal(str(coerced))


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"
