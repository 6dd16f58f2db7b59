"""Prometheus metrics definitions for the table engine.

This module defines all Prometheus metrics used for observability:
- Engine operation metrics (count, duration)
- DDL statement counts
- Error counts by type
- Store connection and table gauges
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Engine Operation Metrics
# =============================================================================

OPERATION_COUNT = Counter(
    "table_engine_operations_total",
    "Total number of engine operations",
    ["operation", "status"]
)

OPERATION_DURATION = Histogram(
    "table_engine_operation_duration_seconds",
    "Engine operation duration in seconds",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 60.0]
)

# =============================================================================
# DDL Metrics
# =============================================================================

DDL_STATEMENTS = Counter(
    "table_engine_ddl_total",
    "Total number of DDL statements issued against project tables",
    ["statement"]  # create_table, alter_table, drop_table, create_index, drop_index
)

# =============================================================================
# Error Metrics
# =============================================================================

ERROR_COUNT = Counter(
    "table_engine_errors_total",
    "Total number of engine errors by type",
    ["type"]
)

# =============================================================================
# Store Metrics
# =============================================================================

CONNECTIONS_ACTIVE = Gauge(
    "table_engine_connections_active",
    "Number of open connections to the engine database"
)

STATEMENT_TIMEOUTS = Counter(
    "table_engine_statement_timeouts_total",
    "Total number of units of work interrupted by the operation timeout"
)

TABLES_TOTAL = Gauge(
    "table_engine_tables_total",
    "Number of registered project tables"
)
