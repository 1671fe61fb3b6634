"""
krsp - Standardized queries for the KRSP field-study database

A query layer over the Kluane Red Squirrel Project database: connection
handles, lazily executed plans with build-time column checks, a row cap
that flags truncated results, and a catalog of standard queries.
"""

__version__ = "0.1.0"

from krsp.catalog import CATALOG, QueryCatalog, QueryParameter, StandardQuery
from krsp.core.connection import (
    ConnectionHandle,
    close,
    connect,
    connection,
    with_connection,
)
from krsp.core.executor import UNBOUNDED, collect, execute_read_only, show_query
from krsp.core.expressions import (
    agg,
    coalesce,
    col,
    concat,
    count,
    fn,
    lit,
    mean,
    n_distinct,
    sd,
    year,
)
from krsp.core.plan import Plan
from krsp.core.tables import TableRef, list_tables, table
from krsp.exceptions import (
    AmbiguousJoinError,
    CatalogError,
    ColumnError,
    ConnectionError,
    ExecutionError,
    KrspError,
    PlanError,
    SchemaError,
    TranslationError,
    UnsupportedAggregateError,
    WriteRejectedError,
)
from krsp.models import ConnectionConfig, MaterializedTable

__all__ = [
    "ConnectionConfig",
    "ConnectionHandle",
    "connect",
    "close",
    "connection",
    "with_connection",
    "TableRef",
    "table",
    "list_tables",
    "Plan",
    "collect",
    "show_query",
    "execute_read_only",
    "UNBOUNDED",
    "MaterializedTable",
    "col",
    "lit",
    "fn",
    "concat",
    "coalesce",
    "year",
    "agg",
    "count",
    "n_distinct",
    "mean",
    "sd",
    "CATALOG",
    "QueryCatalog",
    "QueryParameter",
    "StandardQuery",
    "KrspError",
    "ConnectionError",
    "SchemaError",
    "PlanError",
    "ColumnError",
    "UnsupportedAggregateError",
    "AmbiguousJoinError",
    "TranslationError",
    "ExecutionError",
    "WriteRejectedError",
    "CatalogError",
]
