"""Connection handles, plans and their execution."""

from krsp.core.connection import (
    ConnectionHandle,
    close,
    connect,
    connection,
    with_connection,
)
from krsp.core.executor import UNBOUNDED, collect, execute_read_only, show_query
from krsp.core.plan import Plan
from krsp.core.tables import TableRef, list_tables, table

__all__ = [
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
]
