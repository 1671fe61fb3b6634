"""Pydantic models for configuration, metadata and results."""

from .capabilities import DialectCapabilities
from .config import ConnectionConfig
from .result import MaterializedTable
from .table import ColumnInfo, TableInfo

__all__ = [
    "DialectCapabilities",
    "ConnectionConfig",
    "MaterializedTable",
    "ColumnInfo",
    "TableInfo",
]
