"""Backend adapters for specific database implementations."""

from .base import BaseAdapter
from .mysql import MySQLAdapter
from .postgresql import PostgresAdapter
from .sqlite import SQLiteAdapter

__all__ = [
    "BaseAdapter",
    "MySQLAdapter",
    "PostgresAdapter",
    "SQLiteAdapter",
    "create_adapter",
]


def create_adapter(dialect: str) -> BaseAdapter:
    """
    Factory function to create appropriate backend adapter.

    Args:
        dialect: SQLAlchemy dialect name (mysql, postgresql, sqlite)

    Returns:
        Adapter instance

    Raises:
        ValueError: If the dialect is not supported
    """
    adapters = {
        "mysql": MySQLAdapter,
        "mariadb": MySQLAdapter,
        "postgresql": PostgresAdapter,
        "sqlite": SQLiteAdapter,
    }

    adapter_class = adapters.get(dialect)

    if adapter_class is None:
        raise ValueError(
            f"Unsupported database dialect: {dialect}. "
            f"Supported dialects: {', '.join(adapters.keys())}"
        )

    return adapter_class()
