"""SQLite adapter, used for local extracts and test fixtures."""

import sqlite3

from krsp.adapters.base import BaseAdapter
from krsp.models.capabilities import DialectCapabilities

# FULL OUTER JOIN arrived in SQLite 3.39
_FULL_JOIN = sqlite3.sqlite_version_info >= (3, 39, 0)


class SQLiteAdapter(BaseAdapter):
    """SQLite adapter."""

    name = "sqlite"

    @property
    def capabilities(self) -> DialectCapabilities:
        """SQLite has no standard deviation aggregate or statement timeout."""
        return DialectCapabilities(
            full_join=_FULL_JOIN,
            stddev=False,
            read_only_sessions=True,
            statement_timeout=False,
        )

    def read_only_statement(self) -> str:
        return "PRAGMA query_only = ON"

    def timeout_statement(self, timeout: int) -> str:
        return ""
