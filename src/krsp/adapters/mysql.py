"""MySQL adapter; the KRSP database itself runs on MySQL."""

from krsp.adapters.base import BaseAdapter
from krsp.models.capabilities import DialectCapabilities


class MySQLAdapter(BaseAdapter):
    """MySQL adapter."""

    name = "mysql"

    @property
    def capabilities(self) -> DialectCapabilities:
        """MySQL lacks FULL OUTER JOIN."""
        return DialectCapabilities(
            full_join=False,
            stddev=True,
            read_only_sessions=True,
            statement_timeout=True,
        )

    def read_only_statement(self) -> str:
        return "SET SESSION TRANSACTION READ ONLY"

    def timeout_statement(self, timeout: int) -> str:
        # max_execution_time is in milliseconds and only applies to SELECT
        return f"SET SESSION max_execution_time = {timeout * 1000}"
