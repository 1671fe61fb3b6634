"""PostgreSQL adapter with full SQL join support."""

from krsp.adapters.base import BaseAdapter
from krsp.models.capabilities import DialectCapabilities


class PostgresAdapter(BaseAdapter):
    """PostgreSQL adapter."""

    name = "postgresql"

    @property
    def capabilities(self) -> DialectCapabilities:
        """PostgreSQL supports every feature used by plans."""
        return DialectCapabilities(
            full_join=True,
            stddev=True,
            read_only_sessions=True,
            statement_timeout=True,
        )

    def read_only_statement(self) -> str:
        return "SET SESSION CHARACTERISTICS AS TRANSACTION READ ONLY"

    def timeout_statement(self, timeout: int) -> str:
        return f"SET statement_timeout = {timeout * 1000}"
