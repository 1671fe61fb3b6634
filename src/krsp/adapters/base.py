"""Base adapter abstract class for backend-specific behaviour."""

from abc import ABC, abstractmethod

from sqlalchemy import func
from sqlalchemy.sql.elements import ColumnElement

from krsp.exceptions import TranslationError
from krsp.models.capabilities import DialectCapabilities
from krsp.models.config import ConnectionConfig


class BaseAdapter(ABC):
    """Base adapter defining backend-specific SQL details."""

    name: str = ""

    @property
    @abstractmethod
    def capabilities(self) -> DialectCapabilities:
        """Get capabilities for this backing store."""
        ...

    @abstractmethod
    def read_only_statement(self) -> str:
        """
        Statement putting the session in read-only mode.

        Returns:
            SQL statement, or an empty string when unsupported
        """
        ...

    @abstractmethod
    def timeout_statement(self, timeout: int) -> str:
        """
        Statement setting the per-session statement timeout.

        Args:
            timeout: Timeout in seconds

        Returns:
            SQL statement, or an empty string when unsupported
        """
        ...

    def session_statements(self, config: ConnectionConfig) -> list[str]:
        """Statements to run once when a session is opened."""
        statements = []
        if config.read_only and self.capabilities.read_only_sessions:
            statements.append(self.read_only_statement())
        if config.statement_timeout and self.capabilities.statement_timeout:
            statements.append(self.timeout_statement(config.statement_timeout))
        return [stmt for stmt in statements if stmt]

    def stddev(self, expr: ColumnElement) -> ColumnElement:
        """Sample standard deviation aggregate."""
        if not self.capabilities.stddev:
            raise TranslationError(
                f"{self.name} has no standard deviation aggregate"
            )
        return func.stddev_samp(expr)
