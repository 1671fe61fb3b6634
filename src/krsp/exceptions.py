"""Exception hierarchy for the KRSP query layer.

Build-time errors (``PlanError`` and its subclasses, ``SchemaError``) are
raised while a plan is being composed. Execution-time errors
(``TranslationError``, ``ExecutionError``, ``ConnectionError``) are raised by
``collect`` and ``execute_read_only`` and carry the failing operation or the
generated SQL.
"""

from typing import Optional


class KrspError(Exception):
    """Base class for all errors raised by this package."""


class ConnectionError(KrspError):
    """Session cannot be established, was lost, or the handle is closed."""


class SchemaError(KrspError):
    """Referenced table does not exist in the connected schema."""


class PlanError(KrspError):
    """Invalid plan composition, detected at build time."""


class ColumnError(PlanError):
    """Unknown or duplicate column name (names are case-sensitive)."""


class UnsupportedAggregateError(PlanError):
    """Aggregate function has no translation to the backing store."""


class AmbiguousJoinError(PlanError):
    """No join key given and none can be inferred."""


class TranslationError(KrspError):
    """A plan operation has no backing-store equivalent."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation

    def __str__(self) -> str:
        message = super().__str__()
        if self.operation:
            return f"{message} (in operation: {self.operation})"
        return message


class ExecutionError(KrspError):
    """Backing-store failure while running a query."""

    def __init__(self, message: str, query: Optional[str] = None):
        super().__init__(message)
        self.query = query

    def __str__(self) -> str:
        message = super().__str__()
        if self.query:
            return f"{message}\nQuery:\n{self.query}"
        return message


class WriteRejectedError(KrspError):
    """Literal query is not recognized as read-only."""

    def __init__(self, message: str, query: Optional[str] = None):
        super().__init__(message)
        self.query = query


class CatalogError(KrspError):
    """Unknown standard query, duplicate registration or bad parameters."""
