"""Table references with cached, case-sensitive column metadata."""

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import Table, inspect
from sqlalchemy.exc import CompileError, NoSuchTableError

from krsp.core.connection import ConnectionHandle
from krsp.exceptions import SchemaError
from krsp.models.table import ColumnInfo, TableInfo

if TYPE_CHECKING:
    from krsp.core.plan import Plan
    from krsp.models.result import MaterializedTable

logger = logging.getLogger(__name__)


class TableRef:
    """
    Immutable reference to a table of the connected schema.

    Column names are exact-case. MySQL matches them case-insensitively, this
    layer does not: ``locx`` is not a column of a table declaring ``LocX``.
    """

    __slots__ = ("_handle", "_table", "_info")

    def __init__(self, handle: ConnectionHandle, sa_table: Table, info: TableInfo):
        self._handle = handle
        self._table = sa_table
        self._info = info

    @property
    def handle(self) -> ConnectionHandle:
        return self._handle

    @property
    def name(self) -> str:
        return self._info.name

    @property
    def qualified_name(self) -> str:
        """Schema-qualified name, e.g. ``krsp.squirrel``."""
        return self._info.qualified_name

    @property
    def columns(self) -> tuple[str, ...]:
        """Column names in declaration order."""
        return tuple(self._info.column_names)

    @property
    def column_info(self) -> list[ColumnInfo]:
        return list(self._info.columns)

    @property
    def sa_table(self) -> Table:
        """Reflected SQLAlchemy table used for translation."""
        return self._table

    def plan(self) -> "Plan":
        """Start a plan reading this table."""
        from krsp.core.plan import Plan

        return Plan.from_table(self)

    # Shortcuts starting a plan from the table

    def select(self, *columns: Any) -> "Plan":
        return self.plan().select(*columns)

    def filter(self, *predicates: Any) -> "Plan":
        return self.plan().filter(*predicates)

    def join(self, right: Any, kind: str = "inner", on: Any = None, **kwargs) -> "Plan":
        return self.plan().join(right, kind, on, **kwargs)

    def group_by(self, *keys: str) -> "Plan":
        return self.plan().group_by(*keys)

    def aggregate(self, outputs: Any = None, **kwargs: Any) -> "Plan":
        return self.plan().aggregate(outputs, **kwargs)

    def sort(self, *keys: Any) -> "Plan":
        return self.plan().sort(*keys)

    def rename(self, mapping: Any) -> "Plan":
        return self.plan().rename(mapping)

    def mutate(self, **outputs: Any) -> "Plan":
        return self.plan().mutate(**outputs)

    def head(self, n: int = 6) -> "Plan":
        return self.plan().head(n)

    def collect(self, row_limit: Any = None) -> "MaterializedTable":
        return self.plan().collect(row_limit)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TableRef):
            return NotImplemented
        return self._handle is other._handle and self.name == other.name

    def __hash__(self) -> int:
        return hash((id(self._handle), self.name))

    def __repr__(self) -> str:
        return f"<TableRef {self.qualified_name} ({', '.join(self.columns)})>"


def table(handle: ConnectionHandle, name: str) -> TableRef:
    """
    Get a reference to a table, reflecting its columns on first use.

    No rows are transferred. Metadata is cached on the handle for its
    lifetime.

    Args:
        handle: Open connection handle
        name: Table name (exact case)

    Returns:
        Table reference

    Raises:
        SchemaError: If the table does not exist in the schema
        ConnectionError: If the handle is closed
    """
    cached = handle.table_cache.get(name)
    if cached is not None:
        return cached

    with handle.transaction() as conn:
        table_names = inspect(conn).get_table_names()
        if name not in table_names:
            raise SchemaError(_missing_table_message(name, handle.schema, table_names))

        try:
            sa_table = Table(name, handle.metadata, autoload_with=conn)
        except NoSuchTableError as e:
            raise SchemaError(f"Table {name!r} not found in schema {handle.schema!r}") from e

    info = TableInfo(
        name=name,
        schema=handle.schema,
        columns=[_column_from_sa(col) for col in sa_table.columns],
    )
    ref = TableRef(handle, sa_table, info)
    handle.table_cache[name] = ref
    logger.debug(f"Reflected {info.qualified_name}: {', '.join(info.column_names)}")
    return ref


def list_tables(handle: ConnectionHandle) -> list[str]:
    """List tables in the handle's schema."""
    return handle.list_tables()


def _column_from_sa(col: Any) -> ColumnInfo:
    """Convert a reflected SQLAlchemy column to ColumnInfo."""
    return ColumnInfo(
        name=col.name,
        data_type=type_name(col.type),
        nullable=bool(col.nullable),
        primary_key=bool(col.primary_key),
        default=str(col.server_default.arg) if col.server_default is not None else None,
        comment=col.comment,
    )


def type_name(sa_type: Any) -> str:
    """Printable name of a SQLAlchemy type."""
    try:
        return str(sa_type)
    except CompileError:
        return type(sa_type).__name__


def _missing_table_message(name: str, schema: str, table_names: list[str]) -> str:
    message = f"Table {name!r} not found in schema {schema!r}"
    same_name = [t for t in table_names if t.lower() == name.lower()]
    if same_name:
        message += f" (table names are case-sensitive; did you mean {same_name[0]!r}?)"
    return message
