"""Connection handles backed by a SQLAlchemy engine."""

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional, TypeVar, Union

from sqlalchemy import Connection, Engine, MetaData, create_engine, inspect, text
from sqlalchemy.exc import DBAPIError, NoSuchModuleError, SQLAlchemyError
from sqlalchemy.sql import Executable

from krsp.adapters import BaseAdapter, create_adapter
from krsp.exceptions import ConnectionError
from krsp.models.config import ConnectionConfig

if TYPE_CHECKING:
    from krsp.core.tables import TableRef

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectionHandle:
    """
    A live session on the KRSP database plus its safety configuration.

    The handle owns exactly one SQLAlchemy connection. It is meant for one
    logical caller at a time; open a separate handle per thread.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        engine: Engine,
        connection: Connection,
        adapter: BaseAdapter,
    ):
        """
        Initialize a handle around an open connection.

        Use ``connect`` instead of calling this directly.

        Args:
            config: Configuration the handle was opened with
            engine: Engine the connection was checked out from
            connection: Open connection, owned by this handle
            adapter: Backend-specific adapter
        """
        self.config = config
        self.adapter = adapter
        self._engine: Optional[Engine] = engine
        self._connection: Optional[Connection] = connection
        self.metadata = MetaData()
        self.table_cache: dict[str, "TableRef"] = {}

    @property
    def schema(self) -> str:
        """Default schema (database) name."""
        return self.config.schema

    @property
    def max_rows(self) -> int:
        """Default row cap for collect."""
        return self.config.max_rows

    @property
    def dialect(self) -> str:
        """Backing-store dialect name."""
        return self.adapter.name

    @property
    def closed(self) -> bool:
        """Whether the session has been released."""
        return self._connection is None

    @property
    def sql_dialect(self):
        """SQLAlchemy dialect used to compile statements."""
        return self._require_engine().dialect

    def close(self) -> None:
        """Release the session. Calling it again is a no-op."""
        if self._connection is None:
            return

        connection, engine = self._connection, self._engine
        self._connection = None
        self._engine = None
        self.table_cache.clear()
        try:
            connection.close()
        finally:
            if engine is not None:
                engine.dispose()
        logger.info(f"Closed connection to {self.dialect} schema {self.schema}")

    def run(
        self,
        statement: Union[str, Executable],
        params: Optional[dict[str, Any]] = None,
        max_rows: Optional[int] = None,
    ) -> tuple[list[str], list[tuple[Any, ...]]]:
        """
        Execute one statement and fetch its rows.

        Each call runs in its own short read transaction.

        Args:
            statement: SQLAlchemy statement or SQL text
            params: Bound parameters for text statements
            max_rows: Fetch at most this many rows (None fetches all)

        Returns:
            Tuple of (column names, rows)

        Raises:
            ConnectionError: If the handle is closed or the session was lost
            DBAPIError: On backing-store failures, for the caller to wrap
        """
        if isinstance(statement, str):
            statement = text(statement)

        try:
            with self.transaction() as conn:
                result = conn.execute(statement, params or {})
                if not result.returns_rows:
                    return [], []
                columns = list(result.keys())
                if max_rows is None:
                    rows = result.fetchall()
                else:
                    rows = result.fetchmany(max_rows)
                result.close()
        except DBAPIError as e:
            if e.connection_invalidated:
                raise ConnectionError(f"Lost connection to database: {e.orig}") from e
            raise

        return columns, [tuple(row) for row in rows]

    def list_tables(self) -> list[str]:
        """
        List tables in the connected schema.

        Returns:
            Sorted table names
        """
        with self.transaction() as conn:
            return sorted(inspect(conn).get_table_names())

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """
        Short transaction on the handle's connection.

        Yields:
            The underlying SQLAlchemy connection

        Raises:
            ConnectionError: If the handle is closed
        """
        conn = self._require_connection()
        with conn.begin():
            yield conn

    def table(self, name: str) -> "TableRef":
        """Get a reference to a table of this schema."""
        from krsp.core.tables import table

        return table(self, name)

    def _require_connection(self) -> Connection:
        if self._connection is None:
            raise ConnectionError("Connection is closed")
        return self._connection

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise ConnectionError("Connection is closed")
        return self._engine

    def __enter__(self) -> "ConnectionHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<ConnectionHandle {self.dialect}:{self.schema} ({state})>"


def connect(
    config: Optional[ConnectionConfig] = None, **options: Any
) -> ConnectionHandle:
    """
    Open a connection to the KRSP database.

    With no arguments, connects to the local server as a passwordless user.

    Args:
        config: Connection configuration
        **options: Configuration fields, used when ``config`` is omitted

    Returns:
        Open connection handle

    Raises:
        ConnectionError: If the dialect or driver is unsupported, the server
            cannot be reached, or authentication is rejected
        pydantic.ValidationError: If the options are inconsistent
    """
    if config is None:
        config = ConnectionConfig(**options)
    elif options:
        config = ConnectionConfig(**{**config.model_dump(), **options})

    url = config.build_url()
    try:
        adapter = create_adapter(url.get_backend_name())
    except ValueError as e:
        raise ConnectionError(str(e)) from e

    try:
        engine = create_engine(
            url,
            pool_pre_ping=True,
            echo=config.echo_sql,
            connect_args=config.connect_args(),
        )
    except (NoSuchModuleError, ImportError) as e:
        raise ConnectionError(f"No driver available for {url.drivername}: {e}") from e

    try:
        connection = engine.connect()
    except SQLAlchemyError as e:
        engine.dispose()
        raise ConnectionError(
            f"Cannot connect to {url.render_as_string(hide_password=True)}: {e}"
        ) from e

    try:
        for statement in adapter.session_statements(config):
            connection.execute(text(statement))
        connection.commit()
    except SQLAlchemyError as e:
        connection.close()
        engine.dispose()
        raise ConnectionError(f"Cannot configure session: {e}") from e

    logger.info(
        f"Connected to {adapter.name} schema {config.schema} "
        f"(max_rows={config.max_rows}, read_only={config.read_only})"
    )
    return ConnectionHandle(config, engine, connection, adapter)


def close(handle: ConnectionHandle) -> None:
    """Release a handle's session; idempotent."""
    handle.close()


@contextmanager
def connection(
    config: Optional[ConnectionConfig] = None, **options: Any
) -> Iterator[ConnectionHandle]:
    """
    Open a connection for the duration of a ``with`` block.

    Yields:
        Open connection handle, closed on every exit path
    """
    handle = connect(config, **options)
    try:
        yield handle
    finally:
        handle.close()


def with_connection(
    config: Optional[ConnectionConfig], body: Callable[[ConnectionHandle], T]
) -> T:
    """
    Call ``body`` with an open handle and release it afterwards.

    Args:
        config: Connection configuration (None for local defaults)
        body: Callable receiving the handle

    Returns:
        Whatever ``body`` returns
    """
    with connection(config) as handle:
        return body(handle)
