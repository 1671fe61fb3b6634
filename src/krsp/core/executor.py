"""Plan materialization and guarded execution of literal SQL."""

import logging
import re
import time
from typing import Any, Optional, Union

from sqlalchemy.exc import CompileError, SQLAlchemyError
from sqlalchemy.sql import Select

from krsp.core.connection import ConnectionHandle
from krsp.core.plan import Plan
from krsp.core.tables import type_name
from krsp.core.translate import translate
from krsp.exceptions import ConnectionError, ExecutionError, WriteRejectedError
from krsp.models.result import MaterializedTable

logger = logging.getLogger(__name__)


class _Unbounded:
    """Row limit that disables the cap."""

    _instance: Optional["_Unbounded"] = None

    def __new__(cls) -> "_Unbounded":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNBOUNDED"


UNBOUNDED = _Unbounded()

RowLimit = Union[int, _Unbounded, None]

# Leading keywords of statements that only read
ALLOWED_QUERY_TYPES = {"SELECT", "WITH", "SHOW", "DESCRIBE", "DESC", "EXPLAIN"}

# Data-mutating keywords rejected anywhere in a statement
DANGEROUS_KEYWORDS = {
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "ALTER",
    "CREATE",
    "TRUNCATE",
    "REPLACE",
    "GRANT",
    "REVOKE",
}

# String literals, quoted identifiers and comments, in one left-to-right pass
_LEXEMES = re.compile(
    r"""
    (?P<string>'(?:[^'\\]|\\.|'')*'?)
  | (?P<quoted>"(?:[^"\\]|\\.|"")*"?|`(?:[^`]|``)*`?)
  | (?P<comment>--[^\n]*|\#[^\n]*|/\*.*?(?:\*/|\Z))
    """,
    re.VERBOSE | re.DOTALL,
)

# REPLACE(...) is a string function, not a statement
_REPLACE_FUNCTION = re.compile(r"\bREPLACE\s*\(")

_FILE_WRITE = re.compile(r"\bINTO\s+(?:OUTFILE|DUMPFILE)\b")


def _resolve_limit(handle: ConnectionHandle, row_limit: RowLimit) -> Optional[int]:
    """Row cap to apply: handle default, none, or the given count."""
    if row_limit is None:
        return handle.max_rows
    if row_limit is UNBOUNDED:
        return None
    if isinstance(row_limit, bool) or not isinstance(row_limit, int):
        raise TypeError(f"row_limit must be an int or UNBOUNDED, got {row_limit!r}")
    if row_limit < 0:
        raise ValueError(f"row_limit must be non-negative, got {row_limit}")
    return row_limit


def render_sql(statement: Select, handle: ConnectionHandle) -> str:
    """
    Compile a statement for the handle's dialect.

    Parameters are inlined when the dialect can render them as literals,
    otherwise the text keeps its placeholders.
    """
    dialect = handle.sql_dialect
    try:
        return str(
            statement.compile(dialect=dialect, compile_kwargs={"literal_binds": True})
        )
    except (CompileError, NotImplementedError):
        return str(statement.compile(dialect=dialect))


def show_query(plan: Plan) -> str:
    """SQL text a plan translates to, without running it."""
    return render_sql(translate(plan), plan.handle)


def collect(plan: Plan, row_limit: RowLimit = None) -> MaterializedTable:
    """
    Execute a plan and materialize its rows.

    The statement runs exactly once and asks for at most ``row_limit + 1``
    rows; the extra row only reveals whether the cap was hit.

    Args:
        plan: Plan to run
        row_limit: Row cap; None uses the handle's ``max_rows``,
            ``UNBOUNDED`` disables the cap

    Returns:
        Materialized table whose columns equal ``plan.columns``

    Raises:
        TranslationError: If an operation has no SQL equivalent
        ExecutionError: If the backing store rejects the query
        ConnectionError: If the handle is closed or the session was lost
    """
    handle = plan.handle
    if handle.closed:
        raise ConnectionError("Connection is closed")

    limit = _resolve_limit(handle, row_limit)
    statement = translate(plan, None if limit is None else limit + 1)
    column_types = {
        column.name: type_name(column.type) for column in statement.selected_columns
    }
    return _materialize(
        handle,
        statement,
        render_sql(statement, handle),
        limit,
        column_types=column_types,
    )


def execute_read_only(
    handle: ConnectionHandle,
    query: str,
    params: Optional[dict[str, Any]] = None,
    row_limit: RowLimit = None,
) -> MaterializedTable:
    """
    Run literal SQL after checking that it only reads.

    This is a syntactic safety net, not a security boundary; the session's
    read-only mode is the real guard where the backing store supports it.

    Args:
        handle: Open connection handle
        query: SQL text, with ``:name`` placeholders for ``params``
        params: Bound parameters
        row_limit: Row cap, as for ``collect``

    Returns:
        Materialized table

    Raises:
        WriteRejectedError: If the text is not a single read-only statement;
            nothing is executed
        ExecutionError: If the backing store rejects the query
        ConnectionError: If the handle is closed or the session was lost
    """
    validate_read_only(query)
    if handle.closed:
        raise ConnectionError("Connection is closed")

    limit = _resolve_limit(handle, row_limit)
    modified_query = query
    if (
        limit is not None
        and _first_keyword(query) in ("SELECT", "WITH")
        and not _has_limit(query)
    ):
        modified_query = _add_limit(query, limit + 1)

    return _materialize(handle, modified_query, modified_query, limit, params=params)


def validate_read_only(query: str) -> None:
    """
    Check that literal SQL is a single read-only statement.

    Raises:
        WriteRejectedError: If the statement may modify data or schema
    """
    normalized = _strip_literals(query).upper()

    first_keyword = _first_word(normalized)
    if first_keyword not in ALLOWED_QUERY_TYPES:
        raise WriteRejectedError(
            f"Only {', '.join(sorted(ALLOWED_QUERY_TYPES))} queries are allowed. "
            f"Got: {first_keyword or 'empty query'}",
            query,
        )

    if ";" in normalized.strip().rstrip(";"):
        raise WriteRejectedError("Multiple statements are not allowed", query)

    scanned = _REPLACE_FUNCTION.sub("(", normalized)
    for keyword in sorted(DANGEROUS_KEYWORDS):
        if re.search(rf"\b{keyword}\b", scanned):
            raise WriteRejectedError(
                f"Query contains data-modifying keyword: {keyword}. "
                f"Only read-only queries are allowed.",
                query,
            )

    if _FILE_WRITE.search(normalized):
        raise WriteRejectedError("Queries writing to files are not allowed", query)


def _strip_literals(query: str) -> str:
    """Blank out string literals, quoted identifiers and comments."""

    def replace(match: re.Match) -> str:
        if match.group("string") is not None:
            return "''"
        if match.group("quoted") is not None:
            return "_"
        return " "

    return _LEXEMES.sub(replace, query)


def _first_word(normalized: str) -> str:
    words = normalized.replace("(", " ").split()
    return words[0] if words else ""


def _first_keyword(query: str) -> str:
    return _first_word(_strip_literals(query).upper())


def _has_limit(query: str) -> bool:
    """Check if query already has a LIMIT clause, literal or bound."""
    normalized = _strip_literals(query).upper()
    return bool(re.search(r"\bLIMIT\s+\S", normalized))


def _statement_end(query: str) -> int:
    """Offset just past the last token that is not a comment or semicolon."""
    end = 0
    position = 0
    for match in _LEXEMES.finditer(query):
        code = query[position : match.start()].rstrip().rstrip(";").rstrip()
        if code:
            end = position + len(code)
        if match.group("comment") is None:
            end = match.end()
        position = match.end()

    code = query[position:].rstrip().rstrip(";").rstrip()
    if code:
        end = position + len(code)
    return end


def _add_limit(query: str, limit: int) -> str:
    """Append a LIMIT clause in place of any trailing semicolon and comments."""
    return f"{query[:_statement_end(query)]}\nLIMIT {limit}"


def _materialize(
    handle: ConnectionHandle,
    statement: Any,
    query_text: str,
    limit: Optional[int],
    params: Optional[dict[str, Any]] = None,
    column_types: Optional[dict[str, str]] = None,
) -> MaterializedTable:
    """Run a statement once and apply the row-cap policy to its rows."""
    logger.debug(f"Executing on {handle.dialect}:\n{query_text}")
    start_time = time.time()

    try:
        columns, rows = handle.run(
            statement, params, max_rows=None if limit is None else limit + 1
        )
    except SQLAlchemyError as e:
        detail = getattr(e, "orig", None) or e
        raise ExecutionError(f"Query failed: {detail}", query_text) from e

    execution_time = (time.time() - start_time) * 1000

    truncated = limit is not None and len(rows) > limit
    warning = None
    if truncated:
        rows = rows[:limit]
        warning = (
            f"Result truncated to {limit} rows; more rows are available. "
            f"Filter or aggregate in the query, or raise row_limit"
        )
        logger.warning(warning)

    return MaterializedTable(
        query=query_text,
        columns=columns,
        column_types=column_types or {},
        rows=[dict(zip(columns, row)) for row in rows],
        row_count=len(rows),
        row_limit=limit,
        truncated=truncated,
        execution_time_ms=execution_time,
        warning=warning,
    )
