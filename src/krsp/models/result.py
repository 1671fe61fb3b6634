"""Materialized query result model."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from krsp.utils.serialization import convert_rows_to_json_safe, dumps


class MaterializedTable(BaseModel):
    """
    Concrete, finite result of ``collect`` or ``execute_read_only``.

    When ``truncated`` is true the backing store held more rows than
    ``row_limit``; aggregating over ``rows`` then gives wrong answers.
    """

    query: str = Field(..., description="Executed SQL query")
    columns: list[str] = Field(..., description="Column names in order")
    column_types: dict[str, str] = Field(
        default_factory=dict, description="Column type names, where known"
    )
    rows: list[dict[str, Any]] = Field(..., description="Result rows as dictionaries")
    row_count: int = Field(..., description="Number of rows returned")
    row_limit: Optional[int] = Field(
        None, description="Row cap in effect (None when unbounded)"
    )
    truncated: bool = Field(
        default=False, description="Whether more rows existed than the row cap"
    )
    execution_time_ms: Optional[float] = Field(
        None, description="Execution time in milliseconds"
    )
    warning: Optional[str] = Field(None, description="Warning message if applicable")

    @property
    def is_empty(self) -> bool:
        """Check if result set is empty."""
        return self.row_count == 0

    @property
    def column_count(self) -> int:
        """Get number of columns."""
        return len(self.columns)

    def get_column_values(self, column: str) -> list[Any]:
        """Extract all values for a specific column."""
        if column not in self.columns:
            raise KeyError(column)
        return [row[column] for row in self.rows]

    def to_tuples(self) -> list[tuple[Any, ...]]:
        """Rows as tuples in column order."""
        return [tuple(row[col] for col in self.columns) for row in self.rows]

    def to_json_safe_rows(self) -> list[dict[str, Any]]:
        """Rows with dates, decimals and bytes converted to JSON types."""
        return convert_rows_to_json_safe(self.rows)

    def to_json(self) -> str:
        """Serialize columns, rows and truncation state to JSON."""
        return dumps(
            {
                "columns": self.columns,
                "rows": self.to_json_safe_rows(),
                "row_count": self.row_count,
                "truncated": self.truncated,
            }
        )

    def to_table_string(self, max_rows: int = 10) -> str:
        """Format result as a simple table string."""
        if self.is_empty:
            return "No rows returned"

        # Header
        result_lines = [" | ".join(self.columns)]
        result_lines.append("-" * len(result_lines[0]))

        # Rows (truncated if needed)
        display_rows = self.rows[:max_rows]
        for row in display_rows:
            values = [
                "NULL" if row.get(col) is None else str(row[col])
                for col in self.columns
            ]
            result_lines.append(" | ".join(values))

        if len(self.rows) > max_rows:
            result_lines.append(f"... ({self.row_count - max_rows} more rows)")
        if self.truncated:
            result_lines.append(f"[truncated at {self.row_limit} rows]")

        return "\n".join(result_lines)
