"""Table and column metadata models."""

import warnings
from typing import Optional

from pydantic import BaseModel, Field

# Suppress the specific warning about field 'schema' shadowing
warnings.filterwarnings(
    "ignore",
    message='Field name "schema" in "TableInfo" shadows an attribute in parent',
    category=UserWarning,
)


class ColumnInfo(BaseModel):
    """Information about a table column."""

    name: str = Field(..., description="Column name (exact case)")
    data_type: str = Field(..., description="Column data type")
    nullable: bool = Field(..., description="Whether column allows NULL")
    primary_key: bool = Field(
        default=False, description="Whether column is part of primary key"
    )
    default: Optional[str] = Field(None, description="Default value expression")
    comment: Optional[str] = Field(None, description="Column comment/description")

    model_config = {"frozen": True}


class TableInfo(BaseModel):
    """Cached metadata of a table reference."""

    name: str = Field(..., description="Table name")
    schema: Optional[str] = Field(None, description="Schema (database) name")
    columns: list[ColumnInfo] = Field(
        default_factory=list, description="Columns in declaration order"
    )

    @property
    def qualified_name(self) -> str:
        """Schema-qualified table name."""
        if self.schema:
            return f"{self.schema}.{self.name}"
        return self.name

    @property
    def column_names(self) -> list[str]:
        """Column names in declaration order."""
        return [col.name for col in self.columns]
