"""Backing-store capabilities model."""

from pydantic import BaseModel, Field


class DialectCapabilities(BaseModel):
    """Flags indicating what SQL features a backing store supports."""

    full_join: bool = Field(
        default=False,
        description="Store supports FULL OUTER JOIN",
    )
    stddev: bool = Field(
        default=False,
        description="Store has a sample standard deviation aggregate",
    )
    read_only_sessions: bool = Field(
        default=False,
        description="Store can put a session in read-only mode",
    )
    statement_timeout: bool = Field(
        default=False,
        description="Store supports a per-session statement timeout",
    )

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "full_join": False,
                    "stddev": True,
                    "read_only_sessions": True,
                    "statement_timeout": True,
                }
            ]
        },
    }
