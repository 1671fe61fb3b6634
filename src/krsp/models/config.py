"""Connection configuration model."""

import logging
import os
import warnings
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.engine.url import URL, make_url

# Suppress the specific warning about field 'schema' shadowing
warnings.filterwarnings(
    "ignore",
    message='Field name "schema" in "ConnectionConfig" shadows an attribute in parent',
    category=UserWarning,
)

logger = logging.getLogger(__name__)

LOCAL_HOST = "local"
DEFAULT_SCHEMA = "krsp"
DEFAULT_MAX_ROWS = 100_000
DEFAULT_LOCAL_USER = "root"
DEFAULT_MYSQL_DRIVER = "mysql+pymysql"


class ConnectionConfig(BaseModel):
    """Configuration for a connection to the KRSP database."""

    host: str = Field(
        default=LOCAL_HOST,
        description='Database host, or "local" for localhost',
    )
    port: Optional[int] = Field(
        default=None,
        ge=1,
        le=65535,
        description="Database port (driver default when omitted)",
    )
    user: Optional[str] = Field(default=None, description="Database user")
    password: Optional[str] = Field(default=None, description="Database password")
    profile: Optional[str] = Field(
        default=None,
        description="Named credential profile (option-file group)",
    )
    option_file: str = Field(
        default="~/.my.cnf",
        description="Option file holding credential profiles",
    )
    schema: str = Field(
        default=DEFAULT_SCHEMA,
        min_length=1,
        description="Database (schema) name",
    )
    max_rows: int = Field(
        default=DEFAULT_MAX_ROWS,
        ge=1,
        description="Default cap on rows returned by collect",
    )
    url: Optional[str] = Field(
        default=None,
        description="Explicit SQLAlchemy URL, overrides host/user/profile",
    )
    read_only: bool = Field(
        default=True,
        description="Put the session in read-only mode where supported",
    )
    statement_timeout: Optional[int] = Field(
        default=None,
        ge=1,
        le=3600,
        description="Statement execution timeout in seconds",
    )
    echo_sql: bool = Field(
        default=False,
        description="Echo SQL statements through SQLAlchemy logging",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate database URL format."""
        if v is None:
            return v
        try:
            make_url(v)
        except Exception as e:
            raise ValueError(f"Invalid database URL: {e}")
        return v

    @model_validator(mode="after")
    def check_credentials(self) -> "ConnectionConfig":
        """Explicit credentials and a profile are mutually exclusive."""
        explicit = (
            self.user is not None
            or self.password is not None
            or self.host != LOCAL_HOST
        )
        if self.profile is not None and explicit:
            raise ValueError(
                "Give either explicit credentials (host/user/password) "
                "or a profile, not both"
            )
        if self.url is not None and (explicit or self.profile is not None):
            raise ValueError("An explicit url cannot be combined with credentials")
        return self

    @classmethod
    def from_env(cls, prefix: str = "KRSP_", **overrides: Any) -> "ConnectionConfig":
        """
        Build a configuration from environment variables.

        A ``.env`` file in the working directory is loaded first. Recognized
        variables are ``{prefix}URL``, ``HOST``, ``PORT``, ``USER``,
        ``PASSWORD``, ``PROFILE``, ``SCHEMA`` and ``MAX_ROWS``.

        Args:
            prefix: Environment variable prefix
            **overrides: Values taking precedence over the environment

        Returns:
            Connection configuration
        """
        load_dotenv()

        values: dict[str, Any] = {}
        for field_name in (
            "url",
            "host",
            "port",
            "user",
            "password",
            "profile",
            "schema",
            "max_rows",
        ):
            value = os.getenv(f"{prefix}{field_name.upper()}")
            if value:
                values[field_name] = value

        logger.debug(f"Read {', '.join(sorted(values)) or 'no'} settings from {prefix}*")
        values.update(overrides)
        return cls(**values)

    @property
    def uses_profile(self) -> bool:
        """Whether credentials come from a named profile."""
        return self.profile is not None

    def build_url(self) -> URL:
        """
        Build the SQLAlchemy URL for this configuration.

        Returns:
            URL object; passwords are kept out of log output by SQLAlchemy
        """
        if self.url is not None:
            return make_url(self.url)

        if self.uses_profile:
            # host, user and password come from the option file
            return URL.create(DEFAULT_MYSQL_DRIVER, database=self.schema)

        host = "localhost" if self.host == LOCAL_HOST else self.host
        return URL.create(
            DEFAULT_MYSQL_DRIVER,
            username=self.user or DEFAULT_LOCAL_USER,
            password=self.password,
            host=host,
            port=self.port,
            database=self.schema,
        )

    def connect_args(self) -> dict[str, Any]:
        """Driver keyword arguments (option-file lookup for profiles)."""
        if not self.uses_profile:
            return {}
        return {
            "read_default_file": str(Path(self.option_file).expanduser()),
            "read_default_group": self.profile,
        }

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {"profile": "krsp", "schema": "krsp", "max_rows": 100000},
                {
                    "host": "krsp.example.org",
                    "user": "analyst",
                    "password": "secret",
                    "schema": "krsp",
                },
            ]
        },
    }
