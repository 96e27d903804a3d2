"""Application settings loaded from environment variables.

Environment Configuration:
    DUET_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Database connection string (required)

Store Configuration:
    STORE_OPERATION_TIMEOUT_S: Upper bound for a single store operation.
        Applied as statement_timeout on PostgreSQL and as the busy timeout on SQLite.

Messaging Configuration:
    DEFAULT_PAGE_LIMIT: Page size used when a caller does not pass one
    MAX_PAGE_LIMIT: Largest page a caller may request
    ECHO_SENDER_LABEL: Display name given to the sender of a client-local echo

Logging:
    LOG_JSON: Emit JSON log lines (true) or console-friendly output (false)

Authentication:
    TOKEN_VERIFIER: Import path (package.module:factory) of the identity
        provider adapter the launcher injects into the app
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - STORE_OPERATION_TIMEOUT_S must be >= 1
    - DEFAULT_PAGE_LIMIT must be within [1, MAX_PAGE_LIMIT]
    """

    duet_env: Environment = Field(default=Environment.LOCAL, alias="DUET_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    store_operation_timeout_s: float = Field(default=10.0, alias="STORE_OPERATION_TIMEOUT_S")

    default_page_limit: int = Field(default=50, alias="DEFAULT_PAGE_LIMIT")
    max_page_limit: int = Field(default=100, alias="MAX_PAGE_LIMIT")
    echo_sender_label: str = Field(default="You", alias="ECHO_SENDER_LABEL")

    log_json: bool = Field(default=True, alias="LOG_JSON")

    token_verifier: str | None = Field(default=None, alias="TOKEN_VERIFIER")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Reject timeouts and page limits that cannot work together."""
        if self.store_operation_timeout_s < 1:
            raise ValueError("STORE_OPERATION_TIMEOUT_S must be >= 1")

        if self.max_page_limit < 1:
            raise ValueError("MAX_PAGE_LIMIT must be >= 1")

        if not 1 <= self.default_page_limit <= self.max_page_limit:
            raise ValueError(
                f"DEFAULT_PAGE_LIMIT must be between 1 and MAX_PAGE_LIMIT ({self.max_page_limit})"
            )

        return self

    @property
    def is_sqlite(self) -> bool:
        """Whether the configured database is SQLite (local/test only)."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
