"""
Centralized configuration management using Pydantic Settings.

This module provides type-safe configuration for the data-access layer,
loading settings from environment variables (prefix ``REPOKIT_``) and
``.env`` files.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


VALID_ISOLATION_LEVELS = {
    "READ UNCOMMITTED",
    "READ COMMITTED",
    "REPEATABLE READ",
    "SERIALIZABLE",
    "AUTOCOMMIT",
}


class Settings(BaseSettings):
    """
    Data-access settings loaded from environment variables.

    All settings can be overridden via environment variables, e.g.
    ``REPOKIT_DATABASE_URL`` or ``REPOKIT_ISOLATION_LEVEL``.
    """

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///:memory:",
        description="Database connection URL (SQLite by default, PostgreSQL-ready format)"
    )
    database_echo: bool = Field(
        default=False,
        description="Echo every SQL statement through the sqlalchemy.engine logger"
    )
    isolation_level: Optional[str] = Field(
        default=None,
        description="Transaction isolation level applied to each persistence scope "
                    "(None keeps the driver default)"
    )
    lock_timeout_ms: int = Field(
        default=5000,
        ge=0,
        description="How long a pessimistic lock request may block before LockTimeout"
    )
    sqlite_wal: bool = Field(
        default=False,
        description="Enable WAL journal mode for file-backed SQLite databases"
    )

    # Auditing Configuration
    auditor: str = Field(
        default="system",
        description="Actor recorded in created_by/updated_by when no provider is injected"
    )
    audit_modify_on_create: bool = Field(
        default=True,
        description="Treat the creating write as a modification (stamps updated_at/by)"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_json: bool = Field(
        default=True,
        description="Emit single-line JSON log records"
    )

    # Pydantic Settings Configuration
    model_config = SettingsConfigDict(
        env_prefix="REPOKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
        env_nested_delimiter="__",
    )

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """
        Validate database URL format.

        Supports SQLite (default) and PostgreSQL/MySQL async drivers.
        """
        if not v or v.strip() == "":
            raise ValueError("REPOKIT_DATABASE_URL is required and cannot be empty")

        valid_schemes = [
            "sqlite",
            "sqlite+aiosqlite",
            "postgresql+asyncpg",
            "postgresql+psycopg",
            "mysql+aiomysql",
            "mysql+asyncmy",
        ]
        if not any(v.startswith(scheme + "://") for scheme in valid_schemes):
            raise ValueError(
                f"REPOKIT_DATABASE_URL must start with one of: {', '.join(valid_schemes)}. "
                f"Got: {v[:20]}..."
            )
        return v

    @field_validator("isolation_level", mode="before")
    @classmethod
    def validate_isolation_level(cls, v: Optional[str]) -> Optional[str]:
        """
        Normalize the isolation level name.

        Accepts ``read_committed`` as well as ``READ COMMITTED``.
        """
        if v is None or (isinstance(v, str) and v.strip() == ""):
            return None
        normalized = v.strip().upper().replace("_", " ")
        if normalized not in VALID_ISOLATION_LEVELS:
            raise ValueError(
                f"REPOKIT_ISOLATION_LEVEL must be one of: {', '.join(sorted(VALID_ISOLATION_LEVELS))}"
            )
        return normalized

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        normalized = v.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"REPOKIT_LOG_LEVEL is not a valid level: {v}")
        return normalized


# Global settings instance
# Import this instance throughout the library
settings = Settings()
