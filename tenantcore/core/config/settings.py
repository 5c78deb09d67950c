# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for tenantcore.
Settings are loaded from environment variables with sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from tenantcore.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.migrations.ledger_schema)
    'shared'
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Self

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PACKAGE_MIGRATIONS_DIR = (
    Path(__file__).resolve().parents[2] / "infrastructure" / "database" / "migrations"
)

DEFAULT_EXPECTED_TABLES = [
    "schools",
    "users",
    "students",
    "teachers",
    "classes",
    "subjects",
    "attendance_records",
    "grades",
    "fee_invoices",
    "branding_settings",
]


class DatabaseSettings(BaseSettings):
    """Shared PostgreSQL database configuration.

    All tenants live in this one database, each inside its own schema.
    Platform-level tables (tenant registry, migration ledger) live in the
    ``shared`` schema.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
        pool_recycle: Seconds after which pooled connections are recycled.
    """

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore",
    )

    user: str = "school"
    password: SecretStr = SecretStr("school_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "school_platform"
    pool_size: int = 10
    max_overflow: int = 20
    pool_recycle: int = 1800

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class MigrationSettings(BaseSettings):
    """SQL migration runner configuration.

    Attributes:
        directory: Directory holding the shared (platform) migration files.
        tenant_directory: Directory holding per-tenant migration files.
        file_suffix: Exact suffix a file must end with to be a migration.
        ledger_schema: Schema holding the shared migration ledger table.
        strip_do_blocks: Remove ``DO $$ ... $$;`` blocks before execution,
            for engines that cannot run anonymous code blocks.
        retry_failed: Re-run migrations whose last recorded attempt failed.
            When False, any ledger row counts as executed.
    """

    model_config = SettingsConfigDict(
        env_prefix="MIGRATIONS_",
        extra="ignore",
    )

    directory: Path = _PACKAGE_MIGRATIONS_DIR / "shared"
    tenant_directory: Path = _PACKAGE_MIGRATIONS_DIR / "tenant"
    file_suffix: str = ".sql"
    ledger_schema: str = "shared"
    strip_do_blocks: bool = False
    retry_failed: bool = True

    @field_validator("file_suffix")
    @classmethod
    def validate_file_suffix(cls, value: str) -> str:
        """Reject an empty suffix, which would match every file."""
        if not value:
            raise ValueError("Migration file suffix must not be empty")
        return value


class IntrospectionSettings(BaseSettings):
    """Tenant schema introspection configuration.

    Attributes:
        expected_tables: Baseline tables every tenant schema should contain.
        cache_ttl_seconds: Lifetime of cached table-existence lookups.
    """

    model_config = SettingsConfigDict(
        env_prefix="INTROSPECTION_",
        extra="ignore",
    )

    expected_tables: list[str] = Field(default_factory=lambda: list(DEFAULT_EXPECTED_TABLES))
    cache_ttl_seconds: float = 300.0

    @field_validator("cache_ttl_seconds")
    @classmethod
    def validate_cache_ttl(cls, value: float) -> float:
        """Ensure the TTL is not negative."""
        if value < 0:
            raise ValueError("cache_ttl_seconds must be >= 0")
        return value


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        database: Shared database settings.
        migrations: Migration runner settings.
        introspection: Schema introspection settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    # Subsettings - loaded with their own env prefixes
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    migrations: MigrationSettings = Field(default_factory=MigrationSettings)
    introspection: IntrospectionSettings = Field(default_factory=IntrospectionSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Validate that production settings are properly configured.

        Raises:
            ValueError: If running in production with insecure defaults.
        """
        if self.environment == "production":
            if self.database.password.get_secret_value() == "school_password":
                raise ValueError(
                    "Database password must be changed from default in production. "
                    "Set DATABASE_PASSWORD environment variable."
                )
            if self.debug:
                raise ValueError("DEBUG must be disabled in production.")
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
