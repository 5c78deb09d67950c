# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Shared database connection management using SQLAlchemy async.

This module owns the connection pool for the shared PostgreSQL database.
Every tenant schema lives inside that one database, so a single engine
serves the migration runner, the introspector and tenant-scoped sessions.

Uses SQLAlchemy 2.0 async API with asyncpg driver.

Example:
    from tenantcore.infrastructure.database.connection import (
        init_database,
        get_engine,
    )

    # Initialize at application startup
    await init_database(settings)

    async with get_engine().connect() as conn:
        result = await conn.execute(text("SELECT 1"))
"""

from typing import TYPE_CHECKING, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    create_async_engine,
)

if TYPE_CHECKING:
    from tenantcore.core.config.settings import Settings

# Module-level state for the shared database connection pool
_engine: Optional[AsyncEngine] = None


class DatabaseError(Exception):
    """Base exception for database operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        """Initialize the database error.

        Args:
            message: Human-readable error description.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


def create_engine_from_settings(settings: "Settings") -> AsyncEngine:
    """Create an async engine for the shared database.

    Args:
        settings: Application settings containing database configuration.

    Returns:
        A new AsyncEngine. The caller owns it and must dispose of it.
    """
    return create_async_engine(
        settings.database.url,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_pre_ping=True,
        pool_recycle=settings.database.pool_recycle,
        echo=settings.debug,
    )


async def init_database(settings: "Settings") -> AsyncEngine:
    """Initialize the shared database connection pool.

    This should be called once at application startup. Calling it again
    returns the existing engine.

    Args:
        settings: Application settings containing database configuration.

    Returns:
        The initialized AsyncEngine.

    Raises:
        DatabaseError: If connection pool creation fails.
    """
    global _engine

    if _engine is not None:
        return _engine

    try:
        _engine = create_engine_from_settings(settings)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to initialize database connection", e) from e
    return _engine


async def close_database() -> None:
    """Close the shared database connection pool.

    This should be called at application shutdown to properly
    close all connections in the pool.
    """
    global _engine

    if _engine is not None:
        await _engine.dispose()
        _engine = None


def get_engine() -> AsyncEngine:
    """Get the shared database async engine.

    Returns:
        The SQLAlchemy async engine.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _engine is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _engine


async def execute_script(conn: AsyncConnection, sql: str) -> None:
    """Execute a multi-statement SQL script on a checked-out connection.

    SQLAlchemy's asyncpg adapter always prepares statements, which rejects
    scripts with more than one statement. The script is therefore sent
    through the driver connection's simple-query protocol, where PostgreSQL
    runs the whole batch as one implicit transaction.

    Args:
        conn: A checked-out connection. It should not have an open
            SQLAlchemy transaction, or the script would run inside it.
        sql: The SQL script.

    Raises:
        asyncpg.PostgresError: If any statement in the script fails.
    """
    raw = await conn.get_raw_connection()
    await raw.driver_connection.execute(sql)


async def check_database_connection() -> bool:
    """Check if the shared database is reachable.

    Returns:
        True if the database is reachable, False otherwise.
    """
    if _engine is None:
        return False

    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
