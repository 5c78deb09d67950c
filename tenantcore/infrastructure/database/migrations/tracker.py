# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Migration ledger.

Records which migration files have been executed in a
``<ledger_schema>.schema_migrations`` table. The ledger holds one row per
file and reflects the latest attempt only: a retried migration updates
its row in place rather than appending history.

Example:
    tracker = MigrationTracker(engine)
    await tracker.ensure_migration_table()

    if not await tracker.is_migration_successful("001_create_tenants.sql"):
        ...
        await tracker.record_migration_execution("001_create_tenants.sql", 12)
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from tenantcore.infrastructure.database.schema_names import assert_valid_schema_name

logger = logging.getLogger(__name__)

LEDGER_TABLE = "schema_migrations"


@dataclass(frozen=True)
class MigrationRecord:
    """One row of the migration ledger.

    Attributes:
        migration_file: File name of the migration (primary key).
        executed_at: Time of the latest attempt.
        execution_time_ms: Duration of the latest attempt.
        error_message: Error of the latest attempt, None if it succeeded.
    """

    migration_file: str
    executed_at: datetime
    execution_time_ms: int | None
    error_message: str | None

    @property
    def succeeded(self) -> bool:
        """Whether the latest attempt succeeded."""
        return self.error_message is None


class MigrationTracker:
    """Reads and writes the migration ledger table.

    Attributes:
        ledger_schema: Schema that holds the ledger table.
    """

    def __init__(self, engine: AsyncEngine, ledger_schema: str = "shared") -> None:
        """Initialize the tracker.

        Args:
            engine: Async engine for the shared database.
            ledger_schema: Schema that holds the ledger table.

        Raises:
            InvalidSchemaNameError: If ledger_schema is not a safe identifier.
        """
        assert_valid_schema_name(ledger_schema)
        self._engine = engine
        self.ledger_schema = ledger_schema

    @property
    def table(self) -> str:
        """Schema-qualified ledger table name."""
        return f"{self.ledger_schema}.{LEDGER_TABLE}"

    async def ensure_migration_table(self) -> None:
        """Create the ledger schema, table and index if they do not exist.

        Safe to call on every startup.
        """
        async with self._engine.begin() as conn:
            await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {self.ledger_schema}"))
            await conn.execute(
                text(f"""
                    CREATE TABLE IF NOT EXISTS {self.table} (
                        migration_file TEXT PRIMARY KEY,
                        executed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        execution_time_ms INTEGER,
                        error_message TEXT
                    )
                """)
            )
            await conn.execute(
                text(
                    f"CREATE INDEX IF NOT EXISTS idx_schema_migrations_file "
                    f"ON {self.table} (migration_file)"
                )
            )

    async def is_migration_executed(self, migration_file: str) -> bool:
        """Check whether any attempt has been recorded for a migration.

        A failed attempt counts as executed here. Use
        is_migration_successful() to tell the two apart.
        """
        async with self._engine.connect() as conn:
            result = await conn.execute(
                text(f"SELECT 1 FROM {self.table} WHERE migration_file = :file"),
                {"file": migration_file},
            )
            return result.first() is not None

    async def is_migration_successful(self, migration_file: str) -> bool:
        """Check whether the latest recorded attempt of a migration succeeded."""
        async with self._engine.connect() as conn:
            result = await conn.execute(
                text(
                    f"SELECT 1 FROM {self.table} "
                    "WHERE migration_file = :file AND error_message IS NULL"
                ),
                {"file": migration_file},
            )
            return result.first() is not None

    async def record_migration_execution(
        self,
        migration_file: str,
        execution_time_ms: int,
        error_message: str | None = None,
    ) -> None:
        """Upsert the ledger row for a migration attempt.

        An existing row is overwritten with the new timing and error, so a
        successful retry clears the previous error message.

        Args:
            migration_file: File name of the migration.
            execution_time_ms: Duration of the attempt in milliseconds.
            error_message: Error text for a failed attempt, None on success.
        """
        async with self._engine.begin() as conn:
            await conn.execute(
                text(f"""
                    INSERT INTO {self.table}
                        (migration_file, executed_at, execution_time_ms, error_message)
                    VALUES (:file, NOW(), :duration, :error)
                    ON CONFLICT (migration_file) DO UPDATE SET
                        executed_at = EXCLUDED.executed_at,
                        execution_time_ms = EXCLUDED.execution_time_ms,
                        error_message = EXCLUDED.error_message
                """),
                {
                    "file": migration_file,
                    "duration": execution_time_ms,
                    "error": error_message,
                },
            )

    async def get_executed_migrations(self) -> list[str]:
        """Return recorded migration files in application order."""
        async with self._engine.connect() as conn:
            result = await conn.execute(
                text(
                    f"SELECT migration_file FROM {self.table} "
                    "ORDER BY executed_at, migration_file"
                )
            )
            return [row[0] for row in result.fetchall()]

    async def get_migration_records(self) -> list[MigrationRecord]:
        """Return all ledger rows in application order."""
        async with self._engine.connect() as conn:
            result = await conn.execute(
                text(
                    "SELECT migration_file, executed_at, execution_time_ms, error_message "
                    f"FROM {self.table} ORDER BY executed_at, migration_file"
                )
            )
            return [
                MigrationRecord(
                    migration_file=row.migration_file,
                    executed_at=row.executed_at,
                    execution_time_ms=row.execution_time_ms,
                    error_message=row.error_message,
                )
                for row in result.fetchall()
            ]

    async def clear_migration_record(self, migration_file: str) -> bool:
        """Delete the ledger row for a migration so the next run executes it.

        Returns:
            True if a row was deleted.
        """
        async with self._engine.begin() as conn:
            result = await conn.execute(
                text(f"DELETE FROM {self.table} WHERE migration_file = :file"),
                {"file": migration_file},
            )
            deleted = result.rowcount > 0

        if deleted:
            logger.info("Cleared ledger record for %s", migration_file)
        return deleted
