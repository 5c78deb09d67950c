# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQL migration runner with ledger tracking.

Applies the ``.sql`` files of a migrations directory in lexical file name
order, one file at a time, and records every attempt in the migration
ledger (see tracker.py). Files already recorded as successful are skipped.
The first failure is recorded and aborts the run: later files are not
attempted, and the next run resumes at the failed file.

File names must sort in the intended execution order, e.g.
``001_create_tenants.sql``, ``002_add_billing.sql``.

Example:
    from tenantcore.infrastructure.database.migrations.runner import run_migrations

    summary = await run_migrations(engine, Path("migrations/shared"))
    print(summary.executed_count, summary.skipped_count)
"""

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import asyncpg
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from tenantcore.infrastructure.database.connection import DatabaseError, execute_script
from tenantcore.infrastructure.database.migrations.tracker import MigrationTracker
from tenantcore.infrastructure.database.schema_names import assert_valid_schema_name
from tenantcore.infrastructure.database.tenant_scope import tenant_scope

logger = logging.getLogger(__name__)

DEFAULT_FILE_SUFFIX = ".sql"

SCHEMA_PLACEHOLDER = "{{schema}}"

_DO_BLOCK_PATTERN = re.compile(r"DO\s+\$\$[\s\S]*?\$\$;")

_EXECUTION_ERRORS = (
    SQLAlchemyError,
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    UnicodeDecodeError,
)


class MigrationState(str, Enum):
    """Lifecycle of a single migration file within one run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class MigrationSummary:
    """Outcome of one runner invocation.

    Attributes:
        total: Number of migration files found.
        executed: Files executed successfully in this run, in order.
        skipped: Files skipped because they were already applied.
        failed: The file that failed, if any (fail-fast: at most one).
    """

    total: int = 0
    executed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def executed_count(self) -> int:
        return len(self.executed)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class MigrationDirectoryError(DatabaseError):
    """Raised when the migrations directory cannot be listed.

    Attributes:
        directory: The directory that was requested.
    """

    def __init__(self, directory: Path, original_error: Exception | None = None) -> None:
        super().__init__(f"Migrations directory not readable: {directory}", original_error)
        self.directory = directory


class MigrationExecutionError(DatabaseError):
    """Raised when a migration file fails. Fatal to the current run.

    Attributes:
        migration_file: The file that failed.
        summary: Summary of the aborted run.
    """

    def __init__(
        self,
        migration_file: str,
        original_error: Exception,
        summary: MigrationSummary | None = None,
    ) -> None:
        super().__init__(f"Migration {migration_file} failed", original_error)
        self.migration_file = migration_file
        self.summary = summary


def strip_do_blocks(sql: str) -> str:
    """Replace anonymous ``DO $$ ... $$;`` blocks with a SQL comment.

    This is a compatibility transform for engines without PL/pgSQL
    support, not a SQL parser: it only recognizes ``$$`` quoting.
    """
    return _DO_BLOCK_PATTERN.sub("-- DO block removed", sql)


class MigrationRunner:
    """Applies pending SQL migration files in order.

    When schema_name is given the runner works on a tenant schema: the
    ledger lives in that schema, ``{{schema}}`` placeholders in the files
    are replaced by the schema name, and every file executes with the
    tenant's search_path.

    Attributes:
        directory: Directory containing migration files.
        tracker: Migration ledger.
        schema_name: Tenant schema to scope execution to, if any.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        directory: Path,
        tracker: MigrationTracker | None = None,
        *,
        schema_name: str | None = None,
        file_suffix: str = DEFAULT_FILE_SUFFIX,
        strip_do_blocks: bool = False,
        retry_failed: bool = True,
    ) -> None:
        """Initialize the runner.

        Args:
            engine: Async engine for the shared database.
            directory: Directory containing migration files.
            tracker: Ledger to use. Defaults to the ``shared`` ledger, or
                to the tenant schema's own ledger when schema_name is set.
            schema_name: Tenant schema to scope execution to.
            file_suffix: Exact suffix a file must end with.
            strip_do_blocks: Remove ``DO $$ ... $$;`` blocks before running.
            retry_failed: Re-run files whose last recorded attempt failed.

        Raises:
            InvalidSchemaNameError: If schema_name is not a safe identifier.
        """
        if schema_name is not None:
            assert_valid_schema_name(schema_name)

        self._engine = engine
        self.directory = Path(directory)
        self.schema_name = schema_name
        self.tracker = tracker or MigrationTracker(engine, ledger_schema=schema_name or "shared")
        self._file_suffix = file_suffix
        self._strip_do_blocks = strip_do_blocks
        self._retry_failed = retry_failed

    def list_migration_files(self) -> list[str]:
        """List migration file names in execution order.

        Raises:
            MigrationDirectoryError: If the directory cannot be listed.
        """
        try:
            entries = list(self.directory.iterdir())
        except OSError as e:
            raise MigrationDirectoryError(self.directory, e) from e

        return sorted(
            entry.name
            for entry in entries
            if entry.name.endswith(self._file_suffix) and entry.is_file()
        )

    async def _is_applied(self, migration_file: str) -> bool:
        if self._retry_failed:
            return await self.tracker.is_migration_successful(migration_file)
        return await self.tracker.is_migration_executed(migration_file)

    def _prepare_sql(self, migration_file: str) -> str:
        sql = (self.directory / migration_file).read_text(encoding="utf-8")
        if self._strip_do_blocks:
            sql = strip_do_blocks(sql)
        if self.schema_name is not None:
            sql = sql.replace(SCHEMA_PLACEHOLDER, self.schema_name)
        return sql

    async def _execute_sql(self, sql: str) -> None:
        """Run one migration file's SQL as a single batch."""
        if self.schema_name is None:
            async with self._engine.connect() as conn:
                await execute_script(conn, sql)
            return

        async with tenant_scope(self._engine, self.schema_name) as conn:
            await execute_script(conn, sql)

    async def get_pending_migrations(self) -> list[str]:
        """Return the files the next run would execute, in order."""
        await self.tracker.ensure_migration_table()
        return [
            migration_file
            for migration_file in self.list_migration_files()
            if not await self._is_applied(migration_file)
        ]

    async def get_migration_status(self) -> dict[str, Any]:
        """Get detailed migration status for diagnostics.

        Returns:
            Dict with total, executed, failed and pending file lists.
        """
        await self.tracker.ensure_migration_table()
        files = self.list_migration_files()
        records = {r.migration_file: r for r in await self.tracker.get_migration_records()}

        executed = [r.migration_file for r in records.values() if r.succeeded]
        failed = [r.migration_file for r in records.values() if not r.succeeded]
        if self._retry_failed:
            pending = [f for f in files if f not in records or not records[f].succeeded]
        else:
            pending = [f for f in files if f not in records]

        return {
            "total": len(files),
            "executed": executed,
            "failed": failed,
            "pending": pending,
            "is_up_to_date": not pending,
        }

    async def run(self) -> MigrationSummary:
        """Apply all pending migrations.

        Returns:
            Summary of executed and skipped files.

        Raises:
            MigrationDirectoryError: If the directory cannot be listed.
            MigrationExecutionError: If a migration fails. The failure is
                recorded in the ledger before this is raised.
        """
        # List first so a missing directory never creates the ledger
        files = self.list_migration_files()
        await self.tracker.ensure_migration_table()

        summary = MigrationSummary(total=len(files))
        logger.info("Found %d migration file(s) in %s", len(files), self.directory)

        for migration_file in files:
            if await self._is_applied(migration_file):
                logger.info("Skipping %s (already executed)", migration_file)
                summary.skipped.append(migration_file)
                continue

            await self._apply(migration_file, summary)

        self._log_summary(summary)
        return summary

    async def _apply(self, migration_file: str, summary: MigrationSummary) -> None:
        state = MigrationState.PENDING

        start = time.perf_counter()
        try:
            # Unreadable or non-UTF-8 files are recorded as failed attempts
            sql = self._prepare_sql(migration_file)
            state = MigrationState.RUNNING
            logger.info("Running migration: %s", migration_file)
            if sql.strip():
                await self._execute_sql(sql)
        except _EXECUTION_ERRORS as e:
            state = MigrationState.FAILED
            duration_ms = _elapsed_ms(start)
            await self.tracker.record_migration_execution(migration_file, duration_ms, str(e))
            summary.failed.append(migration_file)

            logger.error(
                "Migration %s %s after %dms: %s (SQLSTATE %s)",
                migration_file,
                state.value,
                duration_ms,
                e,
                _sqlstate(e) or "n/a",
            )
            self._log_summary(summary)
            raise MigrationExecutionError(migration_file, e, summary) from e

        state = MigrationState.COMPLETED
        duration_ms = _elapsed_ms(start)
        await self.tracker.record_migration_execution(migration_file, duration_ms)
        summary.executed.append(migration_file)
        logger.info("Migration %s %s (%dms)", migration_file, state.value, duration_ms)

    def _log_summary(self, summary: MigrationSummary) -> None:
        logger.info(
            "Migration summary%s: executed=%d skipped=%d failed=%d total=%d",
            f" for {self.schema_name}" if self.schema_name else "",
            summary.executed_count,
            summary.skipped_count,
            summary.failed_count,
            summary.total,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _sqlstate(error: Exception) -> str | None:
    """Extract the PostgreSQL SQLSTATE from a driver or SQLAlchemy error."""
    orig = getattr(error, "orig", None)
    for candidate in (error, orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None)
        if isinstance(code, str):
            return code
    return None


async def run_migrations(
    engine: AsyncEngine,
    directory: Path,
    *,
    ledger_schema: str = "shared",
    file_suffix: str = DEFAULT_FILE_SUFFIX,
    strip_do_blocks: bool = False,
    retry_failed: bool = True,
) -> MigrationSummary:
    """Run pending migrations from a directory against the shared ledger.

    Args:
        engine: Async engine for the shared database.
        directory: Directory containing migration files.
        ledger_schema: Schema holding the ledger table.
        file_suffix: Exact suffix a file must end with.
        strip_do_blocks: Remove ``DO $$ ... $$;`` blocks before running.
        retry_failed: Re-run files whose last recorded attempt failed.

    Returns:
        Summary of the run.

    Raises:
        MigrationExecutionError: If any migration fails.
    """
    runner = MigrationRunner(
        engine,
        directory,
        MigrationTracker(engine, ledger_schema=ledger_schema),
        file_suffix=file_suffix,
        strip_do_blocks=strip_do_blocks,
        retry_failed=retry_failed,
    )
    return await runner.run()
