# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Fixtures for database unit tests.

Provides a mocked async engine and an in-memory migration ledger so the
runner, tracker and introspector can be tested without PostgreSQL.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from tenantcore.infrastructure.database.migrations.tracker import MigrationRecord


def make_mock_engine(conn: AsyncMock) -> MagicMock:
    """Create a mock AsyncEngine whose connect()/begin() yield conn."""
    engine = MagicMock()
    for factory in (engine.connect, engine.begin):
        factory.return_value.__aenter__.return_value = conn
        # A truthy __aexit__ would swallow exceptions raised in the block
        factory.return_value.__aexit__.return_value = False
    return engine


@pytest.fixture
def executed_sql(mock_conn: AsyncMock) -> Callable[[], list[str]]:
    """Provide a callable returning the SQL text of every mock_conn.execute() call."""

    def _executed() -> list[str]:
        return [" ".join(str(c.args[0]).split()) for c in mock_conn.execute.call_args_list]

    return _executed


@pytest.fixture
def mock_conn() -> AsyncMock:
    """Create mock AsyncConnection."""
    conn = AsyncMock()
    conn.execute = AsyncMock(return_value=MagicMock())
    conn.commit = AsyncMock()
    conn.rollback = AsyncMock()
    conn.invalidate = AsyncMock()
    return conn


@pytest.fixture
def mock_engine(mock_conn: AsyncMock) -> MagicMock:
    """Create mock AsyncEngine bound to mock_conn."""
    return make_mock_engine(mock_conn)


class InMemoryTracker:
    """Migration ledger kept in a dict, with the same upsert semantics."""

    def __init__(self) -> None:
        self.rows: dict[str, MigrationRecord] = {}
        self.ensure_calls = 0
        self._tick = 0

    async def ensure_migration_table(self) -> None:
        self.ensure_calls += 1

    async def is_migration_executed(self, migration_file: str) -> bool:
        return migration_file in self.rows

    async def is_migration_successful(self, migration_file: str) -> bool:
        record = self.rows.get(migration_file)
        return record is not None and record.succeeded

    async def record_migration_execution(
        self,
        migration_file: str,
        execution_time_ms: int,
        error_message: str | None = None,
    ) -> None:
        self._tick += 1
        self.rows[migration_file] = MigrationRecord(
            migration_file=migration_file,
            executed_at=datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=self._tick),
            execution_time_ms=execution_time_ms,
            error_message=error_message,
        )

    async def get_executed_migrations(self) -> list[str]:
        return [r.migration_file for r in await self.get_migration_records()]

    async def get_migration_records(self) -> list[MigrationRecord]:
        return sorted(self.rows.values(), key=lambda r: r.executed_at)


@pytest.fixture
def tracker() -> InMemoryTracker:
    """Provide an empty in-memory migration ledger."""
    return InMemoryTracker()
