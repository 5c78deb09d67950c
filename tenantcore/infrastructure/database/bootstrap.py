# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database startup sequence.

Application startup calls prepare_database() before serving traffic.
Migration failures propagate so the process aborts instead of serving
requests against a partially migrated database.
"""

import logging
from typing import TYPE_CHECKING

from tenantcore.infrastructure.database.connection import close_database, init_database
from tenantcore.infrastructure.database.migrations.runner import MigrationRunner, MigrationSummary
from tenantcore.infrastructure.database.migrations.tracker import MigrationTracker

if TYPE_CHECKING:
    from tenantcore.core.config.settings import Settings

logger = logging.getLogger(__name__)


async def prepare_database(settings: "Settings") -> MigrationSummary:
    """Initialize the connection pool and apply shared migrations.

    Args:
        settings: Application settings.

    Returns:
        Summary of the shared migration run.

    Raises:
        DatabaseError: If the pool cannot be created.
        MigrationExecutionError: If a shared migration fails.
    """
    engine = await init_database(settings)
    migrations = settings.migrations

    runner = MigrationRunner(
        engine,
        migrations.directory,
        MigrationTracker(engine, ledger_schema=migrations.ledger_schema),
        file_suffix=migrations.file_suffix,
        strip_do_blocks=migrations.strip_do_blocks,
        retry_failed=migrations.retry_failed,
    )
    summary = await runner.run()
    logger.info("Database ready (%d shared migration(s) applied)", summary.executed_count)
    return summary


async def shutdown_database() -> None:
    """Dispose of the connection pool."""
    await close_database()
    logger.info("Database connections closed")
