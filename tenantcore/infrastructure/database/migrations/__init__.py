# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database migrations package.

SQL migration files and the runner that applies them:
- shared/: Platform tables (tenant registry) in the ``shared`` schema
- tenant/: Per-tenant tables, applied inside each tenant schema
"""

from tenantcore.infrastructure.database.migrations.runner import (
    MigrationDirectoryError,
    MigrationExecutionError,
    MigrationRunner,
    MigrationState,
    MigrationSummary,
    run_migrations,
    strip_do_blocks,
)
from tenantcore.infrastructure.database.migrations.tracker import (
    MigrationRecord,
    MigrationTracker,
)

__all__ = [
    "MigrationDirectoryError",
    "MigrationExecutionError",
    "MigrationRecord",
    "MigrationRunner",
    "MigrationState",
    "MigrationSummary",
    "MigrationTracker",
    "run_migrations",
    "strip_do_blocks",
]
