# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for the shared PostgreSQL database.

All tenants share one database; each tenant owns one schema in it.
This package provides:
- Connection pool management
- Schema name validation
- Migration running and ledger tracking
- Tenant-scoped connections and tenant schema provisioning
- Schema introspection for diagnostics

Example:
    from tenantcore.infrastructure.database import (
        prepare_database,
        get_engine,
        tenant_scope,
    )

    await prepare_database(settings)

    async with tenant_scope(get_engine(), "tenant_oak_hill") as conn:
        result = await conn.execute(text("SELECT * FROM students"))
"""

from tenantcore.infrastructure.database.bootstrap import prepare_database, shutdown_database
from tenantcore.infrastructure.database.connection import (
    DatabaseError,
    check_database_connection,
    close_database,
    create_engine_from_settings,
    execute_script,
    get_engine,
    init_database,
)
from tenantcore.infrastructure.database.introspection import (
    IntrospectionQueryError,
    SchemaInfo,
    SchemaIntrospector,
    TableExistenceCache,
)
from tenantcore.infrastructure.database.migrations import (
    MigrationDirectoryError,
    MigrationExecutionError,
    MigrationRecord,
    MigrationRunner,
    MigrationSummary,
    MigrationTracker,
    run_migrations,
)
from tenantcore.infrastructure.database.schema_names import (
    InvalidSchemaNameError,
    assert_valid_schema_name,
    create_schema_slug,
    is_valid_schema_name,
)
from tenantcore.infrastructure.database.tenant_manager import (
    Tenant,
    TenantInput,
    TenantProvisioningError,
    TenantSchemaManager,
)
from tenantcore.infrastructure.database.tenant_scope import tenant_scope

__all__ = [
    # Connection
    "DatabaseError",
    "check_database_connection",
    "close_database",
    "create_engine_from_settings",
    "execute_script",
    "get_engine",
    "init_database",
    "prepare_database",
    "shutdown_database",
    # Schema names
    "InvalidSchemaNameError",
    "assert_valid_schema_name",
    "create_schema_slug",
    "is_valid_schema_name",
    # Migrations
    "MigrationDirectoryError",
    "MigrationExecutionError",
    "MigrationRecord",
    "MigrationRunner",
    "MigrationSummary",
    "MigrationTracker",
    "run_migrations",
    # Introspection
    "IntrospectionQueryError",
    "SchemaInfo",
    "SchemaIntrospector",
    "TableExistenceCache",
    # Tenants
    "Tenant",
    "TenantInput",
    "TenantProvisioningError",
    "TenantSchemaManager",
    "tenant_scope",
]
