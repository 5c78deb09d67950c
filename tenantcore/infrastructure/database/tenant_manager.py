# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant schema management.

Each tenant (school) owns exactly one PostgreSQL schema inside the shared
database. This module creates those schemas, runs the tenant migrations
against them, seeds their default rows and registers tenants in
``shared.tenants``.

Tenant migrations are tracked per tenant: the ledger table lives inside
the tenant schema, so re-running migrations for a tenant only applies
files that tenant has not applied yet.

Example:
    from tenantcore.infrastructure.database import TenantSchemaManager, TenantInput

    manager = TenantSchemaManager(engine, settings)

    # Provision a new tenant
    tenant = await manager.provision_tenant(
        TenantInput(name="Oak Hill Primary", schema_name="tenant_oak_hill")
    )

    # Query inside the tenant's schema
    async with manager.session(tenant.schema_name) as conn:
        result = await conn.execute(text("SELECT count(*) FROM students"))
"""

import logging
import uuid
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tenantcore.infrastructure.database.connection import DatabaseError
from tenantcore.infrastructure.database.migrations.runner import (
    MigrationRunner,
    MigrationSummary,
)
from tenantcore.infrastructure.database.schema_names import assert_valid_schema_name
from tenantcore.infrastructure.database.tenant_scope import tenant_scope

if TYPE_CHECKING:
    from tenantcore.core.config.settings import Settings

logger = logging.getLogger(__name__)

SubscriptionType = Literal["free", "trial", "paid"]
TenantStatus = Literal["active", "suspended", "deleted"]


class TenantProvisioningError(DatabaseError):
    """Raised when tenant provisioning fails.

    Attributes:
        schema_name: The schema that failed to provision.
        reason: The reason for the failure.
    """

    def __init__(
        self,
        schema_name: str,
        reason: str,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(f"Failed to provision tenant {schema_name}: {reason}", original_error)
        self.schema_name = schema_name
        self.reason = reason


@dataclass(frozen=True)
class TenantInput:
    """Data required to onboard a tenant.

    Attributes:
        name: Display name of the school.
        schema_name: Schema the tenant will own. Immutable once created.
        domain: Optional custom domain.
        subscription_type: Subscription tier.
        status: Lifecycle status.
        billing_email: Optional billing contact.
    """

    name: str
    schema_name: str
    domain: str | None = None
    subscription_type: SubscriptionType = "trial"
    status: TenantStatus = "active"
    billing_email: str | None = None


@dataclass(frozen=True)
class Tenant:
    """A registered tenant."""

    id: str
    name: str
    schema_name: str
    domain: str | None
    subscription_type: SubscriptionType
    status: TenantStatus


class TenantSchemaManager:
    """Creates, migrates and scopes access to tenant schemas.

    Attributes:
        engine: Async engine for the shared database.
        settings: Application settings.
    """

    def __init__(self, engine: AsyncEngine, settings: "Settings") -> None:
        self.engine = engine
        self.settings = settings

    def session(self, schema_name: str) -> AbstractAsyncContextManager[AsyncConnection]:
        """Open a connection scoped to a tenant schema.

        See tenant_scope() for the isolation guarantees.
        """
        return tenant_scope(self.engine, schema_name)

    async def create_tenant_schema(self, schema_name: str) -> None:
        """Create a tenant schema if it does not exist.

        Raises:
            InvalidSchemaNameError: If schema_name is not a safe identifier.
        """
        assert_valid_schema_name(schema_name)
        async with self.engine.begin() as conn:
            await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema_name}"))
        logger.info("Created tenant schema %s", schema_name)

    async def drop_tenant_schema(self, schema_name: str, cascade: bool = False) -> None:
        """Drop a tenant schema if it exists.

        Raises:
            InvalidSchemaNameError: If schema_name is not a safe identifier.
        """
        assert_valid_schema_name(schema_name)
        suffix = " CASCADE" if cascade else ""
        async with self.engine.begin() as conn:
            await conn.execute(text(f"DROP SCHEMA IF EXISTS {schema_name}{suffix}"))
        logger.info("Dropped tenant schema %s", schema_name)

    def _tenant_runner(self, schema_name: str) -> MigrationRunner:
        migrations = self.settings.migrations
        return MigrationRunner(
            self.engine,
            migrations.tenant_directory,
            schema_name=schema_name,
            file_suffix=migrations.file_suffix,
            strip_do_blocks=migrations.strip_do_blocks,
            retry_failed=migrations.retry_failed,
        )

    async def run_tenant_migrations(self, schema_name: str) -> MigrationSummary:
        """Apply pending tenant migrations to one tenant schema.

        A missing tenant migrations directory is treated as having no
        migrations.

        Raises:
            InvalidSchemaNameError: If schema_name is not a safe identifier.
            MigrationExecutionError: If a migration fails.
        """
        runner = self._tenant_runner(schema_name)
        if not runner.directory.exists():
            # Checked before run() so neither the schema nor its ledger is created
            logger.info("No tenant migrations directory at %s", runner.directory)
            return MigrationSummary()
        return await runner.run()

    async def seed_tenant(self, schema_name: str) -> None:
        """Insert the tenant's default rows.

        Only an empty branding_settings row is created, and only when the
        table has none, so seeding twice is harmless.

        Raises:
            InvalidSchemaNameError: If schema_name is not a safe identifier.
        """
        assert_valid_schema_name(schema_name)
        async with self.engine.begin() as conn:
            await conn.execute(
                text(f"""
                    INSERT INTO {schema_name}.branding_settings
                        (id, logo_url, primary_color, secondary_color, theme_flags)
                    SELECT uuid_generate_v4(), NULL, NULL, NULL, '{{}}'::jsonb
                    WHERE NOT EXISTS (SELECT 1 FROM {schema_name}.branding_settings)
                    ON CONFLICT (id) DO NOTHING
                """)
            )
        logger.info("Seeded tenant schema %s", schema_name)

    async def register_tenant(self, tenant: TenantInput) -> Tenant:
        """Insert a tenant into the shared tenant registry."""
        assert_valid_schema_name(tenant.schema_name)
        tenant_id = str(uuid.uuid4())

        async with self.engine.begin() as conn:
            await conn.execute(
                text("""
                    INSERT INTO shared.tenants
                        (id, name, domain, schema_name, subscription_type, status, billing_email)
                    VALUES
                        (:id, :name, :domain, :schema_name, :subscription_type, :status, :billing_email)
                """),
                {
                    "id": tenant_id,
                    "name": tenant.name,
                    "domain": tenant.domain,
                    "schema_name": tenant.schema_name,
                    "subscription_type": tenant.subscription_type,
                    "status": tenant.status,
                    "billing_email": tenant.billing_email,
                },
            )

        return Tenant(
            id=tenant_id,
            name=tenant.name,
            schema_name=tenant.schema_name,
            domain=tenant.domain,
            subscription_type=tenant.subscription_type,
            status=tenant.status,
        )

    async def provision_tenant(self, tenant: TenantInput) -> Tenant:
        """Create, migrate, seed and register a tenant.

        The registry row is written last, so a tenant never appears in
        ``shared.tenants`` before its schema is migrated and seeded.

        Raises:
            InvalidSchemaNameError: If the schema name is not a safe identifier.
            TenantProvisioningError: If any step after validation fails.
        """
        assert_valid_schema_name(tenant.schema_name)

        try:
            await self.create_tenant_schema(tenant.schema_name)
            summary = await self.run_tenant_migrations(tenant.schema_name)
            await self.seed_tenant(tenant.schema_name)
            registered = await self.register_tenant(tenant)
        except (DatabaseError, SQLAlchemyError) as e:
            logger.error("Provisioning of %s failed: %s", tenant.schema_name, e)
            raise TenantProvisioningError(tenant.schema_name, str(e), e) from e

        logger.info(
            "Provisioned tenant %s (%s), %d migration(s) applied",
            registered.name,
            registered.schema_name,
            summary.executed_count,
        )
        return registered
