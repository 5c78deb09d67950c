# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant-scoped connections.

A tenant scope is one pooled connection whose ``search_path`` points at a
single tenant schema (then ``public``). Unqualified table names used
inside the scope resolve against that tenant only. The connection is
owned exclusively by the scope and goes back to the pool with its
``search_path`` reset.

Example:
    async with tenant_scope(engine, "tenant_oak_hill") as conn:
        result = await conn.execute(text("SELECT count(*) FROM students"))
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tenantcore.infrastructure.database.schema_names import assert_valid_schema_name

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_PATH = "public"


async def set_search_path(conn: AsyncConnection, schema_name: str) -> None:
    """Point the session search_path at a tenant schema, then public.

    Raises:
        InvalidSchemaNameError: If schema_name is not a safe identifier.
    """
    assert_valid_schema_name(schema_name)
    await conn.execute(text(f"SET search_path TO {schema_name}, {DEFAULT_SEARCH_PATH}"))


async def reset_search_path(conn: AsyncConnection) -> None:
    """Restore the default search_path on a connection."""
    await conn.execute(text(f"SET search_path TO {DEFAULT_SEARCH_PATH}"))


@asynccontextmanager
async def tenant_scope(engine: AsyncEngine, schema_name: str) -> AsyncIterator[AsyncConnection]:
    """Check out a connection scoped to one tenant schema.

    The schema name is validated before a connection is checked out, so
    an invalid name never reaches the pool. The transaction opened in the
    scope is committed on success and rolled back on error.

    Args:
        engine: Async engine for the shared database.
        schema_name: Tenant schema name.

    Yields:
        AsyncConnection whose search_path is the tenant schema.

    Raises:
        InvalidSchemaNameError: If schema_name is not a safe identifier.
    """
    assert_valid_schema_name(schema_name)

    async with engine.connect() as conn:
        try:
            await set_search_path(conn, schema_name)
            yield conn
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise
        finally:
            try:
                await reset_search_path(conn)
                await conn.commit()
            except SQLAlchemyError:
                # Never hand a tenant-scoped session back to the pool
                logger.warning(
                    "Failed to reset search_path after %s scope, invalidating connection",
                    schema_name,
                    exc_info=True,
                )
                await conn.invalidate()
