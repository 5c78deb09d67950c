# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tenant schema introspection.

Reads the PostgreSQL catalog to report which tables a tenant schema
contains and which of the expected baseline tables are missing. Only
table presence is checked: extra tables and column-level drift are not
reported.

The narrow boolean helpers (schema_exists, table_exists) back health
checks and degrade to False when the catalog query fails. inspect_schema
and get_table_count have no safe default and raise
IntrospectionQueryError instead.

Example:
    introspector = SchemaIntrospector.from_settings(engine, get_settings())
    info = await introspector.inspect_schema("tenant_oak_hill")
    if info.missing_tables:
        logger.warning("Schema drift: %s", info.missing_tables)
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from tenantcore.core.config.settings import DEFAULT_EXPECTED_TABLES, Settings
from tenantcore.infrastructure.database.connection import DatabaseError
from tenantcore.infrastructure.database.schema_names import assert_valid_schema_name

logger = logging.getLogger(__name__)

_LIST_TABLES_SQL = text("""
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = :schema AND table_type = 'BASE TABLE'
    ORDER BY table_name
""")

_COUNT_TABLES_SQL = text("""
    SELECT count(*)
    FROM information_schema.tables
    WHERE table_schema = :schema AND table_type = 'BASE TABLE'
""")

_SCHEMA_EXISTS_SQL = text("""
    SELECT EXISTS (
        SELECT 1 FROM information_schema.schemata WHERE schema_name = :schema
    )
""")

_TABLE_EXISTS_SQL = text("""
    SELECT EXISTS (
        SELECT 1 FROM information_schema.tables
        WHERE table_schema = :schema AND table_name = :table
    )
""")


class IntrospectionQueryError(DatabaseError):
    """Raised when a catalog query for a schema fails.

    Attributes:
        schema_name: The schema being inspected.
    """

    def __init__(self, schema_name: str, original_error: Exception) -> None:
        super().__init__(f"Failed to introspect schema {schema_name}", original_error)
        self.schema_name = schema_name


@dataclass(frozen=True)
class SchemaInfo:
    """Snapshot of a tenant schema's tables. Not cached.

    Attributes:
        schema_name: Inspected schema.
        tables: Base tables present, sorted by name.
        expected_tables: Baseline the schema was compared against.
        missing_tables: Expected tables not present, in baseline order.
    """

    schema_name: str
    tables: list[str]
    expected_tables: list[str] = field(default_factory=list)
    missing_tables: list[str] = field(default_factory=list)

    @property
    def table_count(self) -> int:
        return len(self.tables)

    @property
    def is_complete(self) -> bool:
        """Whether every expected table is present."""
        return not self.missing_tables


class TableExistenceCache:
    """TTL-bounded cache of table-existence lookups.

    One instance is owned by one introspector; nothing is shared at module
    level. Expired entries are evicted when read.

    Attributes:
        ttl_seconds: Age at which an entry is treated as absent.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[bool, float]] = {}

    def get(self, schema_name: str, table_name: str) -> bool | None:
        """Return the cached value, or None if absent or expired."""
        key = (schema_name, table_name)
        entry = self._entries.get(key)
        if entry is None:
            return None

        exists, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return exists

    def set(self, schema_name: str, table_name: str, exists: bool) -> None:
        self._entries[(schema_name, table_name)] = (exists, self._clock())

    def invalidate(self, schema_name: str | None = None) -> None:
        """Drop all entries, or only those of one schema."""
        if schema_name is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k[0] == schema_name]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class SchemaIntrospector:
    """Inspects tenant schemas through information_schema.

    Attributes:
        expected_tables: Baseline tables every tenant schema should contain.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        expected_tables: Sequence[str] | None = None,
        cache: TableExistenceCache | None = None,
    ) -> None:
        """Initialize the introspector.

        Args:
            engine: Async engine for the shared database.
            expected_tables: Baseline tables. Defaults to the platform's
                core tenant tables.
            cache: Cache for table_exists(). A private cache with the
                default TTL is created if omitted.
        """
        self._engine = engine
        self.expected_tables = list(
            expected_tables if expected_tables is not None else DEFAULT_EXPECTED_TABLES
        )
        self._cache = cache if cache is not None else TableExistenceCache()

    @classmethod
    def from_settings(cls, engine: AsyncEngine, settings: Settings) -> "SchemaIntrospector":
        """Create an introspector configured by ``settings.introspection``.

        The expected tables and the table cache TTL come from the
        ``INTROSPECTION_*`` environment settings.
        """
        introspection = settings.introspection
        return cls(
            engine,
            expected_tables=introspection.expected_tables,
            cache=TableExistenceCache(introspection.cache_ttl_seconds),
        )

    async def inspect_schema(self, schema_name: str) -> SchemaInfo:
        """Compare a schema's tables with the expected baseline.

        Raises:
            InvalidSchemaNameError: If schema_name is not a safe identifier.
            IntrospectionQueryError: If the catalog query fails.
        """
        assert_valid_schema_name(schema_name)

        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(_LIST_TABLES_SQL, {"schema": schema_name})
                tables = [row[0] for row in result.fetchall()]
        except SQLAlchemyError as e:
            raise IntrospectionQueryError(schema_name, e) from e

        present = set(tables)
        missing = [table for table in self.expected_tables if table not in present]

        return SchemaInfo(
            schema_name=schema_name,
            tables=tables,
            expected_tables=list(self.expected_tables),
            missing_tables=missing,
        )

    async def schema_exists(self, schema_name: str) -> bool:
        """Check whether a schema exists. False if the query fails."""
        assert_valid_schema_name(schema_name)

        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(_SCHEMA_EXISTS_SQL, {"schema": schema_name})
                return bool(result.scalar())
        except SQLAlchemyError:
            logger.warning("Schema existence check failed for %s", schema_name, exc_info=True)
            return False

    async def get_table_count(self, schema_name: str) -> int:
        """Count base tables in a schema.

        Raises:
            InvalidSchemaNameError: If schema_name is not a safe identifier.
            IntrospectionQueryError: If the catalog query fails.
        """
        assert_valid_schema_name(schema_name)

        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(_COUNT_TABLES_SQL, {"schema": schema_name})
                return int(result.scalar() or 0)
        except SQLAlchemyError as e:
            raise IntrospectionQueryError(schema_name, e) from e

    async def table_exists(self, schema_name: str, table_name: str) -> bool:
        """Check whether a table exists, using the TTL cache.

        Query failures return False and are not cached.
        """
        assert_valid_schema_name(schema_name)

        cached = self._cache.get(schema_name, table_name)
        if cached is not None:
            return cached

        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(
                    _TABLE_EXISTS_SQL, {"schema": schema_name, "table": table_name}
                )
                exists = bool(result.scalar())
        except SQLAlchemyError:
            logger.warning(
                "Table existence check failed for %s.%s",
                schema_name,
                table_name,
                exc_info=True,
            )
            return False

        self._cache.set(schema_name, table_name, exists)
        return exists
