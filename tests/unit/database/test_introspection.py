# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for tenant schema introspection."""

import os
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from tenantcore.core.config import DEFAULT_EXPECTED_TABLES, IntrospectionSettings, Settings
from tenantcore.infrastructure.database.introspection import (
    IntrospectionQueryError,
    SchemaIntrospector,
    TableExistenceCache,
)
from tenantcore.infrastructure.database.schema_names import InvalidSchemaNameError


def connection_refused() -> OperationalError:
    return OperationalError("SELECT", {}, Exception("connection refused"))


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def introspector(mock_engine) -> SchemaIntrospector:
    """Create introspector with a small expected baseline."""
    return SchemaIntrospector(mock_engine, expected_tables=["schools", "students", "teachers"])


class TestInspectSchema:
    """Tests for SchemaIntrospector.inspect_schema."""

    @pytest.mark.asyncio
    async def test_reports_missing_tables(self, introspector, mock_conn) -> None:
        """Missing tables are the expected tables not found, in baseline order."""
        mock_conn.execute.return_value.fetchall.return_value = [("schools",), ("teachers",)]

        info = await introspector.inspect_schema("tenant_a")

        assert info.schema_name == "tenant_a"
        assert info.tables == ["schools", "teachers"]
        assert info.table_count == 2
        assert info.missing_tables == ["students"]
        assert info.is_complete is False
        assert mock_conn.execute.call_args.args[1] == {"schema": "tenant_a"}

    @pytest.mark.asyncio
    async def test_extra_tables_are_not_reported(self, introspector, mock_conn) -> None:
        """Tables outside the baseline do not count as drift."""
        mock_conn.execute.return_value.fetchall.return_value = [
            ("audit_log",),
            ("schools",),
            ("students",),
            ("teachers",),
        ]

        info = await introspector.inspect_schema("tenant_a")

        assert info.missing_tables == []
        assert info.is_complete is True
        assert info.table_count == 4

    @pytest.mark.asyncio
    async def test_query_failure_propagates(self, introspector, mock_conn) -> None:
        """inspect_schema has no safe default and raises."""
        mock_conn.execute.side_effect = connection_refused()

        with pytest.raises(IntrospectionQueryError) as exc_info:
            await introspector.inspect_schema("tenant_a")

        assert exc_info.value.schema_name == "tenant_a"

    @pytest.mark.asyncio
    async def test_invalid_schema_name(self, introspector, mock_engine) -> None:
        """Invalid names fail before any query."""
        with pytest.raises(InvalidSchemaNameError):
            await introspector.inspect_schema("tenant_a; --")

        mock_engine.connect.assert_not_called()

    def test_default_expected_tables(self, mock_engine) -> None:
        """The platform baseline is used when none is given."""
        assert SchemaIntrospector(mock_engine).expected_tables == DEFAULT_EXPECTED_TABLES


class TestFromSettings:
    """Tests for SchemaIntrospector.from_settings."""

    @pytest.mark.asyncio
    async def test_uses_introspection_environment(self, mock_engine, mock_conn) -> None:
        """INTROSPECTION_* settings drive the baseline and the cache TTL."""
        env = {
            "INTROSPECTION_EXPECTED_TABLES": '["only"]',
            "INTROSPECTION_CACHE_TTL_SECONDS": "0",
        }
        with patch.dict(os.environ, env, clear=False):
            settings = Settings()

        introspector = SchemaIntrospector.from_settings(mock_engine, settings)
        mock_conn.execute.return_value.fetchall.return_value = [("schools",)]
        mock_conn.execute.return_value.scalar.return_value = True

        info = await introspector.inspect_schema("tenant_a")
        assert info.expected_tables == ["only"]
        assert info.missing_tables == ["only"]

        # A zero TTL expires every entry, so each lookup queries again
        mock_conn.execute.reset_mock()
        assert await introspector.table_exists("tenant_a", "schools") is True
        assert await introspector.table_exists("tenant_a", "schools") is True
        assert mock_conn.execute.await_count == 2

    def test_cache_ttl_from_settings(self, mock_engine) -> None:
        settings = Settings(introspection=IntrospectionSettings(cache_ttl_seconds=1))

        introspector = SchemaIntrospector.from_settings(mock_engine, settings)

        assert introspector._cache.ttl_seconds == 1
        assert introspector.expected_tables == DEFAULT_EXPECTED_TABLES


class TestSchemaExists:
    """Tests for SchemaIntrospector.schema_exists."""

    @pytest.mark.asyncio
    async def test_exists(self, introspector, mock_conn) -> None:
        mock_conn.execute.return_value.scalar.return_value = True

        assert await introspector.schema_exists("tenant_a") is True

    @pytest.mark.asyncio
    async def test_query_failure_degrades_to_false(self, introspector, mock_conn) -> None:
        """Diagnostic helper reports False instead of raising."""
        mock_conn.execute.side_effect = connection_refused()

        assert await introspector.schema_exists("tenant_a") is False


class TestGetTableCount:
    """Tests for SchemaIntrospector.get_table_count."""

    @pytest.mark.asyncio
    async def test_count(self, introspector, mock_conn) -> None:
        mock_conn.execute.return_value.scalar.return_value = 7

        assert await introspector.get_table_count("tenant_a") == 7

    @pytest.mark.asyncio
    async def test_query_failure_raises(self, introspector, mock_conn) -> None:
        mock_conn.execute.side_effect = connection_refused()

        with pytest.raises(IntrospectionQueryError):
            await introspector.get_table_count("tenant_a")


class TestTableExists:
    """Tests for cached table existence checks."""

    @pytest.mark.asyncio
    async def test_result_is_cached(self, mock_engine, mock_conn) -> None:
        """Second lookup within the TTL does not query."""
        introspector = SchemaIntrospector(mock_engine, cache=TableExistenceCache(60))
        mock_conn.execute.return_value.scalar.return_value = True

        assert await introspector.table_exists("shared", "tenants") is True
        assert await introspector.table_exists("shared", "tenants") is True
        assert mock_conn.execute.call_count == 1

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, mock_engine, mock_conn) -> None:
        """A failed lookup returns False and is retried next time."""
        cache = TableExistenceCache(60)
        introspector = SchemaIntrospector(mock_engine, cache=cache)
        mock_conn.execute.side_effect = connection_refused()

        assert await introspector.table_exists("shared", "tenants") is False
        assert len(cache) == 0

        mock_conn.execute.side_effect = None
        mock_conn.execute.return_value.scalar.return_value = True

        assert await introspector.table_exists("shared", "tenants") is True
        assert mock_conn.execute.call_count == 2


class TestTableExistenceCache:
    """Tests for TableExistenceCache."""

    def test_expires_after_ttl(self) -> None:
        clock = FakeClock()
        cache = TableExistenceCache(ttl_seconds=300, clock=clock)
        cache.set("shared", "tenants", True)

        clock.now += 299
        assert cache.get("shared", "tenants") is True

        clock.now += 1
        assert cache.get("shared", "tenants") is None
        assert len(cache) == 0

    def test_negative_results_are_cached(self) -> None:
        cache = TableExistenceCache(ttl_seconds=300, clock=FakeClock())
        cache.set("shared", "file_uploads", False)

        assert cache.get("shared", "file_uploads") is False

    def test_invalidate_schema(self) -> None:
        cache = TableExistenceCache(clock=FakeClock())
        cache.set("tenant_a", "students", True)
        cache.set("tenant_b", "students", True)

        cache.invalidate("tenant_a")

        assert cache.get("tenant_a", "students") is None
        assert cache.get("tenant_b", "students") is True

        cache.invalidate()
        assert len(cache) == 0

    def test_caches_are_independent(self) -> None:
        """Each cache instance owns its entries."""
        first = TableExistenceCache(clock=FakeClock())
        second = TableExistenceCache(clock=FakeClock())
        first.set("shared", "tenants", True)

        assert second.get("shared", "tenants") is None
