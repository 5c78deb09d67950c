# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Unit tests
- Integration tests
"""

from pathlib import Path
from typing import Callable

import pytest

from tenantcore.core.config import clear_settings_cache


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (requires services)"
    )


# =============================================================================
# Settings Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Ensure every test sees freshly loaded settings."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Helper Fixtures
# =============================================================================


@pytest.fixture
def sample_schema_name() -> str:
    """Provide a sample tenant schema name for testing."""
    return "tenant_oak_hill"


@pytest.fixture
def write_migrations(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Provide a factory that writes migration files into a temp directory.

    Returns:
        Callable taking a {file_name: sql} mapping and returning the directory.
    """
    directory = tmp_path / "migrations"
    directory.mkdir()

    def _write(files: dict[str, str]) -> Path:
        for name, sql in files.items():
            (directory / name).write_text(sql, encoding="utf-8")
        return directory

    return _write
