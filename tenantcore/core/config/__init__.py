# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for tenantcore.

Settings are Pydantic-based and loaded from environment variables.

Example:
    >>> from tenantcore.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from tenantcore.core.config.settings import (
    DEFAULT_EXPECTED_TABLES,
    DatabaseSettings,
    IntrospectionSettings,
    MigrationSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "DatabaseSettings",
    "MigrationSettings",
    "IntrospectionSettings",
    "DEFAULT_EXPECTED_TABLES",
]
