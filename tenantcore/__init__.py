"""tenantcore.

Schema-per-tenant isolation and migration tracking for the school
management platform's PostgreSQL database.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
