# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Schema identifier validation.

PostgreSQL cannot bind identifiers as query parameters, so schema names
end up interpolated into SQL text (``SET search_path``, ``CREATE SCHEMA``,
schema-qualified table names). Every such call site must pass the name
through assert_valid_schema_name() first.
"""

import re

from tenantcore.infrastructure.database.connection import DatabaseError

SCHEMA_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")

# PostgreSQL NAMEDATALEN - 1
MAX_SCHEMA_NAME_BYTES = 63

TENANT_SCHEMA_PREFIX = "tenant_"

# PostgreSQL reserved key words. Unquoted, these cannot name a schema.
RESERVED_KEYWORDS = frozenset(
    {
        "all", "analyse", "analyze", "and", "any", "array", "as", "asc",
        "asymmetric", "authorization", "binary", "both", "case", "cast",
        "check", "collate", "collation", "column", "concurrently",
        "constraint", "create", "cross", "current_catalog", "current_date",
        "current_role", "current_schema", "current_time", "current_timestamp",
        "current_user", "default", "deferrable", "desc", "distinct", "do",
        "else", "end", "except", "false", "fetch", "for", "foreign", "freeze",
        "from", "full", "grant", "group", "having", "ilike", "in", "initially",
        "inner", "intersect", "into", "is", "isnull", "join", "lateral",
        "leading", "left", "like", "limit", "localtime", "localtimestamp",
        "natural", "not", "notnull", "null", "offset", "on", "only", "or",
        "order", "outer", "overlaps", "placing", "primary", "references",
        "returning", "right", "select", "session_user", "similar", "some",
        "symmetric", "system_user", "table", "tablesample", "then", "to",
        "trailing", "true", "union", "unique", "user", "using", "variadic",
        "verbose", "when", "where", "window", "with",
    }
)


class InvalidSchemaNameError(DatabaseError):
    """Raised when a schema name is not a safe SQL identifier.

    Attributes:
        schema_name: The rejected name.
    """

    def __init__(self, schema_name: object) -> None:
        super().__init__(f"Invalid schema name: {schema_name!r}")
        self.schema_name = schema_name


def is_valid_schema_name(name: object) -> bool:
    """Return True if name is a lower snake case, non-reserved identifier within limits."""
    if not isinstance(name, str):
        return False
    if len(name.encode("utf-8")) > MAX_SCHEMA_NAME_BYTES:
        return False
    if name in RESERVED_KEYWORDS:
        return False
    # fullmatch: "$" alone would accept a trailing newline
    return SCHEMA_NAME_PATTERN.fullmatch(name) is not None


def assert_valid_schema_name(name: object) -> None:
    """Validate a schema name before it is interpolated into SQL.

    Args:
        name: Candidate schema name.

    Raises:
        InvalidSchemaNameError: If the name does not match
            ``^[a-z][a-z0-9_]*$``, is a reserved key word or exceeds 63
            bytes.
    """
    if not is_valid_schema_name(name):
        raise InvalidSchemaNameError(name)


def create_schema_slug(name: str) -> str:
    """Derive a tenant schema name from a display name.

    Example:
        >>> create_schema_slug("Oak Hill Primary School!")
        'tenant_oak_hill_primary_school'

    Args:
        name: Tenant display name.

    Returns:
        A validated schema name prefixed with ``tenant_``.

    Raises:
        InvalidSchemaNameError: If nothing usable remains of the name.
    """
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    if not slug:
        raise InvalidSchemaNameError(name)

    schema_name = f"{TENANT_SCHEMA_PREFIX}{slug}"[:MAX_SCHEMA_NAME_BYTES].rstrip("_")
    assert_valid_schema_name(schema_name)
    return schema_name
