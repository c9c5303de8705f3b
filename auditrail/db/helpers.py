from __future__ import annotations

import re
from typing import Any, Mapping, Optional


_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def _validate_identifier(name: str, identifier_type: str = "identifier") -> str:
    """
    Validate that an identifier (schema/table/column name) is safe for SQL interpolation.

    MySQL identifiers can contain letters, digits, underscores, and dollar signs,
    but we restrict to alphanumeric + underscore for security and simplicity.

    ⚠️ SECURITY CONTRACT ⚠️
    This function validates identifier format but does NOT make untrusted input
    safe to use as an identifier. Audited table names and excluded columns MUST
    be trusted (hardcoded or validated at application boundaries).

    Args:
        name: The identifier to validate
        identifier_type: Description of the identifier (for error messages)

    Returns:
        The validated identifier (unchanged if valid)

    Raises:
        TypeError: If identifier is not a string
        ValueError: If identifier contains unsafe characters or is invalid

    Example:
        >>> _validate_identifier("orders", "table")
        'orders'
        >>> _validate_identifier("'; DROP TABLE--", "table")
        ValueError: Invalid table '; DROP TABLE--': ...
    """
    if not isinstance(name, str):
        raise TypeError(f"{identifier_type} must be a string, got {type(name).__name__}")

    if not name:
        raise ValueError(f"{identifier_type} cannot be empty")

    if not _IDENTIFIER_RE.match(name):
        raise ValueError(
            f"Invalid {identifier_type} {name!r}: "
            "must start with letter/underscore and contain only alphanumeric characters and underscores"
        )

    if len(name) > 64:
        raise ValueError(f"{identifier_type} {name!r} exceeds MySQL's 64-character limit")

    return name


def quote_identifier(name: str) -> str:
    return f"`{_validate_identifier(name)}`"


def qualify(schema: Optional[str], name: str) -> str:
    """Render `schema`.`name`, or just `name` when no schema is given."""
    if schema is None:
        return quote_identifier(name)
    return f"{quote_identifier(schema)}.{quote_identifier(name)}"


def parse_table_identifier(identifier: str) -> tuple[Optional[str], str]:
    """
    Split "table" or "schema.table" into (schema, table).

    Backticks around either part are accepted. An unqualified name returns
    schema=None and resolves against the connection's default database.
    """
    if not isinstance(identifier, str):
        raise TypeError(f"table identifier must be a string, got {type(identifier).__name__}")

    parts = [p.strip().strip("`") for p in identifier.split(".")]
    if len(parts) == 1:
        return None, _validate_identifier(parts[0], "table")
    if len(parts) == 2:
        return _validate_identifier(parts[0], "schema"), _validate_identifier(parts[1], "table")
    raise ValueError(f"Invalid table identifier {identifier!r}: expected 'table' or 'schema.table'")


def build_where(where: Mapping[str, Any], prefix: str = "where") -> tuple[str, dict[str, Any]]:
    """
    Build an equality-only WHERE clause from column -> value.

    Keys are sorted so the same predicate always renders the same SQL.
    An empty mapping yields "1 = 1" (every row).
    """
    clauses = []
    params: dict[str, Any] = {}
    for i, (col, val) in enumerate(sorted(where.items())):
        param_name = f"{prefix}_{i}"
        if val is None:
            clauses.append(f"{quote_identifier(col)} IS NULL")
        else:
            clauses.append(f"{quote_identifier(col)} = :{param_name}")
            params[param_name] = val

    if not clauses:
        return "1 = 1", params
    return " AND ".join(clauses), params
