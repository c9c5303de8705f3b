from __future__ import annotations

from .db.helpers import parse_table_identifier
from .db.session import DbSession
from .errors import TableNotFoundError
from .models import TableRef


# INNODB_TABLES.NAME is "database/table"; requires the PROCESS privilege.
_TABLE_SQL = """
    SELECT t.TABLE_SCHEMA AS schema_name, t.TABLE_NAME AS table_name, i.TABLE_ID AS table_id
    FROM information_schema.TABLES t
    JOIN information_schema.INNODB_TABLES i
      ON i.NAME = CONCAT(t.TABLE_SCHEMA, '/', t.TABLE_NAME)
    WHERE t.TABLE_SCHEMA = COALESCE(:schema, DATABASE())
      AND t.TABLE_NAME = :name
      AND t.TABLE_TYPE = 'BASE TABLE'
"""

_COLUMNS_SQL = """
    SELECT COLUMN_NAME AS column_name
    FROM information_schema.COLUMNS
    WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :name
    ORDER BY ORDINAL_POSITION
"""

_PRIMARY_KEY_SQL = """
    SELECT COLUMN_NAME AS column_name
    FROM information_schema.KEY_COLUMN_USAGE
    WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :name AND CONSTRAINT_NAME = 'PRIMARY'
    ORDER BY ORDINAL_POSITION
"""


def describe_table(session: DbSession, identifier: str) -> TableRef:
    """
    Resolve "table" or "schema.table" to its current definition.

    Unqualified names resolve against the session's default database.
    primary_key_columns lists every primary-key column; primary_key is set
    only for single-column primary keys.

    Raises:
        TableNotFoundError: No such base table
    """
    schema, name = parse_table_identifier(identifier)

    row = session.fetch_one(_TABLE_SQL, {"schema": schema, "name": name})
    if row is None:
        where = f"{schema}.{name}" if schema else name
        raise TableNotFoundError(f"Table {where!r} does not exist")

    params = {"schema": row["schema_name"], "name": row["table_name"]}
    columns = [r["column_name"] for r in session.fetch_all(_COLUMNS_SQL, params)]
    pk_columns = [r["column_name"] for r in session.fetch_all(_PRIMARY_KEY_SQL, params)]

    return TableRef(
        schema=row["schema_name"],
        name=row["table_name"],
        identity=int(row["table_id"]),
        columns=frozenset(columns),
        primary_key=pk_columns[0] if len(pk_columns) == 1 else None,
        primary_key_columns=tuple(pk_columns),
    )


def current_database(session: DbSession) -> str:
    return session.execute_scalar("SELECT DATABASE()")
