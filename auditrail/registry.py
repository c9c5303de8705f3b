from __future__ import annotations

from typing import Optional

from .config import AuditConfig
from .db.helpers import qualify
from .db.session import DbSession


def enrolled_tables(session: DbSession, config: Optional[AuditConfig] = None) -> list[tuple[str, str]]:
    """
    List (schema, table) pairs with at least one audit hook installed.

    Only tables that still exist as the incarnation the hooks were installed
    on are listed. Ordered by schema, then table.
    """
    config = config or AuditConfig()
    hook_table = qualify(config.schema, config.hook_table)
    rows = session.fetch_all(
        f"""
        SELECT DISTINCT h.schema_name AS schema_name, h.table_name AS table_name
        FROM {hook_table} h
        JOIN information_schema.INNODB_TABLES i
          ON i.NAME = CONCAT(h.schema_name, '/', h.table_name)
         AND i.TABLE_ID = h.table_identity
        ORDER BY h.schema_name, h.table_name
        """
    )
    return [(r["schema_name"], r["table_name"]) for r in rows]
