from __future__ import annotations

from typing import Any, Mapping, Optional

from ..helpers import build_where, qualify
from ..session import DbSession


class RowLock:
    """
    Pessimistic lock on the rows matching an equality predicate.

    The rows are read with SELECT ... FOR UPDATE (exclusive) or
    SELECT ... LOCK IN SHARE MODE (shared). Locks are held for the entire
    duration of the surrounding transaction and are released only when the
    transaction commits or rolls back.

    This is NOT a context manager - locks are transaction-scoped, not method-scoped.

    The audited session uses the exclusive form to snapshot the old version
    of every row an UPDATE or DELETE is about to touch; nothing can change
    those rows between the snapshot and the statement.

    **Important: Indexing Requirements**

    The WHERE clause predicates should match indexed columns. Non-indexed predicates
    may cause full table scans and, under REPEATABLE READ, gap locks that block
    concurrent inserts.

    Usage:
        with DbSession(engine) as session:
            rows = RowLock(session, "orders", {"status": "open"}).acquire_all()
    """

    def __init__(
        self,
        session: DbSession,
        table: str,
        where: Mapping[str, Any],
        *,
        schema: Optional[str] = None,
        shared: bool = False,
    ) -> None:
        """
        Initialize a row lock.

        Args:
            session: Active DbSession instance
            table: Table name
            where: Dictionary of column -> value for WHERE clause
                   (e.g., {"id": 42} or {"order_id": 123, "item_id": 456})
            schema: Optional schema (database) qualifying the table
            shared: Take shared instead of exclusive locks
        """
        self.session = session
        self.table = table
        self.schema = schema
        self.where = dict(where)
        self.shared = shared

    def _select(self) -> tuple[str, dict[str, Any]]:
        where_sql, params = build_where(self.where)
        lock_sql = "LOCK IN SHARE MODE" if self.shared else "FOR UPDATE"
        sql = f"SELECT * FROM {qualify(self.schema, self.table)} WHERE {where_sql} {lock_sql}"
        return sql, params

    def _require_active(self) -> None:
        if not self.session.active:
            raise RuntimeError(
                "RowLock requires an active DbSession. "
                "Use RowLock within a 'with DbSession(engine) as session:' block."
            )

    def acquire(self) -> dict | None:
        """
        Lock a single row and return it.

        Returns:
            dict with row data if row exists, None otherwise

        Raises:
            RuntimeError: If DbSession is not active (not within a context manager)
            MultipleResultsFound: If the predicate matches more than one row
        """
        self._require_active()
        sql, params = self._select()
        return self.session.fetch_one(sql, params)

    def acquire_all(self) -> list[dict[str, Any]]:
        """
        Lock every matching row and return them in the order the server read them.
        """
        self._require_active()
        sql, params = self._select()
        return self.session.fetch_all(sql, params)
