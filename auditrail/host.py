from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.engine import Engine

from .catalog import describe_table
from .context import ContextProvider
from .db.helpers import build_where, qualify, quote_identifier
from .db.locking.row_lock import RowLock
from .db.session import DbSession
from .dispatcher import CaptureDispatcher
from .enrollment import EnrollmentManager
from .models import (
    Action,
    HookInvocation,
    HookLevel,
    HookSet,
    HookTiming,
    StatementContext,
    TableRef,
)
from .store import LogStore

Row = Mapping[str, Any]


class AuditedSession(DbSession):
    """
    DbSession whose data-modifying helpers fire the installed audit hooks.

    Each helper is one audited statement:
    1) resolve the table and read its hooks (shared locks)
    2) read the statement context
    3) lock and snapshot the rows an UPDATE/DELETE will touch
    4) apply the change
    5) dispatch the row-level hook once per row, in the order the rows were read
    6) dispatch the statement-level hook once

    Everything happens inside the session's transaction: if it rolls back,
    the audit records go with it.

    Plain execute() calls are NOT audited.

    Usage:
        with AuditedSession(engine, manager) as session:
            session.insert("orders", {"id": 1, "status": "new"})
            session.update("orders", {"status": "paid"}, {"id": 1})
    """

    def __init__(
        self,
        engine: Engine,
        manager: Optional[EnrollmentManager] = None,
        dispatcher: Optional[CaptureDispatcher] = None,
    ) -> None:
        super().__init__(engine)
        self.manager = manager or EnrollmentManager()
        self.dispatcher = dispatcher or CaptureDispatcher(
            LogStore(self.manager.config),
            ContextProvider(self.manager.config.application_name),
        )
        self.transaction_start_at: Optional[datetime] = None

    @property
    def provider(self) -> ContextProvider:
        return self.dispatcher.provider

    def __enter__(self) -> "AuditedSession":
        super().__enter__()
        try:
            self.transaction_start_at = self.provider.begin(self)
        except BaseException as exc:
            super().__exit__(type(exc), exc, exc.__traceback__)
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.transaction_start_at = None
        return super().__exit__(exc_type, exc, tb)

    # -- statement plumbing -------------------------------------------------

    def _prepare(self, table: str) -> tuple[TableRef, HookSet]:
        target = describe_table(self, table)
        return target, self.manager.hooks_for(self, target)

    def _statement_context(self, target: TableRef, statement_text: str) -> StatementContext:
        return self.provider.statement(
            self, target, self.transaction_start_at, statement_text
        )

    @staticmethod
    def _key(target: TableRef, row: Row, last_id: Optional[int] = None) -> Optional[dict[str, Any]]:
        """
        Full primary-key value of a row, or None when it cannot be known.

        A single key column missing from an inserted row is taken to be the
        AUTO_INCREMENT column and filled from last_id.
        """
        if not target.primary_key_columns:
            return None
        missing = [c for c in target.primary_key_columns if row.get(c) is None]
        key = {c: row.get(c) for c in target.primary_key_columns}
        if len(missing) == 1 and last_id:
            key[missing[0]] = last_id
        elif missing:
            return None
        return key

    def _reload(self, target: TableRef, fallback: Row, key: Optional[Row]) -> dict[str, Any]:
        # tables without a primary key cannot be re-read; the caller's values stand in
        if not key:
            return dict(fallback)
        where_sql, params = build_where(key, prefix="pk")
        row = self.fetch_one(
            f"SELECT * FROM {qualify(target.schema, target.name)} WHERE {where_sql}",
            params,
        )
        return row if row is not None else dict(fallback)

    def _lock_rows(self, target: TableRef, where: Row) -> list[dict[str, Any]]:
        return RowLock(self, target.name, where, schema=target.schema).acquire_all()

    def _fire(
        self,
        context: StatementContext,
        hooks: HookSet,
        action: Action,
        rows: Iterable[tuple[Optional[Row], Optional[Row]]],
    ) -> None:
        context = context.with_transaction_id(self.provider.transaction_id(self))

        row_hook = hooks.row_hook_for(action)
        if row_hook is not None:
            for old, new in rows:
                self.dispatcher.dispatch(
                    self,
                    HookInvocation(
                        timing=HookTiming.AFTER,
                        level=HookLevel.ROW,
                        action=action,
                        hook=row_hook,
                        statement=context,
                        old=old,
                        new=new,
                    ),
                )

        statement_hook = hooks.statement_hook_for(action)
        if statement_hook is not None:
            self.dispatcher.dispatch(
                self,
                HookInvocation(
                    timing=HookTiming.AFTER,
                    level=HookLevel.STATEMENT,
                    action=action,
                    hook=statement_hook,
                    statement=context,
                ),
            )

    # -- audited statements -------------------------------------------------

    def insert(self, table: str, rows: Row | Iterable[Row]) -> int:
        """
        Insert one row or several rows. Returns the number of rows inserted.
        """
        if isinstance(rows, Mapping):
            rows = [rows]
        rows = [dict(r) for r in rows]
        if not rows:
            return 0

        target, hooks = self._prepare(table)
        name = qualify(target.schema, target.name)

        # one INSERT per row; rows may set different columns
        statements = []
        for row in rows:
            if not row:
                raise ValueError("insert() rows must set at least one column")
            cols = list(row.keys())
            col_names = ", ".join(quote_identifier(c) for c in cols)
            placeholders = ", ".join(f":v_{i}" for i in range(len(cols)))
            sql = f"INSERT INTO {name} ({col_names}) VALUES ({placeholders})"
            statements.append((sql, {f"v_{i}": row[c] for i, c in enumerate(cols)}))

        if not hooks:
            return sum(self.execute(sql, params) for sql, params in statements)

        statement_text = "; ".join(dict.fromkeys(sql for sql, _ in statements))
        context = self._statement_context(target, statement_text)

        inserted = 0
        new_rows = []
        want_rows = hooks.row_hook_for(Action.INSERT) is not None
        for row, (sql, params) in zip(rows, statements):
            count, last_id = self.execute_insert(sql, params)
            inserted += count
            if want_rows:
                key = self._key(target, row, last_id)
                new_rows.append((None, self._reload(target, row, key)))

        self._fire(context, hooks, Action.INSERT, new_rows)
        return inserted

    def update(self, table: str, values: Row, where: Row) -> int:
        """
        UPDATE table SET values WHERE where (column equality only).
        An empty where updates every row. Returns the number of matched rows.
        """
        if not values:
            raise ValueError("update() requires at least one column to set")

        target, hooks = self._prepare(table)
        set_sql = ", ".join(
            f"{quote_identifier(col)} = :set_{i}" for i, col in enumerate(values)
        )
        where_sql, params = build_where(where)
        params.update({f"set_{i}": val for i, val in enumerate(values.values())})
        sql = f"UPDATE {qualify(target.schema, target.name)} SET {set_sql} WHERE {where_sql}"

        if not hooks:
            return self.execute(sql, params)

        context = self._statement_context(target, sql)
        want_rows = hooks.row_hook_for(Action.UPDATE) is not None
        old_rows = self._lock_rows(target, where) if want_rows else []

        count = self.execute(sql, params)

        pairs = []
        for old in old_rows:
            # values may move the key itself
            fallback = {**old, **values}
            key = self._key(target, fallback)
            pairs.append((old, self._reload(target, fallback, key)))

        self._fire(context, hooks, Action.UPDATE, pairs)
        return count

    def delete(self, table: str, where: Row) -> int:
        """
        DELETE FROM table WHERE where (column equality only).
        An empty where deletes every row. Returns the number of deleted rows.
        """
        target, hooks = self._prepare(table)
        where_sql, params = build_where(where)
        sql = f"DELETE FROM {qualify(target.schema, target.name)} WHERE {where_sql}"

        if not hooks:
            return self.execute(sql, params)

        context = self._statement_context(target, sql)
        want_rows = hooks.row_hook_for(Action.DELETE) is not None
        old_rows = self._lock_rows(target, where) if want_rows else []

        count = self.execute(sql, params)

        self._fire(context, hooks, Action.DELETE, [(old, None) for old in old_rows])
        return count

    def truncate(self, table: str) -> int:
        """
        Remove every row of the table as a truncate event.

        Runs as an unfiltered DELETE: MySQL's TRUNCATE TABLE commits
        implicitly and would escape the session's transaction. Only
        statement-level hooks observe truncates.
        """
        target, hooks = self._prepare(table)
        sql = f"DELETE FROM {qualify(target.schema, target.name)}"

        if not hooks:
            return self.execute(sql)

        context = self._statement_context(target, f"TRUNCATE TABLE {qualify(target.schema, target.name)}")
        count = self.execute(sql)
        self._fire(context, hooks, Action.TRUNCATE, [])
        return count
