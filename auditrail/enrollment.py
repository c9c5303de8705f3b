from __future__ import annotations

import logging
from typing import Iterable, Optional

from sqlalchemy import delete, func, select

from .catalog import current_database, describe_table
from .config import AuditConfig, EnrollmentConfig, normalize_columns
from .db.metrics import observe_enrollment_change
from .db.session import DbSession
from .errors import ConfigurationError
from .models import Action, HookLevel, HookSet, InstalledHook, TableRef
from .store import build_tables

logger = logging.getLogger(__name__)


def plan_hooks(config: EnrollmentConfig) -> list[InstalledHook]:
    """
    Decide which hooks a configuration installs.

    audit_rows  audit_inserts  row level               statement level
    true        true           insert, update, delete  truncate
    true        false          update, delete          insert, truncate
    false       (ignored)      -                       insert, update, delete, truncate
    """
    if not config.audit_rows:
        return [
            InstalledHook(
                level=HookLevel.STATEMENT,
                actions=frozenset(Action),
                audit_query_text=config.audit_query_text,
                config_version=config.version,
            )
        ]

    row_actions = {Action.UPDATE, Action.DELETE}
    statement_actions = {Action.TRUNCATE}
    if config.audit_inserts:
        row_actions.add(Action.INSERT)
    else:
        statement_actions.add(Action.INSERT)

    return [
        InstalledHook(
            level=HookLevel.ROW,
            actions=frozenset(row_actions),
            audit_query_text=config.audit_query_text,
            excluded_columns=config.excluded_columns,
            config_version=config.version,
        ),
        InstalledHook(
            level=HookLevel.STATEMENT,
            actions=frozenset(statement_actions),
            audit_query_text=config.audit_query_text,
            config_version=config.version,
        ),
    ]


def _action_names(actions: Iterable[Action]) -> list[str]:
    order = list(Action)
    return [a.value for a in sorted(actions, key=order.index)]


class EnrollmentManager:
    """
    Installs and removes capture hooks on audited tables.

    A table's hooks are rows in the hook table; the set of rows *is* the
    enrollment. enable() replaces the whole set inside the caller's
    transaction while holding InnoDB exclusive locks on those rows, and
    audited statements read the set under shared locks, so no statement can
    see a half-replaced configuration.

    Usage:
        manager = EnrollmentManager(AuditConfig())
        with DbSession(engine) as session:
            manager.enable(session, "shop.orders", excluded_columns={"updated_at"})
    """

    def __init__(self, config: Optional[AuditConfig] = None) -> None:
        self.config = config or AuditConfig()
        self.log_table, self.hook_table = build_tables(self.config)

    def _guard_audit_tables(self, session: DbSession, target: TableRef) -> None:
        audit_schema = self.config.schema or current_database(session)
        if target.schema == audit_schema and target.name in (
            self.config.log_table,
            self.config.hook_table,
        ):
            raise ConfigurationError(f"Refusing to audit audit table {target.qualified_name}")

    def _table_filter(self, target: TableRef):
        hooks = self.hook_table
        return (hooks.c.schema_name == target.schema, hooks.c.table_name == target.name)

    def enable(
        self,
        session: DbSession,
        table: str,
        audit_rows: bool = True,
        audit_query_text: bool = True,
        audit_inserts: bool = True,
        excluded_columns: Iterable[str] | None = None,
    ) -> EnrollmentConfig:
        """
        Add auditing to a table, replacing any previous configuration.

        Args:
            session: Active DbSession; the change commits with it
            table: "table" or "schema.table"
            audit_rows: Record each row change, or only statement-level events
            audit_query_text: Record the statement text of each event
            audit_inserts: Audit inserts per row (else per statement only)
            excluded_columns: Columns never logged; updates touching only these
                columns are not logged at all

        Returns:
            The configuration now in force, with its version

        Raises:
            TableNotFoundError: The table does not exist
            ConfigurationError: The table is one of the audit tables
            sqlalchemy.exc.OperationalError: InnoDB aborted the transaction
                with a deadlock (1213) or lock wait timeout (1205). Two
                concurrent first-time enables of the same table both take
                gap locks on the empty hook range and one of them is rolled
                back. The enrollment state stays consistent; re-issue the
                whole transaction.
        """
        target = describe_table(session, table)
        self._guard_audit_tables(session, target)

        hooks = self.hook_table
        existing = session.fetch_all(
            select(hooks.c.level, hooks.c.config_version)
            .where(*self._table_filter(target))
            .with_for_update()
        )
        version = max((r["config_version"] for r in existing), default=0) + 1

        config = EnrollmentConfig(
            audit_rows=audit_rows,
            audit_query_text=audit_query_text,
            audit_inserts=audit_inserts,
            excluded_columns=normalize_columns(excluded_columns),
            version=version,
        )

        unknown = sorted(config.excluded_columns - target.columns)
        if unknown:
            logger.warning(
                "Excluded columns %s are not columns of %s",
                ", ".join(unknown),
                target.qualified_name,
            )

        session.execute(delete(hooks).where(*self._table_filter(target)))
        for hook in plan_hooks(config):
            session.execute(
                hooks.insert().values(
                    schema_name=target.schema,
                    table_name=target.name,
                    level=hook.level.value,
                    table_identity=target.identity,
                    actions=_action_names(hook.actions),
                    audit_query_text=hook.audit_query_text,
                    excluded_columns=sorted(hook.excluded_columns),
                    config_version=hook.config_version,
                )
            )
            logger.info(
                "Installed %s-level audit hook on %s for %s (query text %s, excluded: %s, version %d)",
                hook.level.value,
                target.qualified_name,
                ", ".join(_action_names(hook.actions)),
                "on" if hook.audit_query_text else "off",
                ", ".join(sorted(hook.excluded_columns)) or "none",
                hook.config_version,
            )

        observe_enrollment_change("enable")
        return config

    def disable(self, session: DbSession, table: str) -> int:
        """
        Remove auditing from a table.

        Removing hooks that are not installed is a no-op.

        Returns:
            Number of hooks removed

        Raises:
            TableNotFoundError: The table does not exist
        """
        target = describe_table(session, table)
        removed = session.execute(delete(self.hook_table).where(*self._table_filter(target)))
        if removed:
            logger.info("Removed %d audit hook(s) from %s", removed, target.qualified_name)
        else:
            logger.debug("No audit hooks installed on %s", target.qualified_name)
        observe_enrollment_change("disable")
        return removed

    def hooks_for(self, session: DbSession, target: TableRef) -> HookSet:
        """
        Read the hooks installed on a table under shared locks.

        Hook rows recorded for an earlier incarnation of the table (dropped
        and recreated since enable) are ignored.
        """
        hooks = self.hook_table
        rows = session.fetch_all(
            select(hooks)
            .where(*self._table_filter(target), hooks.c.table_identity == target.identity)
            .with_for_update(read=True)
        )

        installed = {}
        for row in rows:
            level = HookLevel(row["level"])
            installed[level] = InstalledHook(
                level=level,
                actions=frozenset(Action(a) for a in row["actions"]),
                audit_query_text=bool(row["audit_query_text"]),
                excluded_columns=frozenset(row["excluded_columns"]),
                config_version=row["config_version"],
            )

        return HookSet(
            row=installed.get(HookLevel.ROW),
            statement=installed.get(HookLevel.STATEMENT),
        )

    def count_hooks(self, session: DbSession, table: str) -> int:
        target = describe_table(session, table)
        return session.execute_scalar(
            select(func.count()).select_from(self.hook_table).where(*self._table_filter(target))
        )
