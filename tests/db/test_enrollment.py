from __future__ import annotations

import logging

import pytest

from auditrail.catalog import describe_table
from auditrail.db.session import DbSession
from auditrail.errors import ConfigurationError, TableNotFoundError
from auditrail.models import Action, HookLevel
from auditrail.registry import enrolled_tables


def _hooks(engine, manager, table):
    with DbSession(engine) as session:
        return manager.hooks_for(session, describe_table(session, table))


def test_enable_installs_row_and_statement_hooks(engine, manager, fresh_table) -> None:
    with DbSession(engine) as session:
        config = manager.enable(session, fresh_table, excluded_columns={"updated_at"})

    hooks = _hooks(engine, manager, fresh_table)

    assert config.version == 1
    assert hooks.row.actions == {Action.INSERT, Action.UPDATE, Action.DELETE}
    assert hooks.row.excluded_columns == {"updated_at"}
    assert hooks.statement.actions == {Action.TRUNCATE}


def test_enable_statement_only(engine, manager, fresh_table) -> None:
    with DbSession(engine) as session:
        manager.enable(session, fresh_table, audit_rows=False)

    hooks = _hooks(engine, manager, fresh_table)

    assert hooks.row is None
    assert hooks.statement.level is HookLevel.STATEMENT
    assert hooks.statement.actions == set(Action)


def test_enable_twice_replaces_configuration(engine, manager, fresh_table) -> None:
    with DbSession(engine) as session:
        manager.enable(session, fresh_table, excluded_columns={"updated_at"})
    with DbSession(engine) as session:
        config = manager.enable(session, fresh_table, excluded_columns={"email"}, audit_query_text=False)

    hooks = _hooks(engine, manager, fresh_table)

    assert config.version == 2
    assert hooks.row.excluded_columns == {"email"}
    assert hooks.row.audit_query_text is False
    assert hooks.row.config_version == 2
    with DbSession(engine) as session:
        assert manager.count_hooks(session, fresh_table) == 2


def test_enable_rolls_back_with_the_transaction(engine, manager, fresh_table) -> None:
    with pytest.raises(RuntimeError):
        with DbSession(engine) as session:
            manager.enable(session, fresh_table)
            raise RuntimeError("abort")

    assert not _hooks(engine, manager, fresh_table)


def test_disable_twice_is_not_an_error(engine, manager, fresh_table) -> None:
    with DbSession(engine) as session:
        manager.enable(session, fresh_table)
    with DbSession(engine) as session:
        assert manager.disable(session, fresh_table) == 2
    with DbSession(engine) as session:
        assert manager.disable(session, fresh_table) == 0

    assert not _hooks(engine, manager, fresh_table)


def test_unknown_table(engine, manager) -> None:
    with DbSession(engine) as session:
        with pytest.raises(TableNotFoundError):
            manager.enable(session, "no_such_table_here")
        with pytest.raises(TableNotFoundError):
            manager.disable(session, "no_such_table_here")


def test_audit_tables_cannot_be_enrolled(engine, manager, audit_config) -> None:
    with DbSession(engine) as session:
        with pytest.raises(ConfigurationError):
            manager.enable(session, audit_config.log_table)


def test_unknown_excluded_column_is_logged(engine, manager, fresh_table, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="auditrail.enrollment"):
        with DbSession(engine) as session:
            manager.enable(session, fresh_table, excluded_columns={"not_a_column"})

    assert "not_a_column" in caplog.text


def test_registry_lists_enrolled_tables_in_order(engine, manager, audit_config, table_factory) -> None:
    first = table_factory("id INT PRIMARY KEY")
    second = table_factory("id INT PRIMARY KEY")
    ignored = table_factory("id INT PRIMARY KEY")

    with DbSession(engine) as session:
        manager.enable(session, second)
        manager.enable(session, first, audit_rows=False)

    with DbSession(engine) as session:
        schema = session.execute_scalar("SELECT DATABASE()")
        listed = enrolled_tables(session, audit_config)

    assert listed == sorted([(schema, first), (schema, second)])
    assert (schema, ignored) not in listed


def test_recreated_table_is_no_longer_enrolled(engine, manager, audit_config, fresh_table) -> None:
    with DbSession(engine) as session:
        manager.enable(session, fresh_table)

    with engine.begin() as conn:
        conn.exec_driver_sql(f"DROP TABLE `{fresh_table}`")
        conn.exec_driver_sql(f"CREATE TABLE `{fresh_table}` (id BIGINT PRIMARY KEY) ENGINE=InnoDB")

    with DbSession(engine) as session:
        assert enrolled_tables(session, audit_config) == []
    assert not _hooks(engine, manager, fresh_table)
