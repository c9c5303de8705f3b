from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import inspect

from auditrail.db.session import DbSession
from auditrail.errors import AuditWriteError
from auditrail.models import Action, ActorContext, LogRecord
from auditrail.store import LogStore, build_tables


T0 = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


def _record(action: Action = Action.UPDATE, **overrides) -> LogRecord:
    fields = dict(
        id=uuid.uuid4(),
        schema_name="app",
        table_name="invoices",
        table_identity=4242,
        transaction_id=31337,
        row_identity="17",
        action=action,
        row_data={"amount": Decimal("10.50"), "due": T0},
        changed_fields={"amount": Decimal("12.00"), "due": T0 + timedelta(days=1)},
        actor=ActorContext(
            session_user_name="app@10.1.2.3",
            client_addr="10.1.2.3",
            client_port=40000,
            application_name="billing",
            client_query="UPDATE invoices SET amount = :amount",
        ),
        statement_only=False,
        transaction_start_at=T0,
        statement_start_at=T0 + timedelta(milliseconds=1),
        wall_clock_time=T0 + timedelta(milliseconds=2),
    )
    fields.update(overrides)
    return LogRecord(**fields)


def test_install_creates_indexed_log_table(engine, audit_config) -> None:
    insp = inspect(engine)
    tables = set(insp.get_table_names())
    assert audit_config.log_table in tables
    assert audit_config.hook_table in tables

    indexed = {tuple(ix["column_names"]) for ix in insp.get_indexes(audit_config.log_table)}
    assert ("table_identity",) in indexed
    assert ("statement_start_at",) in indexed
    assert ("wall_clock_time",) in indexed
    assert ("action",) in indexed


def test_append_then_query(engine, audit_config, reader) -> None:
    record = _record()

    with DbSession(engine) as session:
        LogStore(audit_config).append(session, record)

    with DbSession(engine) as session:
        (stored,) = reader.query(session, table_identity=4242)

    assert stored.id == record.id
    assert stored.action is Action.UPDATE
    assert stored.row_identity == "17"
    assert stored.row_data == {"amount": "10.50", "due": T0.isoformat()}
    assert stored.changed_fields["amount"] == "12.00"
    assert stored.actor == record.actor
    assert stored.statement_only is False
    assert stored.transaction_start_at == T0
    assert stored.wall_clock_time == record.wall_clock_time


def test_query_filters(engine, audit_config, reader) -> None:
    store = LogStore(audit_config)
    insert = _record(Action.INSERT, row_identity=None, changed_fields=None)
    truncate = _record(
        Action.TRUNCATE,
        row_identity=None,
        row_data=None,
        changed_fields=None,
        statement_only=True,
        transaction_id=99,
        wall_clock_time=T0 + timedelta(seconds=30),
    )

    with DbSession(engine) as session:
        store.append(session, insert)
        store.append(session, truncate)

    with DbSession(engine) as session:
        assert [r.id for r in reader.query(session, action="truncate")] == [truncate.id]
        assert [r.id for r in reader.query(session, since=T0 + timedelta(seconds=1))] == [truncate.id]
        assert [r.id for r in reader.query(session, until=T0 + timedelta(seconds=1))] == [insert.id]
        assert [r.id for r in reader.query(session, transaction=(99, T0))] == [truncate.id]
        assert [r.id for r in reader.query(session)] == [insert.id, truncate.id]
        assert len(reader.query(session, limit=1)) == 1
        assert reader.query(session, table_identity=1) == []


def test_duplicate_id_is_a_write_error(engine, audit_config) -> None:
    store = LogStore(audit_config)
    record = _record()

    with pytest.raises(AuditWriteError):
        with DbSession(engine) as session:
            store.append(session, record)
            store.append(session, record)


def test_build_tables_is_cached_per_config(audit_config) -> None:
    assert build_tables(audit_config) is build_tables(audit_config)
