"""
Persisted audit state: the append-only log table and the hook table.

Remember, every column you add takes up more log space and slows every
audited write, and so does every index.
"""
from __future__ import annotations

import base64
import functools
import logging
import time
from datetime import date, datetime, time as dt_time, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Index,
    Integer,
    JSON,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    select,
    text,
)
from sqlalchemy.dialects.mysql import CHAR, DATETIME
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import AuditConfig
from .db.metrics import observe_log_write
from .db.session import DbSession
from .errors import AuditWriteError
from .models import Action, ActorContext, LogRecord

logger = logging.getLogger(__name__)


@functools.lru_cache(maxsize=None)
def build_tables(config: AuditConfig) -> tuple[Table, Table]:
    """Return (log_table, hook_table) for the given configuration."""
    metadata = MetaData(schema=config.schema)

    logs = Table(
        config.log_table,
        metadata,
        Column("id", CHAR(36), primary_key=True, comment="Unique identifier for each auditable event"),
        Column("schema_name", String(64), nullable=False, comment="Database the audited table is in"),
        Column("table_name", String(64), nullable=False, comment="Non-qualified name of the audited table"),
        Column("table_identity", BigInteger, nullable=False, comment="InnoDB table id. Changes with drop/create"),
        Column(
            "transaction_id",
            BigInteger,
            nullable=True,
            comment="InnoDB transaction id. May wrap, but unique paired with transaction_start_at",
        ),
        Column("row_id", String(255), nullable=True, comment="Primary key of the row, update/delete only"),
        Column("action", String(16), nullable=False, comment="insert, update, delete or truncate"),
        Column(
            "row_data",
            JSON,
            nullable=True,
            comment="Insert: new row. Delete: old row. Update: old values of changed columns",
        ),
        Column(
            "changed_fields",
            JSON,
            nullable=True,
            comment="New values of fields changed by UPDATE. Null except for row-level UPDATE events",
        ),
        Column("session_user_name", String(288), nullable=True, comment="Login whose statement caused the event"),
        Column("application_name", String(255), nullable=True, comment="Application name set on the session"),
        Column("client_addr", String(45), nullable=True, comment="Client IP address. Null for a local socket"),
        Column("client_port", Integer, nullable=True, comment="Client port. Null for a local socket"),
        Column("client_query", Text, nullable=True, comment="Statement that caused the event"),
        Column(
            "statement_only",
            Boolean,
            nullable=False,
            comment="1 if the event is from a statement-level hook, 0 for row level",
        ),
        Column("transaction_start_at", DATETIME(fsp=6), nullable=False, comment="Transaction start (UTC)"),
        Column("statement_start_at", DATETIME(fsp=6), nullable=False, comment="Statement start (UTC)"),
        Column("wall_clock_time", DATETIME(fsp=6), nullable=False, comment="Time the hook ran (UTC)"),
        comment="History of auditable actions on audited tables",
        mysql_engine="InnoDB",
    )
    Index(f"{config.log_table}_table_identity_idx", logs.c.table_identity)
    Index(f"{config.log_table}_statement_start_at_idx", logs.c.statement_start_at)
    Index(f"{config.log_table}_wall_clock_time_idx", logs.c.wall_clock_time)
    Index(f"{config.log_table}_action_idx", logs.c.action)

    hooks = Table(
        config.hook_table,
        metadata,
        Column("schema_name", String(64), nullable=False),
        Column("table_name", String(64), nullable=False),
        Column("level", String(16), nullable=False),
        Column("table_identity", BigInteger, nullable=False),
        Column("actions", JSON, nullable=False),
        Column("audit_query_text", Boolean, nullable=False),
        Column("excluded_columns", JSON, nullable=False),
        Column("config_version", Integer, nullable=False),
        Column(
            "installed_at",
            DATETIME(fsp=6),
            nullable=False,
            server_default=text("CURRENT_TIMESTAMP(6)"),
        ),
        PrimaryKeyConstraint("schema_name", "table_name", "level"),
        comment="Capture hooks installed on audited tables",
        mysql_engine="InnoDB",
    )

    return logs, hooks


def install(engine: Engine, config: AuditConfig) -> None:
    """Create the log and hook tables if they do not exist."""
    logs, hooks = build_tables(config)
    logs.metadata.create_all(engine, tables=[logs, hooks], checkfirst=True)
    logger.info("Audit tables ready: %s, %s", logs.fullname, hooks.fullname)


def uninstall(engine: Engine, config: AuditConfig) -> None:
    """Drop the log and hook tables. Every audit record is lost."""
    logs, hooks = build_tables(config)
    logs.metadata.drop_all(engine, tables=[logs, hooks], checkfirst=True)
    logger.warning("Audit tables dropped: %s, %s", logs.fullname, hooks.fullname)


def _to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_utc_naive(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _jsonable(value: Any) -> Any:
    """Convert a column value into something json.dumps accepts."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(_jsonable(v) for v in value)
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


def _row_json(row: Optional[Mapping[str, Any]]) -> Optional[dict[str, Any]]:
    if row is None:
        return None
    return {k: _jsonable(v) for k, v in row.items()}


class LogStore:
    """
    Append-only writer for audit records.

    There is no update or delete path: records leave the table only through
    external retention policies.
    """

    def __init__(self, config: AuditConfig) -> None:
        self.config = config
        self.table, _ = build_tables(config)

    def append(self, session: DbSession, record: LogRecord) -> None:
        """
        Insert one record through the caller's session.

        Raises:
            AuditWriteError: The insert failed. The caller's transaction must
                roll back; an audited change never commits without its record.
        """
        values = {
            "id": str(record.id),
            "schema_name": record.schema_name,
            "table_name": record.table_name,
            "table_identity": record.table_identity,
            "transaction_id": record.transaction_id,
            "row_id": record.row_identity,
            "action": record.action.value,
            "row_data": _row_json(record.row_data),
            "changed_fields": _row_json(record.changed_fields),
            "session_user_name": record.actor.session_user_name,
            "application_name": record.actor.application_name,
            "client_addr": record.actor.client_addr,
            "client_port": record.actor.client_port,
            "client_query": record.actor.client_query,
            "statement_only": record.statement_only,
            "transaction_start_at": _to_utc_naive(record.transaction_start_at),
            "statement_start_at": _to_utc_naive(record.statement_start_at),
            "wall_clock_time": _to_utc_naive(record.wall_clock_time),
        }

        start_time = time.monotonic()
        success = False
        try:
            session.execute(self.table.insert().values(**values))
            success = True
        except SQLAlchemyError as exc:
            raise AuditWriteError(
                f"Failed to write audit record {record.id} for "
                f"{record.schema_name}.{record.table_name}: {exc}"
            ) from exc
        finally:
            observe_log_write(record.table_name, time.monotonic() - start_time, success)


def record_from_row(row: Mapping[str, Any]) -> LogRecord:
    return LogRecord(
        id=UUID(row["id"]),
        schema_name=row["schema_name"],
        table_name=row["table_name"],
        table_identity=int(row["table_identity"]),
        transaction_id=int(row["transaction_id"]) if row["transaction_id"] is not None else None,
        row_identity=row["row_id"],
        action=Action(row["action"]),
        row_data=row["row_data"],
        changed_fields=row["changed_fields"],
        actor=ActorContext(
            session_user_name=row["session_user_name"],
            client_addr=row["client_addr"],
            client_port=row["client_port"],
            application_name=row["application_name"],
            client_query=row["client_query"],
        ),
        statement_only=bool(row["statement_only"]),
        transaction_start_at=_from_utc_naive(row["transaction_start_at"]),
        statement_start_at=_from_utc_naive(row["statement_start_at"]),
        wall_clock_time=_from_utc_naive(row["wall_clock_time"]),
    )


class LogReader:
    """Read-only access to audit records."""

    def __init__(self, config: AuditConfig) -> None:
        self.config = config
        self.table, _ = build_tables(config)

    def query(
        self,
        session: DbSession,
        *,
        table_identity: Optional[int] = None,
        action: Optional[Action | str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        transaction: Optional[tuple[int, datetime]] = None,
        limit: Optional[int] = None,
    ) -> list[LogRecord]:
        """
        Return records matching every given filter, oldest capture first.

        Args:
            table_identity: Only records of this table incarnation
            action: Only records of this action
            since: Captured at or after this time
            until: Captured strictly before this time
            transaction: (transaction_id, transaction_start_at) pair
            limit: Maximum number of records
        """
        logs = self.table
        stmt = select(logs)

        if table_identity is not None:
            stmt = stmt.where(logs.c.table_identity == table_identity)
        if action is not None:
            stmt = stmt.where(logs.c.action == Action(action).value)
        if since is not None:
            stmt = stmt.where(logs.c.wall_clock_time >= _to_utc_naive(since))
        if until is not None:
            stmt = stmt.where(logs.c.wall_clock_time < _to_utc_naive(until))
        if transaction is not None:
            transaction_id, transaction_start_at = transaction
            stmt = stmt.where(
                logs.c.transaction_id == transaction_id,
                logs.c.transaction_start_at == _to_utc_naive(transaction_start_at),
            )

        stmt = stmt.order_by(logs.c.wall_clock_time, logs.c.statement_only)
        if limit is not None:
            stmt = stmt.limit(limit)

        return [record_from_row(row) for row in session.fetch_all(stmt)]
