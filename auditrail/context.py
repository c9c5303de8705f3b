from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from .db.session import DbSession
from .models import ActorContext, StatementContext, TableRef


def _utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


def parse_client_host(host: Optional[str]) -> tuple[Optional[str], Optional[int]]:
    """
    Split a PROCESSLIST HOST value into (address, port).

    Local socket connections report "localhost" without a port and map to
    (None, None).
    """
    if not host or host == "localhost":
        return None, None

    addr, sep, port = host.rpartition(":")
    if not sep or not port.isdigit():
        return host, None
    if addr.startswith("[") and addr.endswith("]"):
        addr = addr[1:-1]
    return addr, int(port)


class ContextProvider:
    """
    Reads actor, transaction and timing metadata from the MySQL session.

    All timestamps are read from the server clock as UTC_TIMESTAMP(6), each
    in its own SELECT, so transaction_start_at <= statement_start_at <=
    wall_clock_time. The session time zone is left untouched.
    """

    def __init__(self, application_name: Optional[str] = None) -> None:
        self.application_name = application_name

    def begin(self, session: DbSession) -> datetime:
        """Return the transaction start time."""
        return _utc(session.execute_scalar("SELECT UTC_TIMESTAMP(6)"))

    def actor(self, session: DbSession, statement_text: Optional[str]) -> ActorContext:
        row = session.fetch_one(
            "SELECT SESSION_USER() AS session_user_name, "
            "(SELECT HOST FROM information_schema.PROCESSLIST WHERE ID = CONNECTION_ID()) AS host"
        )
        addr, port = parse_client_host(row["host"] if row else None)
        return ActorContext(
            session_user_name=row["session_user_name"] if row else None,
            client_addr=addr,
            client_port=port,
            application_name=self.application_name,
            client_query=statement_text,
        )

    def statement(
        self,
        session: DbSession,
        table: TableRef,
        transaction_start_at: datetime,
        statement_text: Optional[str],
    ) -> StatementContext:
        """
        Context for one data-modifying statement; call before it runs.

        transaction_id is filled in later by with_transaction_id(), once the
        statement has written and InnoDB has assigned a real id.
        """
        statement_start_at = _utc(session.execute_scalar("SELECT UTC_TIMESTAMP(6)"))
        return StatementContext(
            table=table,
            actor=self.actor(session, statement_text),
            transaction_id=None,
            transaction_start_at=transaction_start_at,
            statement_start_at=statement_start_at,
        )

    def transaction_id(self, session: DbSession) -> Optional[int]:
        # INNODB_TRX requires the PROCESS privilege
        value = session.execute_scalar(
            "SELECT trx_id FROM information_schema.INNODB_TRX "
            "WHERE trx_mysql_thread_id = CONNECTION_ID()"
        )
        return int(value) if value is not None else None

    def wall_clock(self, session: DbSession) -> datetime:
        # UTC_TIMESTAMP() is fixed per statement; a fresh SELECT reads the time of this call
        return _utc(session.execute_scalar("SELECT UTC_TIMESTAMP(6)"))
