from __future__ import annotations

import logging
from typing import Optional

from .context import ContextProvider
from .db.metrics import observe_capture
from .db.session import DbSession
from .diff import compute
from .errors import ConfigurationError
from .models import HookInvocation, HookLevel, HookTiming, LogRecord, Suppressed
from .store import LogStore

logger = logging.getLogger(__name__)


class CaptureDispatcher:
    """
    Runs one hook invocation: diff, then persist.

    Called once per affected row for row-level hooks and once per statement
    for statement-level hooks, always after the change has been applied and
    always inside the transaction that applied it.

    Design Principles:
    - Exactly one log write per non-suppressed invocation
    - No write on suppression
    - No retries: a failed write propagates and the caller's transaction
      rolls back with it
    """

    def __init__(self, store: LogStore, provider: Optional[ContextProvider] = None) -> None:
        self.store = store
        self.provider = provider or ContextProvider()

    def dispatch(self, session: DbSession, invocation: HookInvocation) -> Optional[LogRecord]:
        """
        Capture one invocation.

        Returns:
            The persisted LogRecord, or None when the diff was suppressed

        Raises:
            ConfigurationError: Invoked as a BEFORE hook, or with an
                action/level combination the diff engine cannot handle
            AuditWriteError: The log write failed
        """
        table = invocation.statement.table

        if invocation.timing is not HookTiming.AFTER:
            raise ConfigurationError(
                f"Capture hook on {table.qualified_name} may only run after the change "
                f"(invoked {invocation.timing.value})"
            )

        action_label = getattr(invocation.action, "value", str(invocation.action))
        statement_only = invocation.level is HookLevel.STATEMENT
        context = invocation.statement.at(self.provider.wall_clock(session))

        try:
            result = compute(
                invocation.old,
                invocation.new,
                invocation.action,
                statement_only,
                invocation.hook.excluded_columns,
                invocation.hook.audit_query_text,
                context=context,
                current_columns=table.columns or None,
            )
        except ConfigurationError:
            observe_capture(table.name, action_label, "error")
            raise

        if isinstance(result, Suppressed):
            logger.debug(
                "Suppressed %s on %s: only excluded or unchanged columns changed",
                action_label,
                table.qualified_name,
            )
            observe_capture(table.name, action_label, "suppressed")
            return None

        try:
            self.store.append(session, result)
        except Exception:
            observe_capture(table.name, action_label, "error")
            raise

        observe_capture(table.name, action_label, "written")
        return result
