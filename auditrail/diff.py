"""
Audit record construction.

compute() turns the row versions of one hook invocation into a LogRecord,
or into SUPPRESSED when an update changed nothing outside the excluded
columns. It performs no I/O; everything it needs is passed in.
"""
from __future__ import annotations

import uuid
from dataclasses import replace
from typing import Any, Callable, Collection, Mapping, Optional

from .errors import ConfigurationError
from .models import SUPPRESSED, Action, CaptureContext, LogRecord, Suppressed


def _without(row: Mapping[str, Any], excluded: Collection[str]) -> dict[str, Any]:
    return {k: v for k, v in row.items() if k not in excluded}


def _distinct(a: Any, b: Any) -> bool:
    # NULL-aware comparison: NULL vs NULL is not a change, NULL vs value is
    if a is None or b is None:
        return (a is None) != (b is None)
    return a != b


def _row_identity(old: Optional[Mapping[str, Any]], primary_key: Optional[str]) -> Optional[str]:
    if old is None or primary_key is None:
        return None
    value = old.get(primary_key)
    if value is None:
        return None
    return str(value)


def diff_update(
    old: Mapping[str, Any],
    new: Mapping[str, Any],
    excluded_columns: Collection[str],
    current_columns: Optional[Collection[str]] = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Return (row_data, changed_fields) for a row-level update.

    row_data holds the old values and changed_fields the new values of the
    columns that actually changed. Columns missing from current_columns are
    dropped from the old row first (a cached row shape may still carry
    columns that no longer exist).
    """
    old_reduced = _without(old, excluded_columns)
    if current_columns is not None:
        old_reduced = {k: v for k, v in old_reduced.items() if k in current_columns}

    changed_fields = {
        key: value
        for key, value in new.items()
        if key in old_reduced and _distinct(value, old_reduced[key])
    }
    row_data = {key: old_reduced[key] for key in changed_fields}
    return row_data, changed_fields


def compute(
    old: Optional[Mapping[str, Any]],
    new: Optional[Mapping[str, Any]],
    action: Action,
    statement_only: bool,
    excluded_columns: Collection[str],
    capture_query_text: bool,
    *,
    context: CaptureContext,
    current_columns: Optional[Collection[str]] = None,
    new_id: Callable[[], uuid.UUID] = uuid.uuid4,
) -> LogRecord | Suppressed:
    """
    Build the audit record for one hook invocation.

    Args:
        old: Row before the change (update/delete, row level)
        new: Row after the change (insert/update, row level)
        action: Operation that fired the hook
        statement_only: True for statement-level hooks
        excluded_columns: Columns never written to the log
        capture_query_text: False forces client_query to None
        context: Table, actor, transaction and timing metadata
        current_columns: Columns of the table as it is now; used to filter the
            old row on updates. None disables the filter.
        new_id: Record id factory

    Returns:
        A LogRecord, or SUPPRESSED when an update only touched excluded or
        unchanged columns.

    Raises:
        ConfigurationError: Unknown action, row-level truncate, or a row-level
            event without the row versions it requires.
    """
    try:
        action = Action(action)
    except ValueError:
        raise ConfigurationError(f"Unhandled audit action: {action!r}") from None

    row_data: Optional[dict[str, Any]] = None
    changed_fields: Optional[dict[str, Any]] = None
    row_identity: Optional[str] = None

    if statement_only:
        pass
    elif action is Action.UPDATE:
        if old is None or new is None:
            raise ConfigurationError("Row-level update requires both old and new rows")
        row_data, changed_fields = diff_update(old, new, excluded_columns, current_columns)
        if not changed_fields:
            return SUPPRESSED
        row_identity = _row_identity(old, context.table.primary_key)
    elif action is Action.DELETE:
        if old is None:
            raise ConfigurationError("Row-level delete requires the old row")
        row_data = _without(old, excluded_columns)
        row_identity = _row_identity(old, context.table.primary_key)
    elif action is Action.INSERT:
        if new is None:
            raise ConfigurationError("Row-level insert requires the new row")
        row_data = _without(new, excluded_columns)
    else:
        raise ConfigurationError(f"Unhandled hook invocation: {action.value}, row level")

    actor = context.actor
    if not capture_query_text and actor.client_query is not None:
        actor = replace(actor, client_query=None)

    return LogRecord(
        id=new_id(),
        schema_name=context.table.schema,
        table_name=context.table.name,
        table_identity=context.table.identity,
        transaction_id=context.transaction_id,
        row_identity=row_identity,
        action=action,
        row_data=row_data,
        changed_fields=changed_fields,
        actor=actor,
        statement_only=statement_only,
        transaction_start_at=context.transaction_start_at,
        statement_start_at=context.statement_start_at,
        wall_clock_time=context.wall_clock_time,
    )
