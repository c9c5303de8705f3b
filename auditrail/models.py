from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import UUID


class Action(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    TRUNCATE = "truncate"


class HookLevel(str, Enum):
    ROW = "row"
    STATEMENT = "statement"


class HookTiming(str, Enum):
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True)
class TableRef:
    """
    A resolved, audited relation.

    identity is the InnoDB table id; it changes when the table is dropped
    and recreated under the same name.

    primary_key_columns holds every primary-key column in key order;
    primary_key is set only when there is exactly one of them and is the
    column row_identity is taken from.
    """
    schema: str
    name: str
    identity: int
    columns: frozenset[str] = field(default_factory=frozenset)
    primary_key: Optional[str] = None
    primary_key_columns: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.primary_key is not None and not self.primary_key_columns:
            object.__setattr__(self, "primary_key_columns", (self.primary_key,))

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"


@dataclass(frozen=True)
class ActorContext:
    session_user_name: Optional[str] = None
    client_addr: Optional[str] = None
    client_port: Optional[int] = None
    application_name: Optional[str] = None
    client_query: Optional[str] = None


@dataclass(frozen=True)
class StatementContext:
    """
    Everything known about a data-modifying statement before any hook runs.

    Sourced once per statement by the host integration layer.
    """
    table: TableRef
    actor: ActorContext
    transaction_id: Optional[int]
    transaction_start_at: datetime
    statement_start_at: datetime

    def with_transaction_id(self, transaction_id: Optional[int]) -> StatementContext:
        return replace(self, transaction_id=transaction_id)

    def at(self, wall_clock_time: datetime) -> CaptureContext:
        return CaptureContext(
            table=self.table,
            actor=self.actor,
            transaction_id=self.transaction_id,
            transaction_start_at=self.transaction_start_at,
            statement_start_at=self.statement_start_at,
            wall_clock_time=wall_clock_time,
        )


@dataclass(frozen=True)
class CaptureContext:
    table: TableRef
    actor: ActorContext
    transaction_id: Optional[int]
    transaction_start_at: datetime
    statement_start_at: datetime
    wall_clock_time: datetime


@dataclass(frozen=True)
class LogRecord:
    """
    One immutable audit entry.

    row_data: insert -> new row, delete -> old row, update -> old values of
    the changed columns. None for statement-level events.
    changed_fields: new values of changed columns, row-level update only.
    """
    id: UUID
    schema_name: str
    table_name: str
    table_identity: int
    transaction_id: Optional[int]
    row_identity: Optional[str]
    action: Action
    row_data: Optional[Mapping[str, Any]]
    changed_fields: Optional[Mapping[str, Any]]
    actor: ActorContext
    statement_only: bool
    transaction_start_at: datetime
    statement_start_at: datetime
    wall_clock_time: datetime


class Suppressed:
    """Diff engine outcome for an update that changed nothing worth logging."""

    _instance: Optional[Suppressed] = None

    def __new__(cls) -> Suppressed:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SUPPRESSED"

    def __bool__(self) -> bool:
        return False


SUPPRESSED = Suppressed()


@dataclass(frozen=True)
class InstalledHook:
    """A capture hook as stored in the hook table."""
    level: HookLevel
    actions: frozenset[Action]
    audit_query_text: bool = True
    excluded_columns: frozenset[str] = field(default_factory=frozenset)
    config_version: int = 1

    def covers(self, action: Action) -> bool:
        return action in self.actions


@dataclass(frozen=True)
class HookSet:
    """The hooks currently installed on one table; empty when not enrolled."""
    row: Optional[InstalledHook] = None
    statement: Optional[InstalledHook] = None

    def __bool__(self) -> bool:
        return self.row is not None or self.statement is not None

    def row_hook_for(self, action: Action) -> Optional[InstalledHook]:
        if self.row is not None and self.row.covers(action):
            return self.row
        return None

    def statement_hook_for(self, action: Action) -> Optional[InstalledHook]:
        if self.statement is not None and self.statement.covers(action):
            return self.statement
        return None


@dataclass(frozen=True)
class HookInvocation:
    """A single call into the capture dispatcher."""
    timing: HookTiming
    level: HookLevel
    action: Action
    hook: InstalledHook
    statement: StatementContext
    old: Optional[Mapping[str, Any]] = None
    new: Optional[Mapping[str, Any]] = None
