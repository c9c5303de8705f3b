from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .db.helpers import _validate_identifier


@dataclass(frozen=True)
class AuditConfig:
    """
    Where audit state lives.

    schema=None places the log and hook tables in the connection's
    default database.
    """
    schema: Optional[str] = None
    log_table: str = "audit_logs"
    hook_table: str = "audit_hooks"
    application_name: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.schema is not None:
            _validate_identifier(self.schema, "schema")
        _validate_identifier(self.log_table, "log_table")
        _validate_identifier(self.hook_table, "hook_table")
        if self.log_table == self.hook_table:
            raise ValueError("log_table and hook_table must be different tables")


@dataclass(frozen=True)
class EnrollmentConfig:
    audit_rows: bool = True
    audit_query_text: bool = True
    audit_inserts: bool = True
    excluded_columns: frozenset[str] = field(default_factory=frozenset)
    version: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.excluded_columns, frozenset):
            object.__setattr__(
                self, "excluded_columns", normalize_columns(self.excluded_columns)
            )
        if self.version < 1:
            raise ValueError("version must be >= 1")


def normalize_columns(columns: Iterable[str] | None) -> frozenset[str]:
    if columns is None:
        return frozenset()
    if isinstance(columns, str):
        # a bare string would otherwise be split into characters
        raise TypeError("excluded_columns must be a collection of column names, not a string")
    return frozenset(_validate_identifier(c, "excluded column") for c in columns)
