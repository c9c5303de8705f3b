from .locking.row_lock import RowLock
from .session import DbSession

__all__ = [
    "DbSession",
    "RowLock",
]
