from .row_lock import RowLock

__all__ = ["RowLock"]
