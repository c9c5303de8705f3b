from .config import AuditConfig, EnrollmentConfig
from .dispatcher import CaptureDispatcher
from .enrollment import EnrollmentManager
from .host import AuditedSession
from .models import Action, LogRecord, SUPPRESSED
from .registry import enrolled_tables
from .store import LogReader, LogStore, install, uninstall

__all__ = [
    "Action",
    "AuditConfig",
    "AuditedSession",
    "CaptureDispatcher",
    "EnrollmentConfig",
    "EnrollmentManager",
    "LogReader",
    "LogRecord",
    "LogStore",
    "SUPPRESSED",
    "enrolled_tables",
    "install",
    "uninstall",
]
