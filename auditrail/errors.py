class AuditrailError(Exception):
    """Base exception for auditrail errors."""


class ConfigurationError(AuditrailError):
    """Hook wiring or enrollment defect; never a runtime data condition."""


class TableNotFoundError(ConfigurationError):
    """The referenced table does not exist."""


class AuditWriteError(AuditrailError):
    """Any failure while persisting an audit record."""
