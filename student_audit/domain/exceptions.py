"""Exception hierarchy for the audit domain.

All errors raised by the domain core and storage adapters derive from
AuditError. Adapters catch these inside their write path, roll back, and
report them to the caller as Result failures.
"""

from typing import Any, Optional


class AuditError(Exception):
    """Base exception for all audit-related errors."""
    pass


class RecordNotFound(AuditError):
    """Raised when an operation references a record that does not exist.

    Attributes:
        record_id: The identifier that was not found
    """

    def __init__(self, record_id: Any, message: Optional[str] = None):
        super().__init__(message or f"Record not found: {record_id}")
        self.record_id = record_id


class InvalidActionTag(AuditError):
    """Raised when a change event carries an unrecognized action tag.

    Attributes:
        action: The rejected action value
    """

    def __init__(self, action: Any):
        super().__init__(f"Invalid action tag: {action!r}")
        self.action = action


class AuditWriteFailed(AuditError):
    """Raised when an audit entry could not be appended to the log store.

    The enclosing transaction must be rolled back when this is raised.

    Attributes:
        record_id: Identifier of the record whose change was being logged
        action: Action tag of the change
    """

    def __init__(self, message: str, record_id: Any = None, action: Any = None):
        super().__init__(message)
        self.record_id = record_id
        self.action = action


class RecordValidationError(AuditError):
    """Raised when record fields fail validation.

    Attributes:
        details: Validation messages keyed by field
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}

    @classmethod
    def from_pydantic(cls, error) -> 'RecordValidationError':
        """Build from a pydantic ValidationError, keyed by field location."""
        details = {}
        for item in error.errors():
            field = ".".join(str(part) for part in item.get("loc", ())) or "__root__"
            details[field] = item.get("msg", "invalid value")
        summary = "; ".join(f"{field}: {msg}" for field, msg in details.items())
        return cls(f"Invalid record fields: {summary}", details=details)


class StorageError(AuditError):
    """Raised when a storage operation fails.

    Attributes:
        operation: The storage operation that failed (connect, add_record, ...)
        details: Additional error context (never contains credentials)
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}
