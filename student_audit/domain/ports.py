"""Domain Ports - Abstract Contracts for Audited Storage.

This module defines the Port interfaces (abstract contracts) that storage
Adapters must implement. Following Hexagonal Architecture, the Domain Core
defines what it needs, not how it's provided.

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Adapters (DuckDB, PostgreSQL) implement these ports
    - Write operations return Result objects instead of raising
    - The audit log is reached only through a transaction-bound AuditLogPort
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Optional, TypeVar, Union, TYPE_CHECKING

from student_audit.domain.exceptions import (
    AuditError,
    AuditWriteFailed,
    InvalidActionTag,
    RecordNotFound,
    RecordValidationError,
    StorageError,
)
from student_audit.domain.models import ActionTag, AuditEntry, StudentRecord

if TYPE_CHECKING:
    import pandas as pd

# Type variable for Result generic
T = TypeVar('T')

__all__ = [
    "Result",
    "AuditLogPort",
    "StoragePort",
    "AuditError",
    "AuditWriteFailed",
    "InvalidActionTag",
    "RecordNotFound",
    "RecordValidationError",
    "StorageError",
]


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (RecordNotFound, StorageError, etc.)
        error_details: Additional error context (record_id, operation, etc.)

    Example:
        ```python
        result = storage.update_record(1, {"grade": 95})
        if result.is_success():
            print(result.value.grade)
        elif result.error_type == "RecordNotFound":
            ...
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (e.g., "RecordNotFound", "StorageError")
            error_details: Additional context (record_id, operation, etc.)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Audit Log Port
# ============================================================================

class AuditLogPort(ABC):
    """Abstract contract for the append-only audit log store.

    Implementations are bound to an open transaction: every entry they append
    is committed or rolled back together with the primary write that caused it.
    The ChangeAuditor is the only caller.
    """

    @abstractmethod
    def append_entry(self, record_id: int, action: ActionTag, timestamp: datetime) -> int:
        """Append one entry to the log.

        Parameters:
            record_id: Identifier of the changed record
            action: Kind of change
            timestamp: Write timestamp assigned by the auditor

        Returns:
            int: Identifier of the new entry

        Raises:
            Exception: Any driver error; the auditor wraps it in AuditWriteFailed
        """
        pass

    @abstractmethod
    def last_timestamp(self, record_id: int) -> Optional[datetime]:
        """Return the most recent entry timestamp for a record, if any."""
        pass


# ============================================================================
# Storage Port
# ============================================================================

class StoragePort(ABC):
    """Abstract contract for the audited primary record store.

    Every successful add_record/update_record produces exactly one audit entry
    in the same transaction. A failed call leaves both stores unchanged.

    Example Usage:
        ```python
        storage = DuckDBAdapter()
        storage.initialize_schema()

        result = storage.add_record("Alice", 90)
        if result.is_success():
            storage.update_record(result.value, {"grade": 95})

        entries = storage.list_audit_entries(record_id=result.value).value
        ```
    """

    @abstractmethod
    def initialize_schema(self) -> Result[None]:
        """Create the students and students_log tables (idempotent)."""
        pass

    @abstractmethod
    def add_record(self, name: str, grade: float) -> Result[int]:
        """Insert a record and its INSERT audit entry atomically.

        Parameters:
            name: Student name
            grade: Numeric grade between 0 and 100

        Returns:
            Result[int]: Identifier of the new record, or failure
        """
        pass

    @abstractmethod
    def update_record(self, record_id: int, fields: dict) -> Result[StudentRecord]:
        """Apply field changes and log an UPDATE audit entry atomically.

        Parameters:
            record_id: Identifier of an existing record
            fields: Mapping of field name to new value (name, grade)

        Returns:
            Result[StudentRecord]: The updated record, or failure.
            error_type is "RecordNotFound" when record_id does not exist.
        """
        pass

    @abstractmethod
    def get_record(self, record_id: int) -> Result[StudentRecord]:
        """Fetch a single record by identifier."""
        pass

    @abstractmethod
    def list_records(self) -> Result[list[StudentRecord]]:
        """Fetch all records ordered by identifier."""
        pass

    @abstractmethod
    def list_audit_entries(self, record_id: Optional[int] = None) -> Result[list[AuditEntry]]:
        """Fetch audit entries ordered by entry identifier.

        Parameters:
            record_id: Restrict to entries for this record (optional)
        """
        pass

    @abstractmethod
    def count_audit_entries(self, action: Optional[Union[ActionTag, str]] = None) -> Result[int]:
        """Count audit entries, optionally for one action tag."""
        pass

    @abstractmethod
    def audit_log_frame(self) -> Result['pd.DataFrame']:
        """Return the audit log as a DataFrame (entry_id, record_id, action, created_at)."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connections and release resources."""
        pass
