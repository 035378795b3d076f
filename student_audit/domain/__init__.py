"""Domain layer for Student-Audit.

This module contains the record and audit entry models, the ports storage
adapters implement, and the change auditor. All domain models are pure
Python with no external dependencies beyond Pydantic.
"""

from .models import (
    ActionTag,
    AuditEntry,
    RecordCreate,
    RecordUpdate,
    StudentRecord,
)

__all__ = [
    "ActionTag",
    "AuditEntry",
    "RecordCreate",
    "RecordUpdate",
    "StudentRecord",
]
