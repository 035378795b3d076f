"""Domain Models for Student Records and their Audit Trail.

This module defines the records held in the primary store (students) and the
immutable entries written to the append-only log store (students_log).

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Models are validated on construction (Pydantic)
    - Follows Hexagonal Architecture: Domain Core is isolated from Adapters
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from student_audit.domain.exceptions import InvalidActionTag

MAX_NAME_LENGTH = 255
MIN_GRADE = 0.0
MAX_GRADE = 100.0


class ActionTag(str, Enum):
    """Kind of change captured by an audit entry."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"

    @classmethod
    def parse(cls, value: Union["ActionTag", str]) -> "ActionTag":
        """Parse an action tag, rejecting anything outside the closed set.

        Parameters:
            value: ActionTag member or its string value (case-insensitive)

        Returns:
            ActionTag member

        Raises:
            InvalidActionTag: If the value is not a recognized tag
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise InvalidActionTag(value)


def _clean_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("name must not be empty")
    if len(v) > MAX_NAME_LENGTH:
        raise ValueError(f"name must be at most {MAX_NAME_LENGTH} characters")
    return v


def _reject_bool(v):
    # bool is an int subclass and would otherwise coerce to 0.0 or 1.0
    if isinstance(v, bool):
        raise ValueError("grade must be a number, not a boolean")
    return v


class StudentRecord(BaseModel):
    """A row in the primary store subject to auditing.

    Parameters:
        id: Identifier assigned by the store (1, 2, 3, ...)
        name: Student name
        grade: Numeric grade between 0 and 100
    """

    id: int = Field(..., ge=1, description="Identifier assigned by the store")
    name: str = Field(..., description="Student name")
    grade: float = Field(..., ge=MIN_GRADE, le=MAX_GRADE, description="Numeric grade")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Strip whitespace and reject empty or oversized names."""
        return _clean_name(v)

    @field_validator("grade", mode="before")
    @classmethod
    def validate_grade_type(cls, v):
        return _reject_bool(v)


class RecordCreate(BaseModel):
    """Fields supplied when adding a record (the store assigns the id)."""

    name: str = Field(..., description="Student name")
    grade: float = Field(..., ge=MIN_GRADE, le=MAX_GRADE, description="Numeric grade")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_name(v)

    @field_validator("grade", mode="before")
    @classmethod
    def validate_grade_type(cls, v):
        return _reject_bool(v)


class RecordUpdate(BaseModel):
    """Fields to change on an existing record.

    At least one field must be supplied. Unknown keys are rejected.
    """

    name: Optional[str] = Field(None, description="New student name")
    grade: Optional[float] = Field(None, ge=MIN_GRADE, le=MAX_GRADE, description="New grade")

    model_config = {
        'extra': 'forbid',
    }

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        """Strip whitespace and reject empty or oversized names."""
        return _clean_name(v)

    @field_validator("grade", mode="before")
    @classmethod
    def validate_grade_type(cls, v):
        return _reject_bool(v)

    @model_validator(mode='after')
    def require_at_least_one_field(self) -> 'RecordUpdate':
        if not self.changed_fields():
            raise ValueError("update must set at least one field")
        return self

    def changed_fields(self) -> dict:
        """Return only the fields that were explicitly set."""
        return self.model_dump(exclude_none=True)


class AuditEntry(BaseModel):
    """An immutable log row capturing one change event.

    Parameters:
        entry_id: Identifier assigned by the log store
        record_id: Identifier of the record that changed
        action: Kind of change (INSERT or UPDATE)
        created_at: Timestamp assigned when the entry was written
    """

    entry_id: int = Field(..., description="Identifier assigned by the log store")
    record_id: int = Field(..., description="Identifier of the changed record")
    action: ActionTag = Field(..., description="Kind of change")
    created_at: datetime = Field(..., description="Write timestamp")

    model_config = {
        'frozen': True,
    }
