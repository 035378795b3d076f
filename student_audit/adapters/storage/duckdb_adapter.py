"""DuckDB Storage Adapter.

This adapter implements the StoragePort contract on top of DuckDB, an
in-process database. Student records live in the `students` table and every
committed insert or update appends one row to the `students_log` table in the
same transaction.

Architecture:
    - Implements StoragePort (Hexagonal Architecture)
    - Isolated from domain core - only depends on ports and models
    - The ChangeAuditor is called from the write path before commit
    - students_log is append-only; nothing in this adapter updates or deletes it
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

import duckdb
import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from student_audit.domain.models import (
    ActionTag,
    AuditEntry,
    RecordCreate,
    RecordUpdate,
    StudentRecord,
)
from student_audit.domain.ports import (
    AuditLogPort,
    InvalidActionTag,
    RecordNotFound,
    RecordValidationError,
    Result,
    StorageError,
    StoragePort,
)
from student_audit.domain.services.change_auditor import ChangeAuditor
from student_audit.infrastructure.config_manager import DatabaseConfig

logger = logging.getLogger(__name__)

AUDIT_LOG_COLUMNS = ["entry_id", "record_id", "action", "created_at"]


class DuckDBAuditLog(AuditLogPort):
    """students_log writer bound to an open DuckDB transaction.

    Parameters:
        conn: DuckDB connection with a transaction in progress
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self._conn = conn

    def append_entry(self, record_id: int, action: ActionTag, timestamp: datetime) -> int:
        entry_id = self._conn.execute(
            "SELECT COALESCE(MAX(entry_id), 0) + 1 FROM students_log"
        ).fetchone()[0]
        self._conn.execute(
            "INSERT INTO students_log (entry_id, record_id, action, created_at) VALUES (?, ?, ?, ?)",
            [entry_id, record_id, action.value, timestamp]
        )
        return entry_id

    def last_timestamp(self, record_id: int) -> Optional[datetime]:
        return self._conn.execute(
            "SELECT MAX(created_at) FROM students_log WHERE record_id = ?",
            [record_id]
        ).fetchone()[0]


class DuckDBAdapter(StoragePort):
    """DuckDB implementation of StoragePort with same-transaction auditing.

    One connection is shared by all callers of an adapter instance, so every
    operation runs under the adapter's lock. Writes are therefore serialized
    and audit entries for a record are appended in commit order.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        db_path: Path to DuckDB database file (or ':memory:' for in-memory)
        auditor: ChangeAuditor invoked by the write path (a default is created)

    Example Usage:
        ```python
        adapter = DuckDBAdapter(db_path="data/school.duckdb")
        adapter.initialize_schema()

        result = adapter.add_record("Alice", 90)
        if result.is_success():
            adapter.update_record(result.value, {"grade": 95})
        ```
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        db_path: Optional[str] = None,
        auditor: Optional[ChangeAuditor] = None
    ):
        """Initialize DuckDB adapter.

        Parameters:
            db_config: DatabaseConfig from configuration manager (preferred)
            db_path: Path to DuckDB database file (or ':memory:' for in-memory)
            auditor: ChangeAuditor to call from the write path

        Note:
            If both db_config and db_path are provided, db_config takes precedence.
            If neither is provided, defaults to in-memory database.
        """
        if db_config:
            if db_config.db_type != "duckdb":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match DuckDB adapter",
                    operation="__init__"
                )
            self.db_path = db_config.db_path or ":memory:"
        elif db_path:
            self.db_path = db_path
        else:
            self.db_path = ":memory:"

        self.auditor = auditor or ChangeAuditor()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False
        self._lock = threading.RLock()

        if self.db_path != ":memory:":
            db_path_obj = Path(self.db_path)
            if not db_path_obj.parent.exists():
                raise StorageError(
                    f"Database directory does not exist: {db_path_obj.parent}",
                    operation="__init__"
                )

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create DuckDB connection.

        Returns:
            DuckDB connection instance
        """
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB database: {self.db_path}")
            except Exception as e:
                raise StorageError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                )
        return self._connection

    def initialize_schema(self) -> Result[None]:
        """Initialize database schema (tables and indexes).

        Creates tables for:
        - students: Primary record store
        - students_log: Append-only audit log

        Returns:
            Result[None]: Success or failure result
        """
        try:
            with self._lock:
                conn = self._get_connection()

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS students (
                        id INTEGER PRIMARY KEY,
                        name VARCHAR NOT NULL,
                        grade DOUBLE NOT NULL CHECK (grade >= 0 AND grade <= 100)
                    )
                """)

                conn.execute("""
                    CREATE TABLE IF NOT EXISTS students_log (
                        entry_id INTEGER PRIMARY KEY,
                        record_id INTEGER NOT NULL,
                        action VARCHAR NOT NULL CHECK (action IN ('INSERT', 'UPDATE')),
                        created_at TIMESTAMP NOT NULL
                    )
                """)

                conn.execute("CREATE INDEX IF NOT EXISTS idx_students_log_record ON students_log(record_id)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_students_log_created ON students_log(created_at)")

                self._initialized = True
            logger.info("Database schema initialized successfully")

            return Result.success_result(None)

        except Exception as e:
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )

    def add_record(self, name: str, grade: float) -> Result[int]:
        """Insert a student and its INSERT audit entry in one transaction.

        Parameters:
            name: Student name
            grade: Numeric grade between 0 and 100

        Returns:
            Result[int]: Identifier of the new record or error
        """
        try:
            new_record = RecordCreate(name=name, grade=grade)
        except PydanticValidationError as e:
            error = RecordValidationError.from_pydantic(e)
            logger.warning(f"Rejected add_record: {error}")
            return Result.failure_result(error, error_type="RecordValidationError", error_details=error.details)

        try:
            if not self._initialized:
                init_result = self.initialize_schema()
                if not init_result.is_success():
                    return init_result

            with self._lock:
                conn = self._get_connection()
                conn.begin()

                try:
                    record_id = conn.execute(
                        "SELECT COALESCE(MAX(id), 0) + 1 FROM students"
                    ).fetchone()[0]
                    conn.execute(
                        "INSERT INTO students (id, name, grade) VALUES (?, ?, ?)",
                        [record_id, new_record.name, new_record.grade]
                    )

                    self.auditor.record_change(DuckDBAuditLog(conn), record_id, ActionTag.INSERT)

                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise

            logger.info(
                f"Added student record {record_id}",
                extra={"extra_fields": {"record_id": record_id, "action": ActionTag.INSERT.value}}
            )
            return Result.success_result(record_id)

        except Exception as e:
            logger.error(f"Failed to add record: {str(e)}", exc_info=True)
            return Result.failure_result(
                StorageError("Failed to add record", operation="add_record"),
                error_type="StorageError",
                error_details={"operation": "add_record"}
            )

    def update_record(self, record_id: int, fields: dict) -> Result[StudentRecord]:
        """Apply field changes and log an UPDATE audit entry in one transaction.

        Parameters:
            record_id: Identifier of an existing record
            fields: Mapping of field name to new value (name, grade)

        Returns:
            Result[StudentRecord]: The updated record or error
        """
        try:
            update = RecordUpdate.model_validate(fields)
        except PydanticValidationError as e:
            error = RecordValidationError.from_pydantic(e)
            logger.warning(f"Rejected update_record for {record_id}: {error}")
            return Result.failure_result(error, error_type="RecordValidationError", error_details=error.details)

        changes = update.changed_fields()

        try:
            if not self._initialized:
                init_result = self.initialize_schema()
                if not init_result.is_success():
                    return init_result

            with self._lock:
                conn = self._get_connection()
                conn.begin()

                try:
                    row = conn.execute(
                        "SELECT id, name, grade FROM students WHERE id = ?",
                        [record_id]
                    ).fetchone()
                    if row is None:
                        raise RecordNotFound(record_id)

                    # Column names come from RecordUpdate's declared fields only
                    assignments = ", ".join(f"{column} = ?" for column in changes)
                    conn.execute(
                        f"UPDATE students SET {assignments} WHERE id = ?",
                        [*changes.values(), record_id]
                    )

                    self.auditor.record_change(DuckDBAuditLog(conn), record_id, ActionTag.UPDATE)

                    updated = conn.execute(
                        "SELECT id, name, grade FROM students WHERE id = ?",
                        [record_id]
                    ).fetchone()

                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise

            logger.info(
                f"Updated student record {record_id}: {sorted(changes)}",
                extra={"extra_fields": {"record_id": record_id, "action": ActionTag.UPDATE.value}}
            )
            return Result.success_result(self._row_to_record(updated))

        except RecordNotFound as e:
            logger.warning(str(e))
            return Result.failure_result(e, error_type="RecordNotFound", error_details={"record_id": record_id})
        except Exception as e:
            logger.error(f"Failed to update record {record_id}: {str(e)}", exc_info=True)
            return Result.failure_result(
                StorageError("Failed to update record", operation="update_record"),
                error_type="StorageError",
                error_details={"operation": "update_record", "record_id": record_id}
            )

    def get_record(self, record_id: int) -> Result[StudentRecord]:
        """Fetch a single record by identifier."""
        try:
            row = self._query("SELECT id, name, grade FROM students WHERE id = ?", [record_id], one=True)
            if row is None:
                return Result.failure_result(
                    RecordNotFound(record_id),
                    error_type="RecordNotFound",
                    error_details={"record_id": record_id}
                )
            return Result.success_result(self._row_to_record(row))
        except Exception as e:
            return self._read_failure("get_record", e)

    def list_records(self) -> Result[list[StudentRecord]]:
        """Fetch all records ordered by identifier."""
        try:
            rows = self._query("SELECT id, name, grade FROM students ORDER BY id")
            return Result.success_result([self._row_to_record(row) for row in rows])
        except Exception as e:
            return self._read_failure("list_records", e)

    def list_audit_entries(self, record_id: Optional[int] = None) -> Result[list[AuditEntry]]:
        """Fetch audit entries ordered by entry identifier.

        Parameters:
            record_id: Restrict to entries for this record (optional)
        """
        query = "SELECT entry_id, record_id, action, created_at FROM students_log"
        params = []
        if record_id is not None:
            query += " WHERE record_id = ?"
            params.append(record_id)
        query += " ORDER BY entry_id"

        try:
            rows = self._query(query, params)
            return Result.success_result([
                AuditEntry(entry_id=row[0], record_id=row[1], action=ActionTag(row[2]), created_at=row[3])
                for row in rows
            ])
        except Exception as e:
            return self._read_failure("list_audit_entries", e)

    def count_audit_entries(self, action: Optional[Union[ActionTag, str]] = None) -> Result[int]:
        """Count audit entries, optionally for one action tag."""
        try:
            if action is None:
                row = self._query("SELECT COUNT(*) FROM students_log", one=True)
            else:
                action_tag = ActionTag.parse(action)
                row = self._query(
                    "SELECT COUNT(*) FROM students_log WHERE action = ?",
                    [action_tag.value],
                    one=True
                )
            return Result.success_result(int(row[0]))
        except InvalidActionTag as e:
            return Result.failure_result(e, error_type="InvalidActionTag")
        except Exception as e:
            return self._read_failure("count_audit_entries", e)

    def audit_log_frame(self) -> Result[pd.DataFrame]:
        """Return the audit log as a pandas DataFrame ordered by entry_id."""
        try:
            if not self._initialized:
                init_result = self.initialize_schema()
                if not init_result.is_success():
                    return init_result

            with self._lock:
                df = self._get_connection().execute(
                    f"SELECT {', '.join(AUDIT_LOG_COLUMNS)} FROM students_log ORDER BY entry_id"
                ).df()
            return Result.success_result(df)
        except Exception as e:
            return self._read_failure("audit_log_frame", e)

    def _query(self, query: str, params: Optional[list] = None, one: bool = False):
        """Run a read query under the adapter lock."""
        if not self._initialized:
            init_result = self.initialize_schema()
            if not init_result.is_success():
                raise StorageError(init_result.error, operation="initialize_schema")

        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute(query, params) if params else conn.execute(query)
            return cursor.fetchone() if one else cursor.fetchall()

    @staticmethod
    def _row_to_record(row) -> StudentRecord:
        return StudentRecord(id=row[0], name=row[1], grade=row[2])

    @staticmethod
    def _read_failure(operation: str, error: Exception) -> Result:
        error_msg = f"Failed to {operation.replace('_', ' ')}: {str(error)}"
        logger.error(error_msg, exc_info=True)
        return Result.failure_result(
            StorageError(error_msg, operation=operation),
            error_type="StorageError"
        )

    def close(self) -> None:
        """Close storage connection and release resources."""
        with self._lock:
            if self._connection is not None:
                try:
                    self._connection.close()
                    logger.info("Closed DuckDB connection")
                except Exception as e:
                    logger.warning(f"Error closing connection: {str(e)}")
                finally:
                    self._connection = None
                    self._initialized = False
