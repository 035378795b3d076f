"""PostgreSQL Storage Adapter.

This adapter provides a PostgreSQL implementation of the StoragePort contract.
Every committed insert or update of a student appends one row to
`students_log` through the same cursor, inside the same transaction.

Security Impact:
    - Connection credentials are managed via configuration and never logged
    - SSL mode defaults to 'require' for network connections

Architecture:
    - Implements StoragePort (Hexagonal Architecture)
    - Isolated from domain core - only depends on ports and models
    - Connection pooling via psycopg2.pool.ThreadedConnectionPool
    - Updates lock the target row (SELECT ... FOR UPDATE) so concurrent writers
      to one record commit, and are audited, in order
"""

import logging
import threading
from datetime import datetime
from typing import Optional, Union

try:
    import psycopg2
    from psycopg2 import pool, sql
    PSYCOPG2_AVAILABLE = True
except ImportError:
    PSYCOPG2_AVAILABLE = False

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


class PostgresAuditLog(AuditLogPort):
    """students_log writer bound to the cursor of an open transaction.

    Parameters:
        cursor: psycopg2 cursor whose connection has a transaction in progress
    """

    def __init__(self, cursor):
        self._cursor = cursor

    def append_entry(self, record_id: int, action: ActionTag, timestamp: datetime) -> int:
        self._cursor.execute(
            "INSERT INTO students_log (record_id, action, created_at) VALUES (%s, %s, %s) RETURNING entry_id",
            (record_id, action.value, timestamp)
        )
        return self._cursor.fetchone()[0]

    def last_timestamp(self, record_id: int) -> Optional[datetime]:
        self._cursor.execute(
            "SELECT MAX(created_at) FROM students_log WHERE record_id = %s",
            (record_id,)
        )
        return self._cursor.fetchone()[0]


class PostgresAdapter(StoragePort):
    """PostgreSQL implementation of StoragePort with same-transaction auditing.

    Parameters:
        db_config: DatabaseConfig from configuration manager (preferred)
        connection_string: Full PostgreSQL connection string
        host: Database host (required if no connection_string or db_config)
        port: Database port (default: 5432)
        database: Database name (required if no connection_string or db_config)
        username: Database username
        password: Database password
        ssl_mode: SSL mode (require, prefer, disable) - defaults to 'require'
        pool_size: Connection pool size
        max_overflow: Maximum connection pool overflow
        auditor: ChangeAuditor invoked by the write path (a default is created)
    """

    def __init__(
        self,
        db_config: Optional[DatabaseConfig] = None,
        connection_string: Optional[str] = None,
        host: Optional[str] = None,
        port: int = 5432,
        database: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        ssl_mode: str = "require",
        pool_size: int = 5,
        max_overflow: int = 10,
        auditor: Optional[ChangeAuditor] = None,
    ):
        """Initialize PostgreSQL adapter.

        Raises:
            StorageError: If psycopg2 is not installed or configuration is invalid
        """
        if not PSYCOPG2_AVAILABLE:
            raise StorageError(
                "psycopg2 is required for PostgreSQL adapter. Install with: pip install psycopg2-binary",
                operation="__init__"
            )

        self._connection_pool: Optional[pool.ThreadedConnectionPool] = None
        self._pool_lock = threading.Lock()
        self._initialized = False
        self.auditor = auditor or ChangeAuditor()

        if db_config:
            if db_config.db_type != "postgresql":
                raise StorageError(
                    f"DatabaseConfig type '{db_config.db_type}' does not match PostgreSQL adapter",
                    operation="__init__"
                )

            if db_config.connection_string:
                self.connection_params = {"dsn": db_config.connection_string.get_secret_value()}
            else:
                if not all([db_config.host, db_config.database]):
                    raise StorageError(
                        "PostgreSQL DatabaseConfig requires host and database",
                        operation="__init__"
                    )

                self.connection_params = {
                    "host": db_config.host,
                    "port": db_config.port or 5432,
                    "database": db_config.database,
                    "user": db_config.username,
                    "sslmode": db_config.ssl_mode or "require",
                }
                if db_config.password:
                    self.connection_params["password"] = db_config.password.get_secret_value()

            self.pool_size = db_config.pool_size or pool_size
            self.max_overflow = db_config.max_overflow or max_overflow

        elif connection_string:
            self.connection_params = {"dsn": connection_string}
            self.pool_size = pool_size
            self.max_overflow = max_overflow
        else:
            if not all([host, database]):
                raise StorageError(
                    "PostgreSQL adapter requires either db_config, connection_string, or (host and database)",
                    operation="__init__"
                )

            self.connection_params = {
                "host": host,
                "port": port,
                "database": database,
                "user": username,
                "password": password,
                "sslmode": ssl_mode,
            }
            self.pool_size = pool_size
            self.max_overflow = max_overflow

    def _get_connection_pool(self) -> "pool.ThreadedConnectionPool":
        """Get or create PostgreSQL connection pool.

        Raises:
            StorageError: If connection pool cannot be created
        """
        if self._connection_pool is None:
            with self._pool_lock:
                if self._connection_pool is None:
                    try:
                        self._connection_pool = pool.ThreadedConnectionPool(
                            minconn=1,
                            maxconn=self.pool_size + self.max_overflow,
                            **self.connection_params
                        )
                        logger.info("Created PostgreSQL connection pool")
                    except Exception as e:
                        raise StorageError(
                            f"Failed to create PostgreSQL connection pool: {str(e)}",
                            operation="connect",
                            details={"host": self.connection_params.get("host", "N/A")}
                        )
        return self._connection_pool

    def _get_connection(self):
        """Get a connection from the pool.

        Raises:
            StorageError: If connection cannot be obtained
        """
        try:
            return self._get_connection_pool().getconn()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(
                f"Failed to get connection from pool: {str(e)}",
                operation="get_connection"
            )

    def _return_connection(self, conn) -> None:
        """Return a connection to the pool."""
        try:
            self._get_connection_pool().putconn(conn)
        except Exception as e:
            logger.warning(f"Error returning connection to pool: {str(e)}")

    def initialize_schema(self) -> Result[None]:
        """Initialize database schema (tables and indexes).

        Creates tables for:
        - students: Primary record store
        - students_log: Append-only audit log (foreign key to students)

        Returns:
            Result[None]: Success or failure result
        """
        conn = None
        try:
            conn = self._get_connection()
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS students (
                    id SERIAL PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    grade DOUBLE PRECISION NOT NULL CHECK (grade >= 0 AND grade <= 100)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS students_log (
                    entry_id BIGSERIAL PRIMARY KEY,
                    record_id INTEGER NOT NULL REFERENCES students(id),
                    action VARCHAR(10) NOT NULL CHECK (action IN ('INSERT', 'UPDATE')),
                    created_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_students_log_record ON students_log(record_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_students_log_created ON students_log(created_at)")

            conn.commit()
            self._initialized = True
            logger.info("Database schema initialized successfully")

            return Result.success_result(None)

        except Exception as e:
            if conn:
                conn.rollback()
            error_msg = f"Failed to initialize schema: {str(e)}"
            logger.error(error_msg, exc_info=True)
            return Result.failure_result(
                StorageError(error_msg, operation="initialize_schema"),
                error_type="StorageError"
            )
        finally:
            if conn:
                self._return_connection(conn)

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

        if not self._initialized:
            init_result = self.initialize_schema()
            if not init_result.is_success():
                return init_result

        conn = None
        try:
            conn = self._get_connection()
            cursor = conn.cursor()

            try:
                cursor.execute(
                    "INSERT INTO students (name, grade) VALUES (%s, %s) RETURNING id",
                    (new_record.name, new_record.grade)
                )
                record_id = cursor.fetchone()[0]

                self.auditor.record_change(PostgresAuditLog(cursor), record_id, ActionTag.INSERT)

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
        finally:
            if conn:
                self._return_connection(conn)

    def update_record(self, record_id: int, fields: dict) -> Result[StudentRecord]:
        """Apply field changes and log an UPDATE audit entry in one transaction.

        The target row is locked for the duration of the transaction.

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

        if not self._initialized:
            init_result = self.initialize_schema()
            if not init_result.is_success():
                return init_result

        conn = None
        try:
            conn = self._get_connection()
            cursor = conn.cursor()

            try:
                cursor.execute(
                    "SELECT id FROM students WHERE id = %s FOR UPDATE",
                    (record_id,)
                )
                if cursor.fetchone() is None:
                    raise RecordNotFound(record_id)

                assignments = sql.SQL(", ").join(
                    [sql.SQL("{} = %s").format(sql.Identifier(column)) for column in changes]
                )
                cursor.execute(
                    sql.SQL("UPDATE students SET {} WHERE id = %s RETURNING id, name, grade").format(assignments),
                    (*changes.values(), record_id)
                )
                updated = cursor.fetchone()

                self.auditor.record_change(PostgresAuditLog(cursor), record_id, ActionTag.UPDATE)

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
        finally:
            if conn:
                self._return_connection(conn)

    def get_record(self, record_id: int) -> Result[StudentRecord]:
        """Fetch a single record by identifier."""
        try:
            row = self._query("SELECT id, name, grade FROM students WHERE id = %s", (record_id,), one=True)
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
        """Fetch audit entries ordered by entry identifier."""
        try:
            rows = self._fetch_audit_rows(record_id)
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
                    "SELECT COUNT(*) FROM students_log WHERE action = %s",
                    (action_tag.value,),
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
            rows = self._fetch_audit_rows()
            df = pd.DataFrame(rows, columns=AUDIT_LOG_COLUMNS)
            df["created_at"] = pd.to_datetime(df["created_at"])
            return Result.success_result(df)
        except Exception as e:
            return self._read_failure("audit_log_frame", e)

    def _fetch_audit_rows(self, record_id: Optional[int] = None) -> list:
        query = f"SELECT {', '.join(AUDIT_LOG_COLUMNS)} FROM students_log"
        params = None
        if record_id is not None:
            query += " WHERE record_id = %s"
            params = (record_id,)
        query += " ORDER BY entry_id"
        return self._query(query, params)

    def _query(self, query: str, params: Optional[tuple] = None, one: bool = False):
        """Run a read query on a pooled connection."""
        if not self._initialized:
            init_result = self.initialize_schema()
            if not init_result.is_success():
                raise StorageError(init_result.error, operation="initialize_schema")

        conn = self._get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(query, params)
            result = cursor.fetchone() if one else cursor.fetchall()
            conn.rollback()
            return result
        finally:
            self._return_connection(conn)

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
        """Close all pooled connections."""
        if self._connection_pool is not None:
            try:
                self._connection_pool.closeall()
                logger.info("Closed PostgreSQL connection pool")
            except Exception as e:
                logger.warning(f"Error closing connection pool: {str(e)}")
            finally:
                self._connection_pool = None
                self._initialized = False
