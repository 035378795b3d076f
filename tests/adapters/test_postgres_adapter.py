"""Test suite for PostgresAdapter using mocked database connections.

These tests verify the StoragePort methods without requiring an actual
PostgreSQL database. The psycopg2 pool module is patched so every connection
and cursor is a MagicMock.
"""

import threading
import time
import pytest
from datetime import datetime
from unittest.mock import MagicMock, patch

import pandas as pd

from student_audit.adapters.storage.postgres_adapter import PostgresAdapter, PostgresAuditLog
from student_audit.domain.models import ActionTag
from student_audit.domain.ports import StorageError
from student_audit.domain.services.change_auditor import ChangeAuditor
from student_audit.infrastructure.config_manager import DatabaseConfig

NOW = datetime(2024, 2, 1, 10, 30, 0)


@pytest.fixture
def mock_psycopg2():
    """Mock psycopg2 pool module and its components.

    The adapter does `from psycopg2 import pool`, so
    `student_audit.adapters.storage.postgres_adapter.pool` is patched.
    """
    with patch('student_audit.adapters.storage.postgres_adapter.pool') as mock_pool_module:
        mock_pool = MagicMock()

        mock_conn = MagicMock()
        mock_cursor = MagicMock()
        mock_conn.cursor.return_value = mock_cursor

        mock_pool.getconn.return_value = mock_conn

        mock_threaded_pool_class = MagicMock(return_value=mock_pool)
        mock_pool_module.ThreadedConnectionPool = mock_threaded_pool_class

        yield {
            'pool_module': mock_pool_module,
            'pool': mock_pool,
            'conn': mock_conn,
            'cursor': mock_cursor,
            'ThreadedConnectionPool': mock_threaded_pool_class,
        }


@pytest.fixture
def adapter(mock_psycopg2):
    """Adapter with schema marked as initialized and a fixed clock."""
    storage = PostgresAdapter(
        host="localhost",
        database="school",
        username="registrar",
        password="secret",
        auditor=ChangeAuditor(clock=lambda: NOW),
    )
    storage._initialized = True
    return storage


def _executed_sql(cursor):
    return [str(c.args[0]) for c in cursor.execute.call_args_list]


class TestPostgresAdapterInit:
    """Test suite for adapter construction."""

    def test_init_with_db_config(self, mock_psycopg2):
        config = DatabaseConfig(
            db_type="postgresql",
            host="db.example.com",
            port=5433,
            database="school",
            username="registrar",
            password="secret",
        )
        storage = PostgresAdapter(db_config=config)

        # A connection string is derived from the individual fields
        assert "dsn" in storage.connection_params
        assert "db.example.com:5433/school" in storage.connection_params["dsn"]

    def test_init_with_connection_string(self, mock_psycopg2):
        storage = PostgresAdapter(connection_string="postgresql://u:p@localhost/school")
        assert storage.connection_params == {"dsn": "postgresql://u:p@localhost/school"}

    def test_init_requires_host_and_database(self, mock_psycopg2):
        with pytest.raises(StorageError):
            PostgresAdapter(host="localhost")

    def test_init_rejects_duckdb_config(self, mock_psycopg2):
        with pytest.raises(StorageError):
            PostgresAdapter(db_config=DatabaseConfig(db_type="duckdb"))

    def test_init_without_psycopg2(self):
        with patch('student_audit.adapters.storage.postgres_adapter.PSYCOPG2_AVAILABLE', False):
            with pytest.raises(StorageError, match="psycopg2 is required"):
                PostgresAdapter(host="localhost", database="school")

    def test_pool_created_lazily(self, adapter, mock_psycopg2):
        mock_psycopg2['ThreadedConnectionPool'].assert_not_called()
        adapter._get_connection()
        mock_psycopg2['ThreadedConnectionPool'].assert_called_once()
        kwargs = mock_psycopg2['ThreadedConnectionPool'].call_args.kwargs
        assert kwargs["maxconn"] == 15
        assert kwargs["sslmode"] == "require"

    def test_pool_created_once_under_concurrent_first_use(self, adapter, mock_psycopg2):
        def slow_pool(*args, **kwargs):
            time.sleep(0.05)
            return mock_psycopg2['pool']

        mock_psycopg2['ThreadedConnectionPool'].side_effect = slow_pool
        threads = [threading.Thread(target=adapter._get_connection_pool) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        mock_psycopg2['ThreadedConnectionPool'].assert_called_once()
        assert adapter._connection_pool is mock_psycopg2['pool']


class TestPostgresAdapterSchema:
    """Test suite for schema initialization."""

    def test_initialize_schema(self, mock_psycopg2):
        storage = PostgresAdapter(host="localhost", database="school")

        result = storage.initialize_schema()

        assert result.is_success()
        statements = " ".join(_executed_sql(mock_psycopg2['cursor']))
        assert "CREATE TABLE IF NOT EXISTS students" in statements
        assert "CREATE TABLE IF NOT EXISTS students_log" in statements
        mock_psycopg2['conn'].commit.assert_called_once()
        mock_psycopg2['pool'].putconn.assert_called_once_with(mock_psycopg2['conn'])

    def test_initialize_schema_failure(self, mock_psycopg2):
        mock_psycopg2['cursor'].execute.side_effect = Exception("permission denied")
        storage = PostgresAdapter(host="localhost", database="school")

        result = storage.initialize_schema()

        assert result.is_failure()
        assert result.error_type == "StorageError"
        mock_psycopg2['conn'].rollback.assert_called_once()


class TestPostgresAdapterWrites:
    """Test suite for audited add/update operations."""

    def test_add_record_writes_record_and_entry(self, adapter, mock_psycopg2):
        cursor = mock_psycopg2['cursor']
        # INSERT ... RETURNING id, last_timestamp, append_entry RETURNING entry_id
        cursor.fetchone.side_effect = [(1,), (None,), (10,)]

        result = adapter.add_record("Alice", 90)

        assert result.is_success()
        assert result.value == 1
        statements = _executed_sql(cursor)
        assert statements[0].startswith("INSERT INTO students ")
        assert "INSERT INTO students_log" in statements[2]
        assert cursor.execute.call_args_list[2].args[1] == (1, "INSERT", NOW)
        mock_psycopg2['conn'].commit.assert_called_once()
        mock_psycopg2['conn'].rollback.assert_not_called()
        mock_psycopg2['pool'].putconn.assert_called_once_with(mock_psycopg2['conn'])

    def test_add_record_rolls_back_when_audit_fails(self, adapter, mock_psycopg2):
        cursor = mock_psycopg2['cursor']
        cursor.fetchone.side_effect = [(1,), (None,)]

        with patch.object(PostgresAuditLog, "append_entry", side_effect=Exception("log table locked")):
            result = adapter.add_record("Alice", 90)

        assert result.is_failure()
        assert result.error_type == "StorageError"
        assert result.error == "Failed to add record"
        mock_psycopg2['conn'].rollback.assert_called_once()
        mock_psycopg2['conn'].commit.assert_not_called()
        mock_psycopg2['pool'].putconn.assert_called_once_with(mock_psycopg2['conn'])

    def test_add_record_validation(self, adapter, mock_psycopg2):
        result = adapter.add_record("Alice", 101)

        assert result.error_type == "RecordValidationError"
        mock_psycopg2['pool'].getconn.assert_not_called()

    def test_update_fields_must_be_a_mapping(self, adapter, mock_psycopg2):
        result = adapter.update_record(1, None)

        assert result.is_failure()
        assert result.error_type == "RecordValidationError"
        mock_psycopg2['pool'].getconn.assert_not_called()

    def test_boolean_grade_rejected(self, adapter, mock_psycopg2):
        result = adapter.add_record("Alice", True)

        assert result.error_type == "RecordValidationError"
        mock_psycopg2['pool'].getconn.assert_not_called()

    def test_update_record_locks_row_and_logs(self, adapter, mock_psycopg2):
        cursor = mock_psycopg2['cursor']
        # SELECT FOR UPDATE, UPDATE RETURNING, last_timestamp, append_entry
        cursor.fetchone.side_effect = [(1,), (1, "Alice", 95.0), (NOW,), (11,)]

        result = adapter.update_record(1, {"grade": 95})

        assert result.is_success()
        assert result.value.grade == 95.0
        statements = _executed_sql(cursor)
        assert "FOR UPDATE" in statements[0]
        assert cursor.execute.call_args_list[1].args[1] == (95.0, 1)
        assert cursor.execute.call_args_list[3].args[1] == (1, "UPDATE", NOW)
        mock_psycopg2['conn'].commit.assert_called_once()

    def test_update_missing_record(self, adapter, mock_psycopg2):
        cursor = mock_psycopg2['cursor']
        cursor.fetchone.return_value = None

        result = adapter.update_record(999, {"grade": 50})

        assert result.is_failure()
        assert result.error_type == "RecordNotFound"
        assert cursor.execute.call_count == 1
        mock_psycopg2['conn'].rollback.assert_called_once()
        mock_psycopg2['conn'].commit.assert_not_called()

    def test_update_rolls_back_when_audit_fails(self, adapter, mock_psycopg2):
        cursor = mock_psycopg2['cursor']
        cursor.fetchone.side_effect = [(1,), (1, "Alice", 40.0), (None,)]

        with patch.object(PostgresAuditLog, "append_entry", side_effect=Exception("log table locked")):
            result = adapter.update_record(1, {"grade": 40})

        assert result.error_type == "StorageError"
        assert result.error == "Failed to update record"
        mock_psycopg2['conn'].rollback.assert_called_once()
        mock_psycopg2['conn'].commit.assert_not_called()


class TestPostgresAdapterReads:
    """Test suite for read operations."""

    def test_get_record(self, adapter, mock_psycopg2):
        mock_psycopg2['cursor'].fetchone.return_value = (2, "Bob", 85.0)

        result = adapter.get_record(2)

        assert result.value.name == "Bob"
        mock_psycopg2['pool'].putconn.assert_called_once_with(mock_psycopg2['conn'])

    def test_get_missing_record(self, adapter, mock_psycopg2):
        mock_psycopg2['cursor'].fetchone.return_value = None

        assert adapter.get_record(2).error_type == "RecordNotFound"

    def test_list_audit_entries_filtered(self, adapter, mock_psycopg2):
        cursor = mock_psycopg2['cursor']
        cursor.fetchall.return_value = [(1, 1, "INSERT", NOW), (3, 1, "UPDATE", NOW)]

        entries = adapter.list_audit_entries(record_id=1).value

        assert [e.action for e in entries] == [ActionTag.INSERT, ActionTag.UPDATE]
        query, params = cursor.execute.call_args.args
        assert "WHERE record_id = %s" in query
        assert params == (1,)

    def test_count_audit_entries_by_action(self, adapter, mock_psycopg2):
        cursor = mock_psycopg2['cursor']
        cursor.fetchone.return_value = (2,)

        result = adapter.count_audit_entries("update")

        assert result.value == 2
        assert cursor.execute.call_args.args[1] == ("UPDATE",)

    def test_audit_log_frame(self, adapter, mock_psycopg2):
        mock_psycopg2['cursor'].fetchall.return_value = [(1, 1, "INSERT", NOW)]

        df = adapter.audit_log_frame().value

        assert isinstance(df, pd.DataFrame)
        assert df.loc[0, "action"] == "INSERT"

    def test_read_failure(self, adapter, mock_psycopg2):
        mock_psycopg2['cursor'].execute.side_effect = Exception("connection reset")

        result = adapter.list_records()

        assert result.is_failure()
        assert result.error_type == "StorageError"
        mock_psycopg2['pool'].putconn.assert_called_once_with(mock_psycopg2['conn'])

    def test_close(self, adapter, mock_psycopg2):
        adapter._get_connection()
        adapter.close()

        mock_psycopg2['pool'].closeall.assert_called_once()
        assert adapter._connection_pool is None
