"""Unit tests for AuditVerifier using a mocked storage port."""

from datetime import datetime
from unittest.mock import Mock

from student_audit.domain.models import ActionTag, AuditEntry, StudentRecord
from student_audit.domain.ports import Result, StoragePort
from student_audit.domain.services.audit_verifier import AuditVerifier


def _entry(entry_id, record_id, action, minute):
    return AuditEntry(
        entry_id=entry_id,
        record_id=record_id,
        action=action,
        created_at=datetime(2024, 1, 1, 9, minute),
    )


def _storage(records, entries):
    storage = Mock(spec=StoragePort)
    storage.list_records.return_value = Result.success_result(records)
    storage.list_audit_entries.return_value = Result.success_result(entries)
    return storage


class TestAuditVerifier:
    """Test suite for AuditVerifier."""

    def test_consistent_store(self):
        records = [StudentRecord(id=1, name="Alice", grade=95), StudentRecord(id=2, name="Bob", grade=85)]
        entries = [
            _entry(1, 1, ActionTag.INSERT, 0),
            _entry(2, 2, ActionTag.INSERT, 1),
            _entry(3, 1, ActionTag.UPDATE, 2),
        ]

        result = AuditVerifier(_storage(records, entries)).verify()

        assert result.is_success()
        assert result.value == []

    def test_missing_insert_entry(self):
        records = [StudentRecord(id=1, name="Alice", grade=90)]

        result = AuditVerifier(_storage(records, [])).verify()

        assert result.value == ["Record 1 has 0 INSERT entries (expected 1)"]

    def test_orphan_entry(self):
        records = [StudentRecord(id=1, name="Alice", grade=90)]
        entries = [_entry(1, 1, ActionTag.INSERT, 0), _entry(2, 9, ActionTag.UPDATE, 1)]

        result = AuditVerifier(_storage(records, entries)).verify()

        assert result.value == ["Entry 2 references missing record 9"]

    def test_decreasing_timestamps(self):
        records = [StudentRecord(id=1, name="Alice", grade=90)]
        entries = [_entry(1, 1, ActionTag.INSERT, 5), _entry(2, 1, ActionTag.UPDATE, 4)]

        result = AuditVerifier(_storage(records, entries)).verify()

        assert len(result.value) == 1
        assert "older than entry 1" in result.value[0]

    def test_read_failure_is_propagated(self):
        storage = Mock(spec=StoragePort)
        storage.list_records.return_value = Result.failure_result("boom", error_type="StorageError")

        result = AuditVerifier(storage).verify()

        assert result.is_failure()
        assert result.error_type == "StorageError"
        storage.list_audit_entries.assert_not_called()
