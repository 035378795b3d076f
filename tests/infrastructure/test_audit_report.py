"""Tests for the audit report generator."""

import json
import pytest

from student_audit.adapters.storage.duckdb_adapter import DuckDBAdapter
from student_audit.infrastructure.audit_report import (
    generate_audit_report,
    print_audit_report_summary,
)


@pytest.fixture
def populated_storage():
    storage = DuckDBAdapter()
    storage.initialize_schema()
    storage.add_record("Alice", 90)
    storage.add_record("Bob", 85)
    storage.update_record(1, {"grade": 95})
    yield storage
    storage.close()


class TestAuditReport:
    """Test suite for generate_audit_report."""

    def test_report_summary(self, populated_storage):
        result = generate_audit_report(populated_storage)

        assert result.is_success()
        report = result.value
        assert report["summary"]["total_entries"] == 3
        assert report["summary"]["entries_by_action"] == {"INSERT": 2, "UPDATE": 1}
        assert report["summary"]["entries_by_record"] == {1: 2, 2: 1}
        assert report["summary"]["records_audited"] == 2
        assert report["first_entry_at"] <= report["last_entry_at"]
        assert report["consistent"] is True
        assert report["violations"] == []

    def test_empty_report(self):
        storage = DuckDBAdapter()
        try:
            report = generate_audit_report(storage).value
        finally:
            storage.close()

        assert report["summary"]["total_entries"] == 0
        assert report["first_entry_at"] is None
        assert report["consistent"] is True

    def test_report_saved_to_file(self, populated_storage, tmp_path):
        output = tmp_path / "reports" / "audit.json"

        result = generate_audit_report(populated_storage, output_path=str(output))

        assert result.value["saved_to"] == str(output)
        saved = json.loads(output.read_text(encoding="utf-8"))
        assert saved["summary"]["total_entries"] == 3

    def test_report_detects_orphan_entries(self, populated_storage):
        # Simulate tampering outside the adapter
        conn = populated_storage._get_connection()
        conn.execute(
            "INSERT INTO students_log (entry_id, record_id, action, created_at) "
            "VALUES (99, 42, 'UPDATE', TIMESTAMP '2024-01-01 00:00:00')"
        )

        report = generate_audit_report(populated_storage).value

        assert report["consistent"] is False
        assert "Entry 99 references missing record 42" in report["violations"]

    def test_print_summary(self, populated_storage, capsys):
        report = generate_audit_report(populated_storage).value

        print_audit_report_summary(report)

        out = capsys.readouterr().out
        assert "Total Entries: 3" in out
        assert "INSERT: 2" in out
        assert "consistent" in out
