"""End-to-End Example: Audited Writes to DuckDB.

This example demonstrates the complete flow:
1. Add two students (each add logs an INSERT entry)
2. Update one student's grade (logs an UPDATE entry)
3. Attempt to update a student that does not exist (nothing is logged)
4. Print both tables and the audit report
"""

import logging

from student_audit.infrastructure.audit_report import generate_audit_report, print_audit_report_summary
from student_audit.infrastructure.config_manager import DatabaseConfig
from student_audit.infrastructure.logging_config import setup_logging
from student_audit.infrastructure.settings import settings
from student_audit.main import create_storage_adapter


def main() -> None:
    setup_logging(use_json=settings.log_json, log_level=settings.log_level, app_name=settings.app_name)
    logger = logging.getLogger("audit_flow")

    storage = create_storage_adapter(DatabaseConfig(db_type="duckdb", db_path=":memory:"))
    try:
        alice = storage.add_record("Alice", 90)
        bob = storage.add_record("Bob", 85)
        logger.info(f"Added students {alice.value} and {bob.value}")

        storage.update_record(alice.value, {"grade": 95})

        missing = storage.update_record(999, {"grade": 50})
        logger.info(f"Update of student 999 failed with {missing.error_type}")

        print("\nstudents")
        for record in storage.list_records().value:
            print(f"  {record.id:>3}  {record.name:<10} {record.grade:>6.1f}")

        print("\nstudents_log")
        print(storage.audit_log_frame().value.to_string(index=False))
        print()

        report = generate_audit_report(storage)
        if report.is_success():
            print_audit_report_summary(report.value)
    finally:
        storage.close()


if __name__ == "__main__":
    main()
