"""Audit Report Generator.

This module summarizes the students_log audit trail: how many entries exist,
how they split by action and record, the time span they cover, and whether
the log is consistent with the primary store.
"""

import json
from pathlib import Path
from typing import Optional

import pandas as pd

from student_audit.domain.ports import Result, StoragePort
from student_audit.domain.services.audit_verifier import AuditVerifier


def generate_audit_report(
    storage: StoragePort,
    output_path: Optional[str] = None
) -> Result[dict]:
    """Generate a summary report of the audit log.

    Parameters:
        storage: Storage adapter instance
        output_path: Optional path to save report as JSON file

    Returns:
        Result[dict]: Report dictionary or error
    """
    frame_result = storage.audit_log_frame()
    if not frame_result.is_success():
        return frame_result

    df: pd.DataFrame = frame_result.value

    verify_result = AuditVerifier(storage).verify()
    if not verify_result.is_success():
        return verify_result

    if df.empty:
        summary = {
            "total_entries": 0,
            "entries_by_action": {},
            "entries_by_record": {},
            "records_audited": 0,
        }
        first_entry_at = None
        last_entry_at = None
    else:
        summary = {
            "total_entries": int(len(df)),
            "entries_by_action": {
                str(action): int(count)
                for action, count in df["action"].value_counts().sort_index().items()
            },
            "entries_by_record": {
                int(record_id): int(count)
                for record_id, count in df.groupby("record_id").size().items()
            },
            "records_audited": int(df["record_id"].nunique()),
        }
        first_entry_at = pd.Timestamp(df["created_at"].min()).isoformat()
        last_entry_at = pd.Timestamp(df["created_at"].max()).isoformat()

    report = {
        "summary": summary,
        "first_entry_at": first_entry_at,
        "last_entry_at": last_entry_at,
        "violations": verify_result.value,
        "consistent": not verify_result.value,
    }

    if output_path:
        try:
            output_file = Path(output_path)
            output_file.parent.mkdir(parents=True, exist_ok=True)

            with open(output_file, 'w', encoding='utf-8') as f:
                json.dump(report, f, indent=2, default=str)

            return Result.success_result({
                **report,
                "saved_to": str(output_file)
            })
        except OSError as e:
            return Result.failure_result(
                ValueError(f"Failed to save report to {output_path}: {str(e)}"),
                error_type="ValueError"
            )

    return Result.success_result(report)


def print_audit_report_summary(report: dict) -> None:
    """Print a human-readable summary of the audit report.

    Parameters:
        report: Report dictionary from generate_audit_report
    """
    print("=" * 70)
    print("AUDIT REPORT - students_log Summary")
    print("=" * 70)

    summary = report.get('summary', {})
    print(f"\nTotal Entries: {summary.get('total_entries', 0)}")
    print(f"Records Audited: {summary.get('records_audited', 0)}")

    if report.get('first_entry_at'):
        print(f"First Entry: {report['first_entry_at']}")
    if report.get('last_entry_at'):
        print(f"Last Entry: {report['last_entry_at']}")

    if summary.get('entries_by_action'):
        print("\nEntries by Action:")
        for action, count in sorted(summary['entries_by_action'].items()):
            print(f"  {action}: {count}")

    violations = report.get('violations', [])
    if violations:
        print(f"\nWARNING: {len(violations)} consistency violation(s):")
        for violation in violations:
            print(f"  {violation}")
    else:
        print("\nLog is consistent with the primary store.")

    print("\n" + "=" * 70)
