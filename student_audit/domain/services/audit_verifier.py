"""Audit Consistency Verifier.

Checks that the primary store and the audit log agree:
    - every record has exactly one INSERT entry
    - no entry references a record missing from the primary store
    - entry timestamps for one record never decrease in entry order
"""

import logging
from collections import defaultdict

from student_audit.domain.models import ActionTag
from student_audit.domain.ports import Result, StoragePort

logger = logging.getLogger(__name__)


class AuditVerifier:
    """Verifies the audit log against the primary store.

    Parameters:
        storage: Storage adapter to inspect
    """

    def __init__(self, storage: StoragePort):
        self.storage = storage

    def verify(self) -> Result[list[str]]:
        """Run all consistency checks.

        Returns:
            Result[list[str]]: Human-readable violations (empty when consistent),
            or the failure of the underlying read
        """
        records_result = self.storage.list_records()
        if not records_result.is_success():
            return records_result

        entries_result = self.storage.list_audit_entries()
        if not entries_result.is_success():
            return entries_result

        record_ids = {record.id for record in records_result.value}
        violations = []

        inserts = defaultdict(int)
        last_seen = {}
        for entry in entries_result.value:
            if entry.record_id not in record_ids:
                violations.append(
                    f"Entry {entry.entry_id} references missing record {entry.record_id}"
                )
            if entry.action == ActionTag.INSERT:
                inserts[entry.record_id] += 1

            previous = last_seen.get(entry.record_id)
            if previous is not None and entry.created_at < previous.created_at:
                violations.append(
                    f"Entry {entry.entry_id} for record {entry.record_id} is older than "
                    f"entry {previous.entry_id}"
                )
            last_seen[entry.record_id] = entry

        for record_id in sorted(record_ids):
            count = inserts.get(record_id, 0)
            if count != 1:
                violations.append(f"Record {record_id} has {count} INSERT entries (expected 1)")

        if violations:
            logger.warning(f"Audit verification found {len(violations)} violation(s)")
        else:
            logger.info(
                f"Audit verification passed: {len(record_ids)} records, "
                f"{len(entries_result.value)} entries"
            )

        return Result.success_result(violations)
