"""Change Auditor.

This module provides the hook that storage adapters invoke from their write
path to capture row-level changes. Each committed insert or update of a
student record produces exactly one audit entry, written through the same
transaction as the primary write.

Architecture:
    - Domain service with no infrastructure dependencies
    - Called synchronously by storage adapters before commit
    - Writes only through a transaction-bound AuditLogPort
    - Failures propagate so the caller can roll back the whole transaction
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from student_audit.domain.exceptions import AuditWriteFailed
from student_audit.domain.models import ActionTag, AuditEntry
from student_audit.domain.ports import AuditLogPort

logger = logging.getLogger(__name__)


class ChangeAuditor:
    """Appends one audit entry per committed change event.

    The auditor holds no connection and no buffered state: the log store is
    passed in on every call, already bound to the transaction of the primary
    write. If the append fails, AuditWriteFailed is raised and the adapter
    rolls back the primary write as well.

    Parameters:
        clock: Callable returning the current time (defaults to datetime.now)

    Example Usage:
        ```python
        auditor = ChangeAuditor()

        # inside an adapter's open transaction
        conn.execute("INSERT INTO students ...")
        auditor.record_change(DuckDBAuditLog(conn), record_id, ActionTag.INSERT)
        conn.commit()
        ```
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """Initialize change auditor.

        Parameters:
            clock: Time source for entry timestamps
        """
        self._clock = clock or datetime.now

    def record_change(
        self,
        log: AuditLogPort,
        record_id: int,
        action: Union[ActionTag, str]
    ) -> AuditEntry:
        """Append the audit entry for a single change event.

        Parameters:
            log: Audit log store bound to the open transaction
            record_id: Identifier of the record that was inserted or updated
            action: Kind of change (ActionTag or its string value)

        Returns:
            AuditEntry: The entry that was appended

        Raises:
            InvalidActionTag: If action is not INSERT or UPDATE (nothing is written)
            AuditWriteFailed: If the log store rejected the entry
        """
        action_tag = ActionTag.parse(action)

        try:
            created_at = self._next_timestamp(log, record_id)
            entry_id = log.append_entry(record_id, action_tag, created_at)
        except Exception as e:
            raise AuditWriteFailed(
                f"Failed to append audit entry for record {record_id} ({action_tag.value}): {str(e)}",
                record_id=record_id,
                action=action_tag
            ) from e

        logger.debug(
            f"Logged change: students.{record_id} ({action_tag.value}) as entry {entry_id}",
            extra={"extra_fields": {"record_id": record_id, "action": action_tag.value, "entry_id": entry_id}}
        )

        return AuditEntry(
            entry_id=entry_id,
            record_id=record_id,
            action=action_tag,
            created_at=created_at,
        )

    def _next_timestamp(self, log: AuditLogPort, record_id: int) -> datetime:
        """Return a timestamp that never precedes the record's previous entry.

        The log columns are TIMESTAMP without time zone, so aware clock
        readings are stored as naive UTC.
        """
        now = _as_naive_utc(self._clock())
        last = log.last_timestamp(record_id)
        if last is not None:
            last = _as_naive_utc(last)
        if last is not None and now < last:
            logger.warning(
                f"Clock moved backwards for record {record_id}; "
                f"reusing previous entry timestamp {last.isoformat()}"
            )
            return last
        return now


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
