"""Domain services for Student-Audit.

This package contains the services that sit between storage adapters and
the audit log:

- ChangeAuditor: appends one audit entry per committed change
- AuditVerifier: checks the log against the primary store
"""

from student_audit.domain.services.change_auditor import ChangeAuditor
from student_audit.domain.services.audit_verifier import AuditVerifier

__all__ = [
    "ChangeAuditor",
    "AuditVerifier",
]
