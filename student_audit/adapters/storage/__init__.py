"""Storage adapters for Student-Audit.

This module contains storage adapters that implement the StoragePort interface
for persisting student records together with their audit trail.
"""

from student_audit.adapters.storage.duckdb_adapter import DuckDBAdapter
from student_audit.adapters.storage.postgres_adapter import PostgresAdapter

__all__ = ["DuckDBAdapter", "PostgresAdapter"]
