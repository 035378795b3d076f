"""Storage factory for Student-Audit.

Selects and constructs the storage adapter named by the configuration
(DuckDB by default, PostgreSQL when SA_DB_TYPE=postgresql).

Architecture:
    - Follows Hexagonal Architecture principles
    - Storage adapter is configured via configuration manager
    - Every adapter is wired to a ChangeAuditor for its write path
"""

import logging
from typing import Optional

from student_audit.adapters.storage import DuckDBAdapter, PostgresAdapter
from student_audit.domain.ports import StoragePort
from student_audit.domain.services.change_auditor import ChangeAuditor
from student_audit.infrastructure.config_manager import DatabaseConfig, get_database_config

logger = logging.getLogger(__name__)


def create_storage_adapter(
    db_config: Optional[DatabaseConfig] = None,
    auditor: Optional[ChangeAuditor] = None
) -> StoragePort:
    """Create storage adapter based on configuration.

    Parameters:
        db_config: Database configuration (loaded from environment if omitted)
        auditor: ChangeAuditor to wire into the adapter (default instance if omitted)

    Returns:
        StoragePort: Configured storage adapter instance

    Raises:
        ValueError: If database type is unsupported
    """
    db_config = db_config or get_database_config()
    auditor = auditor or ChangeAuditor()

    if db_config.db_type == "duckdb":
        logger.info(f"Initializing DuckDB adapter with path: {db_config.db_path or ':memory:'}")
        return DuckDBAdapter(db_config=db_config, auditor=auditor)
    elif db_config.db_type == "postgresql":
        logger.info(f"Initializing PostgreSQL adapter with host: {db_config.host}")
        return PostgresAdapter(db_config=db_config, auditor=auditor)
    else:
        raise ValueError(f"Unsupported database type: {db_config.db_type}")
