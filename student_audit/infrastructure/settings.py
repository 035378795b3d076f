"""Application Settings and Configuration.

This module provides application-wide settings that combine configuration
from the configuration manager with application-specific defaults.

Security Impact:
    - Database credentials are managed via DatabaseConfig (SecretStr)
    - Sensitive values are never logged
"""

import os
from typing import Optional

from student_audit.infrastructure.config_manager import ConfigManager, DatabaseConfig

# Application metadata
APP_NAME = "Student-Audit"


class Settings:
    """Application settings loaded from configuration manager and environment.

    Environment Variables:
        - SA_APP_NAME: Application name used in log output
        - SA_LOG_LEVEL: Logging level (default INFO)
        - SA_LOG_JSON: Emit JSON log lines when "true"
    """

    def __init__(self):
        """Initialize settings from configuration manager and environment."""
        self._db_config: Optional[DatabaseConfig] = None
        self._config_manager: Optional[ConfigManager] = None

        self.app_name = os.getenv("SA_APP_NAME", APP_NAME)
        self.log_level = os.getenv("SA_LOG_LEVEL", "INFO")
        self.log_json = os.getenv("SA_LOG_JSON", "false").lower() == "true"

    @property
    def config_manager(self) -> ConfigManager:
        """Get configuration manager instance (loaded on first access)."""
        if self._config_manager is None:
            self._config_manager = ConfigManager.from_environment()
        return self._config_manager

    @property
    def db_config(self) -> DatabaseConfig:
        """Get database configuration (loaded on first access)."""
        if self._db_config is None:
            self._db_config = self.config_manager.get_database_config()
        return self._db_config

    def get_db_path(self) -> str:
        """Get database path for DuckDB.

        Returns:
            Database path or ':memory:' for in-memory database
        """
        if self.db_config.db_type == "duckdb":
            return self.db_config.db_path or ":memory:"
        raise ValueError(f"Database type '{self.db_config.db_type}' does not use db_path")


# Global settings instance
settings = Settings()
