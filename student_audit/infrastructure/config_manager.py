"""Configuration Manager for Database Settings.

This module loads database connection settings from environment variables or
a JSON file and validates them before any adapter is constructed.

Security Impact:
    - Passwords and connection strings are held as SecretStr and never logged
    - Configuration is validated before use (fail-fast)

Architecture:
    - Infrastructure layer, isolated from the domain
    - Type-safe configuration using Pydantic models
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, quote_plus, unquote, urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

logger = logging.getLogger(__name__)

SUPPORTED_DB_TYPES = ["duckdb", "postgresql"]


class DatabaseConfig(BaseModel):
    """Database configuration model with secure credential handling.

    Parameters:
        db_type: Type of database ('duckdb' or 'postgresql')
        db_path: Path to database file (DuckDB only, ':memory:' allowed)
        host: Database host (PostgreSQL)
        port: Database port (PostgreSQL)
        database: Database name (PostgreSQL)
        username: Database username
        password: Database password (SecretStr - never logged)
        connection_string: Full connection string (SecretStr - never logged)
        ssl_mode: SSL mode for secure connections
        pool_size: Connection pool size
        max_overflow: Maximum connection pool overflow
    """

    db_type: str = Field(..., description="Database type (duckdb, postgresql)")
    db_path: Optional[str] = Field(None, description="Path to database file (for DuckDB)")
    host: Optional[str] = Field(None, description="Database host")
    port: Optional[int] = Field(None, description="Database port")
    database: Optional[str] = Field(None, description="Database name")
    username: Optional[str] = Field(None, description="Database username")
    password: Optional[SecretStr] = Field(None, description="Database password (secret)")
    connection_string: Optional[SecretStr] = Field(None, description="Full connection string (secret)")
    ssl_mode: Optional[str] = Field(None, description="SSL mode (require, prefer, disable)")
    pool_size: int = Field(default=5, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum connection pool overflow")

    @field_validator("db_type")
    @classmethod
    def validate_db_type(cls, v: str) -> str:
        """Validate database type."""
        if v.lower() not in SUPPORTED_DB_TYPES:
            raise ValueError(f"Unsupported database type: {v}. Supported: {SUPPORTED_DB_TYPES}")
        return v.lower()

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Optional[str]) -> Optional[str]:
        """Validate database directory exists (if a path is provided)."""
        if v is None or v == ":memory:":
            return v

        db_path_obj = Path(v)
        # The file itself may not exist yet
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")

        return str(db_path_obj)

    @staticmethod
    def _parse_postgresql_connection_string(conn_str: str) -> Dict[str, Any]:
        """Parse a postgresql:// (or postgres://) URL into its components.

        Parameters:
            conn_str: PostgreSQL connection string

        Returns:
            Dictionary with host, port, database, username, password, ssl_mode
        """
        parsed = urlparse(conn_str)

        if parsed.scheme not in ['postgresql', 'postgres']:
            raise ValueError(f"Unsupported connection string scheme: {parsed.scheme}")

        result = {
            'host': parsed.hostname,
            'port': parsed.port,
            'database': parsed.path.lstrip('/') if parsed.path else None,
            'username': unquote(parsed.username) if parsed.username else None,
            'password': unquote(parsed.password) if parsed.password else None,
        }

        query_params = parse_qs(parsed.query)
        if 'sslmode' in query_params:
            result['ssl_mode'] = query_params['sslmode'][0]

        return result

    @model_validator(mode='after')
    def sync_connection_string_and_fields(self) -> 'DatabaseConfig':
        """Synchronize connection string and individual fields.

        A connection string always takes precedence over individual fields.
        Without one, a connection string is built from host and database.
        """
        if self.db_type != "postgresql":
            return self

        if self.connection_string:
            try:
                parsed = self._parse_postgresql_connection_string(
                    self.connection_string.get_secret_value()
                )
            except ValueError as e:
                logger.warning(f"Failed to parse connection string, using as-is: {str(e)}")
                return self

            for field_name in ('host', 'port', 'database', 'username', 'ssl_mode'):
                if parsed.get(field_name):
                    setattr(self, field_name, parsed[field_name])
            if parsed.get('password'):
                self.password = SecretStr(parsed['password'])

        elif self.host and self.database:
            self.connection_string = SecretStr(self._build_connection_string(encode=True))

        return self

    def _build_connection_string(self, encode: bool = False) -> str:
        password_part = ""
        if self.password:
            password_value = self.password.get_secret_value()
            password_part = f":{quote_plus(password_value) if encode else password_value}"

        username_part = self.username or ""
        if encode and self.username:
            username_part = quote_plus(self.username)

        ssl_part = f"?sslmode={self.ssl_mode}" if self.ssl_mode else ""

        return f"postgresql://{username_part}{password_part}@{self.host}:{self.port or 5432}/{self.database}{ssl_part}"

    def get_connection_string(self) -> str:
        """Get connection string for database.

        Returns:
            ':memory:' or the file path for DuckDB; a postgresql:// URL otherwise

        Security Impact:
            - Password is retrieved from SecretStr but not logged
        """
        if self.connection_string:
            return self.connection_string.get_secret_value()

        if self.db_type == "duckdb":
            return self.db_path or ":memory:"

        if not all([self.host, self.database]):
            raise ValueError(f"{self.db_type} requires host and database")

        return self._build_connection_string()


class ConfigManager:
    """Configuration manager for database settings.

    Example Usage:
        ```python
        # Load from environment variables
        config = ConfigManager.from_environment()
        db_config = config.get_database_config()

        # Load from file
        config = ConfigManager.from_file("config.json")
        db_config = config.get_database_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        """Initialize configuration manager.

        Parameters:
            config_data: Configuration dictionary
        """
        self._config_data = config_data
        self._database_config: Optional[DatabaseConfig] = None

    @classmethod
    def from_environment(cls) -> 'ConfigManager':
        """Load configuration from environment variables.

        Environment Variables:
            - SA_DB_TYPE: Database type (duckdb, postgresql), default duckdb
            - SA_DB_PATH: Path to database file (for DuckDB)
            - SA_DB_HOST: Database host
            - SA_DB_PORT: Database port
            - SA_DB_NAME: Database name
            - SA_DB_USER: Database username
            - SA_DB_PASSWORD: Database password (secret)
            - SA_DB_CONNECTION_STRING: Full connection string (secret)
            - SA_DB_SSL_MODE: SSL mode

        A .env file in the project root is loaded first when present.

        Returns:
            ConfigManager instance
        """
        env_path = Path(__file__).parent.parent.parent / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.debug(f"Loaded environment variables from {env_path}")

        config_data = {
            "database": {
                "db_type": os.getenv("SA_DB_TYPE", "duckdb"),
                "db_path": os.getenv("SA_DB_PATH"),
                "host": os.getenv("SA_DB_HOST"),
                "port": int(os.getenv("SA_DB_PORT")) if os.getenv("SA_DB_PORT") else None,
                "database": os.getenv("SA_DB_NAME"),
                "username": os.getenv("SA_DB_USER"),
                "password": os.getenv("SA_DB_PASSWORD"),
                "connection_string": os.getenv("SA_DB_CONNECTION_STRING"),
                "ssl_mode": os.getenv("SA_DB_SSL_MODE"),
            }
        }

        return cls(config_data)

    @classmethod
    def from_file(cls, config_path: str) -> 'ConfigManager':
        """Load configuration from a JSON file.

        Parameters:
            config_path: Path to configuration file

        Returns:
            ConfigManager instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        # Credential files should be 600
        if config_file.stat().st_mode & 0o077 != 0:
            logger.warning(
                f"Configuration file has overly permissive permissions: {config_path}. "
                "Consider setting to 600 for credential files."
            )

        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {str(e)}")

        return cls(config_data)

    def get_database_config(self) -> DatabaseConfig:
        """Get validated database configuration.

        Returns:
            DatabaseConfig instance
        """
        if self._database_config is None:
            db_config_data = {
                key: value
                for key, value in self._config_data.get("database", {}).items()
                if value is not None
            }
            db_config_data.setdefault("db_type", "duckdb")
            self._database_config = DatabaseConfig(**db_config_data)

        return self._database_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Parameters:
            key: Configuration key (supports dot notation, e.g., "database.host")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        value = self._config_data

        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default


def get_database_config() -> DatabaseConfig:
    """Load database configuration from the environment.

    Defaults to an in-memory DuckDB database when nothing is configured.

    Returns:
        DatabaseConfig instance
    """
    return ConfigManager.from_environment().get_database_config()
