"""Core configuration - centralized config for the nonce ledger.

All environment-based configuration should flow through this module.
This provides a single source of truth and consistent defaults.

Usage:
    from nonce_ledger.config import get_config
    config = get_config()

    # Access settings
    table = config.table_name
    window = config.retention_window
"""

from __future__ import annotations

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError


class LedgerSettings(BaseSettings):
    """Configuration settings for the nonce ledger.

    Settings can be configured via environment variables with the
    NONCE_LEDGER_ prefix, or a .env file in the working directory.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ==========================================================================
    # DATABASE SETTINGS
    # ==========================================================================

    db_host: str = Field(
        default="localhost",
        description="Database host",
        validation_alias="NONCE_LEDGER_DB_HOST",
    )
    db_port: int = Field(
        default=5432,
        description="Database port",
        validation_alias="NONCE_LEDGER_DB_PORT",
    )
    db_name: str = Field(
        default="nonce_ledger",
        description="Database name",
        validation_alias="NONCE_LEDGER_DB_NAME",
    )
    db_user: str = Field(
        default="postgres",
        description="Database user",
        validation_alias="NONCE_LEDGER_DB_USER",
    )
    db_password: str = Field(
        default="",
        description="Database password",
        validation_alias="NONCE_LEDGER_DB_PASSWORD",
    )

    # Connection pool settings
    db_pool_min: int = Field(
        default=1,
        description="Minimum pool connections",
        validation_alias="NONCE_LEDGER_DB_POOL_MIN",
    )
    db_pool_max: int = Field(
        default=10,
        description="Maximum pool connections",
        validation_alias="NONCE_LEDGER_DB_POOL_MAX",
    )

    # ==========================================================================
    # LEDGER SETTINGS
    # ==========================================================================

    # Also names the table migrations/001 creates, so migrate with the same value
    table_name: str = Field(
        default="nonce_store",
        description="Table holding consumed nonces",
        validation_alias="NONCE_LEDGER_TABLE_NAME",
    )
    retention_window: float = Field(
        default=5400,
        ge=0,
        description="Seconds a consumed nonce stays blocked before eviction",
        validation_alias="NONCE_LEDGER_RETENTION_WINDOW",
    )
    freshness_window: int = Field(
        default=5400,
        gt=0,
        description="Seconds a timestamp may lag the current time",
        validation_alias="NONCE_LEDGER_FRESHNESS_WINDOW",
    )
    sweep_interval: int = Field(
        default=0,
        ge=0,
        description="Seconds between background sweeps (0 disables the sweeper)",
        validation_alias="NONCE_LEDGER_SWEEP_INTERVAL",
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="NONCE_LEDGER_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="NONCE_LEDGER_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="NONCE_LEDGER_LOG_FILE",
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        return v.upper()

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def database_url(self) -> str:
        """Construct database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def connection_params(self) -> dict[str, str | int]:
        """Get database connection parameters dict (psycopg2 naming)."""
        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
        }

    @property
    def pool_config(self) -> dict[str, int]:
        """Get connection pool configuration."""
        return {
            "minconn": self.db_pool_min,
            "maxconn": self.db_pool_max,
        }


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: LedgerSettings | None = None


def get_config() -> LedgerSettings:
    """Get the global configuration instance.

    Returns:
        The singleton LedgerSettings instance.

    Raises:
        ConfigError: If an environment variable holds an invalid value
    """
    global _config
    if _config is None:
        try:
            _config = LedgerSettings()
        except ValidationError as e:
            bad = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
            raise ConfigError(f"Invalid configuration: {', '.join(bad)}", missing_vars=bad) from e
    return _config


def set_config(config: LedgerSettings) -> None:
    """Set the global configuration instance.

    Useful for testing or custom configuration.

    Args:
        config: The LedgerSettings instance to use.
    """
    global _config
    _config = config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None
