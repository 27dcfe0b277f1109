"""Centralized configuration management for BankBridge.

This module provides a Pydantic Settings-based configuration system that
consolidates aggregator credentials, storage, encryption, categorization and
logging settings with environment variable integration and validation.
"""

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseModel):
    """Database configuration settings."""

    model_config = ConfigDict(frozen=True)

    path: Path = Field(
        default=Path("data/duckdb/bankbridge.duckdb"),
        description="Path to DuckDB database file (':memory:' for tests)",
    )
    create_dirs: bool = Field(
        default=True, description="Automatically create database directories"
    )

    @field_validator("path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Ensure database path has correct extension."""
        if str(v) == ":memory:":
            return v
        if not str(v).endswith((".db", ".duckdb")):
            raise ValueError("Database path must end with .db or .duckdb")
        return v


class AggregatorConfig(BaseModel):
    """Open-banking aggregator (GoCardless Bank Account Data) settings."""

    model_config = ConfigDict(frozen=True)

    secret_id: str = Field(default="", description="Aggregator secret id")
    secret_key: str = Field(default="", description="Aggregator secret key")
    environment: Literal["sandbox", "production"] = Field(
        default="production", description="Aggregator environment"
    )
    country: str = Field(
        default="GB",
        min_length=2,
        max_length=2,
        description="Default country for the institution directory",
    )
    redirect_url: str = Field(
        default="http://localhost:8084/api/v1/banking/callback",
        description="Where the aggregator sends the user after consent",
    )
    timeout_seconds: float = Field(
        default=20.0, ge=1.0, le=120.0, description="HTTP request timeout"
    )
    history_days: int = Field(
        default=90,
        ge=1,
        le=730,
        description="Days of history fetched on an account's first sync",
    )
    connection_lifetime_days: int = Field(
        default=90, ge=1, le=180, description="Lifetime of a bank connection"
    )
    auth_link_ttl_seconds: int = Field(
        default=300, ge=60, description="Lifetime of the consent redirect link"
    )


class VaultConfig(BaseModel):
    """Credential vault (envelope encryption) settings."""

    model_config = ConfigDict(frozen=True)

    master_secret: str = Field(
        default="", description="Master secret protecting data keys"
    )
    key_id: str = Field(
        default="banking-data-key", description="Identifier of the master key"
    )
    salt: str = Field(
        default="bankbridge-vault", description="Salt for master key derivation"
    )


class CategorizationConfig(BaseModel):
    """Transaction categorization settings."""

    model_config = ConfigDict(frozen=True)

    ml_enabled: bool = Field(
        default=False, description="Call the classifier oracle before rules"
    )
    model: str = Field(default="gpt-4o-mini", description="Classifier model name")
    confidence_threshold: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Minimum accepted confidence"
    )
    history_size: int = Field(
        default=100, ge=0, le=1000, description="User history sampled for context"
    )


class SubscriptionConfig(BaseModel):
    """Subscription detection settings."""

    model_config = ConfigDict(frozen=True)

    lookback_days: int = Field(
        default=180, ge=30, le=730, description="History window for detection"
    )
    max_transactions: int = Field(
        default=5000,
        ge=10,
        description="Upper bound on transactions scanned per detection run",
    )


class LoggingConfig(BaseModel):
    """Logging configuration settings."""

    model_config = ConfigDict(frozen=True)

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_to_file: bool = Field(default=False, description="Enable file logging")
    log_file_path: Path = Field(
        default=Path("logs/bankbridge.log"), description="Path to log file"
    )
    max_file_size_mb: int = Field(
        default=50, ge=1, le=1000, description="Maximum log file size in MB"
    )
    backup_count: int = Field(
        default=5, ge=1, le=50, description="Number of log file backups to keep"
    )


class BankBridgeSettings(BaseSettings):
    """Main application settings with environment variable integration.

    Environment variables are loaded with the BANKBRIDGE_ prefix.
    For nested configs, use double underscores: BANKBRIDGE_AGGREGATOR__COUNTRY
    """

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    categorization: CategorizationConfig = Field(
        default_factory=CategorizationConfig
    )
    subscriptions: SubscriptionConfig = Field(default_factory=SubscriptionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    debug: bool = Field(default=False, description="Enable debug mode")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Application environment"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BANKBRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    def __init__(self, **kwargs: Any):
        """Initialize settings with legacy environment variable overrides.

        Args:
            **kwargs: Additional configuration overrides
        """
        if "aggregator" not in kwargs:
            secret_id = os.getenv("GOCARDLESS_SECRET_ID")
            secret_key = os.getenv("GOCARDLESS_SECRET_KEY")
            if secret_id and secret_key:
                aggregator: dict[str, Any] = {
                    "secret_id": secret_id,
                    "secret_key": secret_key,
                }
                env = os.getenv("GOCARDLESS_ENV")
                if env in ("sandbox", "production"):
                    aggregator["environment"] = env
                kwargs["aggregator"] = AggregatorConfig(**aggregator)

        super().__init__(**kwargs)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate application environment."""
        if v == "production" and os.getenv("DEBUG", "").lower() in ("true", "1"):
            raise ValueError("DEBUG mode cannot be enabled in production")
        return v

    def create_directories(self) -> None:
        """Create necessary directories for the application."""
        directories: list[Path] = []
        if str(self.database.path) != ":memory:":
            directories.append(self.database.path.parent)
        if self.logging.log_to_file:
            directories.append(self.logging.log_file_path.parent)

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

    def validate_required_credentials(self) -> None:
        """Validate that credentials needed to talk to the aggregator are present.

        Raises:
            ValueError: If any required credential is missing
        """
        errors: list[str] = []

        if not self.aggregator.secret_id:
            errors.append("GOCARDLESS_SECRET_ID is required")
        if not self.aggregator.secret_key:
            errors.append("GOCARDLESS_SECRET_KEY is required")
        if not self.vault.master_secret:
            errors.append("BANKBRIDGE_VAULT__MASTER_SECRET is required")

        if errors:
            raise ValueError(f"Missing required configuration: {', '.join(errors)}")


_settings: BankBridgeSettings | None = None


def get_settings() -> BankBridgeSettings:
    """Get the cached settings instance.

    Returns:
        BankBridgeSettings: The configuration instance

    Raises:
        ValueError: If configuration is invalid
    """
    global _settings

    if _settings is not None:
        return _settings

    try:
        settings = BankBridgeSettings()
    except Exception as e:
        raise ValueError(f"Configuration error: {e}") from e

    if settings.database.create_dirs:
        settings.create_directories()

    _settings = settings
    return settings


def reload_settings() -> BankBridgeSettings:
    """Reload settings from environment variables.

    Returns:
        BankBridgeSettings: The reloaded configuration instance
    """
    clear_settings_cache()
    return get_settings()


def clear_settings_cache() -> None:
    """Drop the cached settings so the next access reloads them."""
    global _settings
    _settings = None


def get_database_path() -> Path:
    """Get the configured database path.

    Returns:
        Path: The database path
    """
    return get_settings().database.path


def get_aggregator_config() -> AggregatorConfig:
    """Get the aggregator configuration.

    Returns:
        AggregatorConfig: The aggregator configuration
    """
    return get_settings().aggregator
