"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PRODUCTS_FILE = Path(__file__).with_name("products.json")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Steam Configuration
    steam_webkey: str = Field(..., description="Steam publisher Web API key")
    steam_app_id: str = Field(default="480", description="Steam App ID")
    steam_sandbox: bool = Field(
        default=False, description="Force the ISteamMicroTxnSandbox interface"
    )
    steam_partner_url: str = Field(
        default="https://partner.steam-api.com/", description="Steam partner API base URL"
    )
    steam_public_url: str = Field(
        default="https://api.steampowered.com/", description="Steam public API base URL"
    )
    steam_request_timeout: float = Field(
        default=10.0, gt=0, description="Per-call timeout for Steam requests (seconds)"
    )
    steam_retry_max_attempts: int = Field(
        default=3, ge=1, description="Max attempts for read-only Steam calls"
    )
    steam_retry_base_delay: float = Field(
        default=0.5, ge=0, description="Base delay for retry backoff (seconds)"
    )
    steam_circuit_failure_threshold: int = Field(
        default=5, ge=1, description="Consecutive failures before the circuit opens"
    )
    steam_circuit_reset_timeout: int = Field(
        default=60, ge=0, description="Seconds before an open circuit is retried"
    )

    # Purchases
    default_currency: str = Field(
        default="USD", description="Currency used when a product has no price in the requested one"
    )
    products_file: Optional[str] = Field(
        default=None, description="Path to the product catalog JSON file"
    )
    order_shard_id: int = Field(default=420, ge=0, description="Shard id packed into order ids")
    order_sequence_start: int = Field(
        default=100, ge=0, description="Initial value of the order id sequence counter"
    )

    # Database Configuration
    database_url: str = Field(..., description="Async SQLAlchemy connection URL")
    database_pool_size: int = Field(default=10, description="Database connection pool size")
    database_max_overflow: int = Field(default=20, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Reconciliation
    report_update_frequency: int = Field(
        default=5, ge=1, description="Minutes between reconciliation ticks"
    )
    report_safety_margin_seconds: int = Field(
        default=5, ge=0, description="Extra seconds added to the report window"
    )
    report_overlap_ticks: int = Field(
        default=1, ge=0, description="Previous intervals re-covered by every report window"
    )
    report_max_results: int = Field(
        default=10000, ge=1, description="Max orders requested per report"
    )
    report_type: str = Field(default="SUBSCRIPTION", description="Steam GetReport type")

    # Application Configuration
    app_name: str = Field(default="steam-billing", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")
    metrics_port: Optional[int] = Field(
        default=9100, description="Port for the Prometheus exporter (disabled if unset)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("steam_app_id")
    @classmethod
    def validate_app_id(cls, v: str) -> str:
        """Steam app ids are numeric."""
        if not v.isdigit():
            raise ValueError("Invalid Steam App ID. Must be numeric")
        return v

    @field_validator("default_currency")
    @classmethod
    def validate_default_currency(cls, v: str) -> str:
        """Validate currency format."""
        if len(v) != 3 or not v.isalpha():
            raise ValueError("Default currency must be a 3-letter code")
        return v.upper()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def use_sandbox(self) -> bool:
        """Development and test environments always talk to the sandbox."""
        return self.steam_sandbox or self.app_env.lower() in ("development", "test")

    @property
    def microtxn_interface(self) -> str:
        """Steam microtransaction interface name for the current mode."""
        return "ISteamMicroTxnSandbox" if self.use_sandbox else "ISteamMicroTxn"

    @property
    def products_path(self) -> Path:
        """Resolved path of the product catalog."""
        return Path(self.products_file) if self.products_file else DEFAULT_PRODUCTS_FILE


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
