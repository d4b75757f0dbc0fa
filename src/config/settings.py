"""
POS Sales Analytics
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="pos_analytics", alias="POSTGRES_DB", description="Database name")
    user: str = Field(default="pos", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Full async database URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL for asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class PosApiSettings(BaseSettings):
    """Remote POS API client configuration"""

    model_config = SettingsConfigDict(env_prefix="POS_API_")

    base_url: str = Field(default="https://connect.squareup.com", description="POS API base URL")
    access_token: Optional[SecretStr] = Field(default=None, description="Bearer access token")
    api_version: str = Field(default="2025-08-20", description="Value sent in the API version header")
    version_header: str = Field(default="Square-Version", description="API version header name")
    timeout_seconds: float = Field(default=30.0, description="HTTP timeout per request")

    # Pagination
    page_size: int = Field(default=1000, description="Orders per search page")

    # Throttling between consecutive requests
    throttle_base_seconds: float = Field(default=0.2, description="Base delay between requests")
    throttle_jitter_seconds: float = Field(default=0.1, description="Max random jitter added to the base delay")

    # Backoff
    backoff_base_seconds: float = Field(default=1.0, description="Backoff base, doubled per attempt")
    backoff_jitter_seconds: float = Field(default=1.0, description="Max random jitter added to each backoff")
    rate_limit_max_retries: int = Field(default=5, description="Retries allowed on HTTP 429")
    transport_max_retries: int = Field(default=3, description="Retries allowed on transport failures")

    default_currency: str = Field(default="CAD", description="Currency used when a payload omits one")


class WebhookSettings(BaseSettings):
    """Inbound webhook configuration"""

    model_config = SettingsConfigDict(env_prefix="POS_WEBHOOK_")

    signature_key: Optional[SecretStr] = Field(default=None, description="Shared HMAC secret")
    notification_url: str = Field(
        default="https://localhost:8000/api/webhooks/pos",
        description="Callback URL registered with the POS, part of the signed payload",
    )
    production_marker: str = Field(default="Production", description="Expected environment header value")
    signature_header: str = Field(default="x-signature", description="Signature header name")
    environment_header: str = Field(default="environment", description="Environment header name")
    retry_header: str = Field(default="retry-number", description="Retry counter header name")
    resolve_catalog: bool = Field(
        default=False,
        description="Pull the full catalog for each webhook instead of name-based inference",
    )


class SyncSettings(BaseSettings):
    """Historical / incremental sync configuration"""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    full_sync_days: int = Field(default=730, description="Lookback window for a full sync")
    incremental_overlap_hours: int = Field(default=1, description="Overlap with the previous window")
    incremental_default_hours: int = Field(default=24, description="Window when no previous run exists")
    order_states: List[str] = Field(default=["COMPLETED"], description="Order states pulled by the search")


class SecuritySettings(BaseSettings):
    """Security Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")

    enable_metrics: bool = Field(default=True, alias="ENABLE_METRICS", description="Expose /metrics")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="pos-sales-analytics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    pos_api: PosApiSettings = Field(default_factory=PosApiSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
