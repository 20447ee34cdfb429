"""
Invoice Analytics Service
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Record Store Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_", populate_by_name=True)

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="invoicing", description="Database name")
    user: str = Field(default="invoicing", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    query_timeout: float = Field(default=10.0, description="Per-query timeout in seconds")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Database URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL, DATABASE_URL wins when set"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis Cache Configuration"""

    model_config = SettingsConfigDict(env_prefix="REDIS_", populate_by_name=True)

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=100, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class CacheSettings(BaseSettings):
    """Analytics Response Cache Configuration"""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    backend: str = Field(default="redis", description="Cache backend: redis or memory")
    key_prefix: str = Field(default="invoice-analytics", description="Prefix for every cache key")
    default_ttl: int = Field(default=300, description="Default TTL in seconds")
    overview_ttl: int = Field(default=300, description="Overview TTL in seconds")
    revenue_ttl: int = Field(default=600, description="Revenue trends TTL in seconds")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate cache backend"""
        allowed = ["redis", "memory"]
        if v.lower() not in allowed:
            raise ValueError(f"Cache backend must be one of: {allowed}")
        return v.lower()


class SecuritySettings(BaseSettings):
    """Security Configuration"""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    # Rate limiting
    rate_limit_requests: int = Field(default=100, alias="RATE_LIMIT_REQUESTS", description="Rate limit requests")
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS", description="Rate limit window")
    trusted_proxies: List[str] = Field(
        default=[],
        alias="TRUSTED_PROXIES",
        description="Peer addresses whose X-Forwarded-For is believed",
    )

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # Header carrying the organization resolved by the upstream auth layer
    org_header: str = Field(default="X-Org-ID", alias="ORG_HEADER", description="Organization header name")


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")
    prometheus_enabled: bool = Field(default=True, alias="PROMETHEUS_ENABLED", description="Expose /metrics")


class AnalyticsSettings(BaseSettings):
    """Aggregation Engine Configuration"""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    default_window_days: int = Field(default=30, description="Default overview window in days")
    trend_months: int = Field(default=12, description="Calendar months in the overview trend")
    top_customers_limit: int = Field(default=10, description="Top customers in the overview")
    recent_activity_limit: int = Field(default=10, description="Recent invoices in the overview")
    revenue_customers_limit: int = Field(default=20, description="Customers in revenue trends")
    services_limit: int = Field(default=15, description="Services in revenue trends")
    dashboard_recent_limit: int = Field(default=5, description="Recent invoices on the dashboard")


class MetricsSettings(BaseSettings):
    """Client Performance Metrics Configuration"""

    model_config = SettingsConfigDict(env_prefix="METRICS_")

    enabled: bool = Field(default=True, description="Accept client performance samples")
    recent_window_size: int = Field(default=10, description="Values kept in each recent window")
    thresholds: Dict[str, float] = Field(
        default={
            "api_request_duration": 2000.0,
            "resource_load_time": 3000.0,
            "memory_used": 100.0,
            "long_task_duration": 50.0,
        },
        description="Maximum acceptable average per metric name",
    )
    trend_min_samples: int = Field(default=5, description="Samples needed before trend checks run")
    memory_slope_threshold: float = Field(default=5.0, description="Memory growth per sample that flags a leak")
    degradation_factor: float = Field(default=1.5, description="Recent/lifetime ratio that flags API degradation")
    retain_across_batches: bool = Field(default=False, description="Keep an in-process rollup across batches")


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
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="invoice-analytics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")
    api_workers: int = Field(default=4, alias="API_WORKERS", description="API workers")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)

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
