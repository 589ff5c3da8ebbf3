"""Application configuration."""

from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="Slotbook API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./slotbook.db",
        alias="DATABASE_URL",
    )

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

    # JWT (staff endpoints)
    jwt_secret_key: str = Field(
        default="development-only-secret-change-me",
        alias="JWT_SECRET_KEY",
    )
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:5173",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    # Scheduling
    business_open_hour: int = Field(default=8, ge=0, le=23, alias="BUSINESS_OPEN_HOUR")
    business_close_hour: int = Field(default=20, ge=0, le=23, alias="BUSINESS_CLOSE_HOUR")
    slot_interval_minutes: int = Field(default=30, gt=0, alias="SLOT_INTERVAL_MINUTES")
    min_lead_time_minutes: int = Field(default=30, ge=0, alias="MIN_LEAD_TIME_MINUTES")
    business_timezone: str = Field(default="America/La_Paz", alias="BUSINESS_TIMEZONE")
    default_appointment_duration_minutes: int = Field(
        default=60,
        gt=0,
        alias="DEFAULT_APPOINTMENT_DURATION_MINUTES",
    )

    # Snapshot refresh
    snapshot_poll_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        alias="SNAPSHOT_POLL_INTERVAL_SECONDS",
    )
    snapshot_min_refresh_interval_seconds: float = Field(
        default=2.0,
        ge=0,
        alias="SNAPSHOT_MIN_REFRESH_INTERVAL_SECONDS",
    )
    snapshot_visibility_delay_seconds: float = Field(
        default=0.5,
        ge=0,
        alias="SNAPSHOT_VISIBILITY_DELAY_SECONDS",
    )

    # Availability re-check
    availability_debounce_seconds: float = Field(
        default=0.5,
        ge=0,
        alias="AVAILABILITY_DEBOUNCE_SECONDS",
    )

    # Payments and invoices
    transaction_prefix: str = Field(default="PAY", alias="TRANSACTION_PREFIX")
    invoice_prefix: str = Field(default="INV", alias="INVOICE_PREFIX")
    currency_code: str = Field(default="BOB", alias="CURRENCY_CODE")
    business_display_name: str = Field(default="Slotbook Studio", alias="BUSINESS_DISPLAY_NAME")
    catalog_cache_ttl_seconds: int = Field(default=300, ge=0, alias="CATALOG_CACHE_TTL_SECONDS")
    notification_retention_hours: int = Field(
        default=24,
        gt=0,
        alias="NOTIFICATION_RETENTION_HOURS",
    )

    # HTTP collaborator client
    api_base_url: str = Field(default="http://localhost:8000/api/v1", alias="API_BASE_URL")
    api_timeout_seconds: float = Field(default=10.0, gt=0, alias="API_TIMEOUT_SECONDS")

    @property
    def tz(self) -> ZoneInfo:
        """Business timezone used for wall-clock slot arithmetic."""
        return ZoneInfo(self.business_timezone)

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
