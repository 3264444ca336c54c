from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "Alumni Tenant Sync"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database settings
    DATABASE_URL: str = "postgresql+psycopg2://localhost:5432/alumni"
    DATABASE_ECHO: bool = False
    DEFAULT_SCHEMA: str = "public"

    # Redis settings (sync locks and status cache)
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_KEY_PREFIX: str = "tenant_sync"

    # Sync engine settings
    SYNC_MAX_RETRY_ATTEMPTS: int = 3
    SYNC_LOCK_TTL_SECONDS: int = 3600
    SYNC_BATCH_SIZE: int = 100
    SYNC_RETENTION_DAYS: int = 90
    SYNC_STATUS_WINDOW_HOURS: int = 24
    SYNC_RETRY_LIMIT: int = 50
    SYNC_STATUS_CACHE_TTL_SECONDS: int = 60

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        return v

    @field_validator(
        "SYNC_MAX_RETRY_ATTEMPTS",
        "SYNC_LOCK_TTL_SECONDS",
        "SYNC_BATCH_SIZE",
        "SYNC_RETENTION_DAYS",
        "SYNC_STATUS_WINDOW_HOURS",
        "SYNC_RETRY_LIMIT",
    )
    @classmethod
    def validate_positive(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v):
        return v.upper()


settings = Settings()
