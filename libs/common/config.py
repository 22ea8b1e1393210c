from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "test", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    DEFAULT_CURRENCY: str = "EUR"
    ORDER_NUMBER_PREFIX: str = "ORD"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Redis (arq scheduler + cache invalidation)
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_INVALIDATION_ENABLED: bool = True
    CACHE_INVALIDATION_CHANNEL: str = "orders:cache-invalidation"
    RATE_LIMIT_ENABLED: bool = True

    # Auth
    # Default placeholder keeps local/test runs working without real credentials.
    SUPABASE_JWT_SECRET: str = "test-jwt-secret"

    # Payment processor
    PAYMENT_WEBHOOK_SECRET: str = "test-webhook-secret"
    PAYMENT_PROCESSOR_URL: str = "https://api.payments.example.com"
    PAYMENT_PROCESSOR_API_KEY: str = ""
    PAYMENT_PROCESSOR_TIMEOUT_SECONDS: float = 10.0

    # Notifications (communications service)
    COMMUNICATIONS_SERVICE_URL: str = "http://communications-service:8004"
    NOTIFICATIONS_ENABLED: bool = True
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    # Abandoned order sweep
    ABANDONED_REMINDER_HOURS: int = 24
    ABANDONED_CANCEL_HOURS: int = 72
    SWEEP_BATCH_SIZE: int = 100
    SWEEP_QUERY_TIMEOUT_SECONDS: float = 30.0

    # Processed webhook event retention
    EVENT_RETENTION_DAYS: int = 90
    FAILED_EVENT_RETENTION_DAYS: int = 180
    EVENT_CLEANUP_BATCH_SIZE: int = 1000

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
