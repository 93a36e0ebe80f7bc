from pathlib import Path
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False

    # Database settings
    DATABASE_URL: str

    # Member authentication (Supabase JWKS)
    SUPABASE_URL: str
    SUPABASE_JWKS_URL: str | None = None

    # Redis settings (optional, used for the reminder run lock)
    REDIS_URL: str | None = None

    # Shared secret for the external daily trigger
    CRON_SECRET: str | None = None

    # Notification service (message composition and transport live there)
    NOTIFICATION_SERVICE_URL: str | None = None
    NOTIFICATION_SERVICE_TOKEN: str | None = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    # =================================================================
    # SCHEDULING SETTINGS
    # =================================================================
    ORG_TIMEZONE: str = "UTC"
    RECURRENCE_HORIZON_DAYS: int = 365  # open-ended series are expanded this far
    RECURRENCE_PREVIEW_LIMIT: int = 50
    REMINDER_MAX_CONCURRENT_EVENTS: int = 10
    REMINDER_LOCK_TTL_SECONDS: int = 900  # 15 minutes

    # =================================================================
    # DATABASE POOL SETTINGS - Simple and configurable
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # derive sensible defaults if not provided
    def jwks_url(self) -> str:
        if self.SUPABASE_JWKS_URL:
            return self.SUPABASE_JWKS_URL
        base = self.SUPABASE_URL.rstrip("/")
        return f"{base}/auth/v1/.well-known/jwks.json"

    def database_host(self) -> str | None:
        """Host part of DATABASE_URL, safe to log."""
        try:
            return urlparse(self.DATABASE_URL).hostname
        except Exception:
            return None

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            # More conservative for local development
            config.update(
                {
                    "min_size": 1,
                    "max_size": 4,
                    "timeout": 15.0,
                }
            )

        return config

    def get_reminder_config(self) -> dict:
        """Knobs for the reminder dispatcher, grouped for logging."""
        return {
            "timezone": self.ORG_TIMEZONE,
            "max_concurrent_events": self.REMINDER_MAX_CONCURRENT_EVENTS,
            "lock_ttl_seconds": self.REMINDER_LOCK_TTL_SECONDS,
            "lock_enabled": bool(self.REDIS_URL),
            "notifications_configured": bool(self.NOTIFICATION_SERVICE_URL),
        }


settings = Settings()
