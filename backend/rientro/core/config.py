"""
Configuration management using Pydantic Settings.
Loads environment variables from .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Rientro Engine"
    app_version: str = "0.1.0"
    debug: bool = False

    # CORS (the mobile app calls the trip endpoints directly)
    cors_origins: str = "*"

    # Supabase Configuration
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None  # Engine writes bypass RLS

    # Firebase Cloud Messaging (HTTP v1)
    fcm_project_id: Optional[str] = None
    fcm_access_token: Optional[str] = None
    fcm_endpoint: str = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"

    # Shared secret sent by the Supabase database webhook
    webhook_secret: Optional[str] = None

    # Scheduler Settings
    enable_scheduler: bool = True
    scheduler_timezone: str = "UTC"

    # Only ONE worker should run the scheduler, otherwise sweeps overlap
    run_scheduler: bool = False

    # Escalation timing (minutes)
    check_interval_minutes: int = 15
    grace_period_minutes: int = 5
    escalation_delay_minutes: int = 10
    sweep_interval_minutes: int = 5  # Independent of check_interval_minutes

    # Retention
    retention_days: int = 30
    retention_hour_utc: int = 3

    # Concurrency and per-call deadlines
    sweep_max_concurrency: int = 8
    dispatch_max_concurrency: int = 8
    store_call_timeout_seconds: float = 10.0
    push_call_timeout_seconds: float = 10.0

    # Job Monitoring
    job_failure_alert_threshold: int = 2  # Pause after this many failures

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def push_enabled(self) -> bool:
        """Check if FCM push is configured."""
        return bool(self.fcm_project_id and self.fcm_access_token)

    @property
    def store_configured(self) -> bool:
        """Check if Supabase is configured."""
        return bool(self.supabase_url and self.supabase_service_role_key)


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.
    Call this function to get application settings.
    """
    return Settings()


# Global settings instance
settings = get_settings()
