"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.

Scoring weights, mappings and penalty parameters are NOT configured here:
they live in the settings table and are read on every scoring call
(see portalscore.services.scoring_config).
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Auth for admin routes, the scheduler entry point and tracking webhooks
    admin_api_key: str = ""
    cron_secret: str = ""
    webhook_secret: str = ""

    # Sentry
    sentry_dsn: str = ""

    # Alerting
    alert_webhook_url: str = ""  # Discord/Slack webhook URL for critical alerts

    # Deal confidence batch recalculation
    pipeline_scorer_enabled: bool = True
    pipeline_scorer_interval_seconds: int = 86400
    pipeline_batch_size: int = 25
    pipeline_batch_delay_ms: int = 200
    pipeline_stale_after_hours: int = 23
    pipeline_batch_timeout_seconds: int = 300

    # Client performance scoring
    performance_refresh_enabled: bool = True
    performance_refresh_interval_seconds: int = 3600
    performance_cache_ttl_seconds: int = 3600

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
