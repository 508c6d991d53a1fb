"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:3000"
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Notification queue
    queue_poll_interval_seconds: float = 5.0
    queue_max_concurrent_jobs: int = 5
    queue_retention_days: int = 7
    queue_processing_lease_seconds: int = 900
    queue_autostart: bool = True  # Set false on processes that only enqueue

    # SendGrid
    sendgrid_api_key: str = ""
    sendgrid_from_email: str = "noreply@wilnaratrancas.com"
    sendgrid_from_name: str = "Wilnara Tranças"

    # Twilio
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    twilio_messaging_service_sid: str = ""

    # Push gateway
    push_gateway_url: str = ""
    push_gateway_token: str = ""

    # Outbound webhooks
    webhook_default_timeout_seconds: float = 30.0

    # Sentry
    sentry_dsn: str = ""

    # Queue admin endpoints. Empty leaves them open in development and closed elsewhere
    admin_api_key: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
