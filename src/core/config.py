"""
Core Configuration Module

pydantic-settings reads every knob from the environment (or ``.env``).
Secrets have placeholder defaults only; production must override them.
"""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    project_name: str = "Sparkbid"
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="development | testing | staging | production")
    debug: bool = Field(default=True, alias="APP_DEBUG")
    api_v1_str: str = "/api/v1"
    cors_origins: str = Field(default="http://localhost:3000", description="Comma-separated allowed origins")

    # Database
    database_url: str = Field(
        default="postgresql+asyncpg://sparkbid:sparkbid@db:5432/sparkbid",
        description="SQLAlchemy URL; plain postgresql:// is upgraded to asyncpg",
    )
    db_pool_size: int = Field(default=20, description="SQLAlchemy connection pool size")
    db_max_overflow: int = Field(default=10, description="Max overflow connections")
    db_lock_timeout_ms: int = Field(default=5000, description="PostgreSQL lock_timeout for row locks")
    db_echo: bool = Field(default=False, description="Echo SQL queries")
    run_db_init: bool = Field(default=False, description="create_all on startup (development only)")

    # Token verification; tokens are issued by the identity provider
    secret_key: str = Field(default="CHANGE_ME_IN_PRODUCTION", description="JWT signing key")
    algorithm: str = Field(default="HS256", description="JWT algorithm")
    access_token_expire_minutes: int = Field(default=60 * 24, description="Lifetime of locally minted tokens")

    # Celery
    celery_broker_url: str = Field(default="redis://redis:6379/0", description="Celery broker URL")
    celery_result_backend: str = Field(default="redis://redis:6379/1", description="Celery result backend")

    # Firebase Cloud Messaging
    firebase_credentials_path: str = Field(default="", description="Service account JSON; empty disables push")
    firebase_project_id: str = Field(default="", description="Firebase project ID")

    # Observability
    sentry_dsn: str = Field(default="", description="Sentry DSN; empty disables error reporting")
    sentry_traces_sample_rate: float = Field(default=0.1, description="Sentry traces sample rate")
    prometheus_enabled: bool = Field(default=True, description="Expose /metrics and record HTTP metrics")

    # Job / bid lifecycle
    default_currency: str = Field(default="TRY", description="Currency used for bids and escrow")
    escrow_funding_timeout_minutes: int = Field(
        default=30,
        description="Minutes an escrow may stay pending_funding before the job is cancelled",
    )
    escrow_sweep_interval_seconds: float = Field(default=300.0, description="Funding timeout sweep period")
    review_window_days: int = Field(default=14, description="Days after completion a review is accepted")
    payment_webhook_secret: str = Field(default="", description="Shared secret for payment capture callbacks")

    # Notification dispatcher
    push_max_attempts: int = Field(default=3, description="Push attempts before an event is dropped")
    push_retry_backoff_seconds: float = Field(default=0.5, description="Linear backoff between push attempts")
    notification_queue_size: int = Field(default=1000, description="Dispatcher queue capacity")
    session_queue_size: int = Field(default=100, description="Per live session outbound buffer")
    sse_heartbeat_seconds: float = Field(default=30.0, description="SSE keepalive interval")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
