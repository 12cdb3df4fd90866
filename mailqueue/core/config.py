"""Runtime settings for the mail queue service and its workers."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "mailqueue"
    ENVIRONMENT: str = "development"  # development|test|production
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    REDIS_URL: str = "redis://localhost:6379/0"

    # Queue
    QUEUE_BACKEND: str = "redis"  # redis|memory
    QUEUE_NAME: str = "email"
    QUEUE_KEY_PREFIX: str = "mailqueue"
    JOB_MAX_ATTEMPTS: int = 3
    JOB_BACKOFF_TYPE: str = "exponential"  # exponential|fixed
    JOB_BACKOFF_DELAY_SECONDS: float = 2.0
    JOB_LEASE_SECONDS: float = 30.0

    # Worker
    WORKER_CONCURRENCY: int = 5
    WORKER_POLL_INTERVAL_SECONDS: float = 1.0
    WORKER_SHUTDOWN_TIMEOUT_SECONDS: float = 30.0
    WORKER_JOB_TIMEOUT_SECONDS: Optional[float] = None
    WORKER_METRICS_PORT: int = 0
    RUN_EMBEDDED_WORKER: bool = False

    # Mail transport
    MAIL_BACKEND: str = "log"  # log|http
    MAIL_API_URL: str = ""
    MAIL_API_KEY: str = ""
    MAIL_FROM_NAME: str = "E-Commerce Store"
    MAIL_FROM_ADDRESS: str = "no-reply@localhost"
    MAIL_TIMEOUT_SECONDS: float = 10.0
    FRONTEND_URL: str = "http://localhost:3000"
    STORE_NAME: str = "ModernShop"

    # Operator dashboard / cleanup
    DASHBOARD_FAILED_THRESHOLD: int = 10
    DASHBOARD_RECENT_FAILURES: int = 5
    CLEAN_COMPLETED_GRACE_SECONDS: float = 5.0
    CLEAN_FAILED_GRACE_SECONDS: float = 10.0

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings_cache
    _settings_cache = None
